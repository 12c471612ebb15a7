import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

LOG_FILE_NAME = "academic-registry.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

FALSE_VALUES = ("0", "false", "no", "off")


def parse_level(name: Optional[str], default: int = logging.INFO) -> int:
    """Map a level name such as ``"debug"`` to its logging constant."""
    if not name:
        return default
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


def env_flag(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in FALSE_VALUES


class LoggingConfig:
    """Root logger setup shared by the CLI commands and the service modules."""

    def __init__(self, logs_dir: Optional[str] = None):
        self.logs_dir = Path(logs_dir or os.getenv("LOGS_DIR", "logs"))
        self.configured = False

    @property
    def log_file(self) -> Path:
        return self.logs_dir / LOG_FILE_NAME

    def _attach(
        self, root: logging.Logger, handler: logging.Handler, level: int
    ) -> None:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    def configure(
        self,
        level: int = logging.INFO,
        console_level: Optional[int] = None,
        file_level: Optional[int] = None,
        log_to_file: bool = True,
        sql_level: int = logging.WARNING,
    ) -> None:
        """
        Install a console handler and, optionally, a rotating file handler.

        Only the first call has any effect. The SQLAlchemy engine logger is
        held at ``sql_level`` so statement echo stays out of registry logs.
        """
        if self.configured:
            return

        console_level = level if console_level is None else console_level
        file_level = level if file_level is None else file_level

        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(min(console_level, file_level) if log_to_file else console_level)
        self._attach(root, logging.StreamHandler(), console_level)

        if log_to_file:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            self._attach(
                root,
                logging.handlers.RotatingFileHandler(
                    self.log_file,
                    maxBytes=MAX_LOG_BYTES,
                    backupCount=LOG_BACKUPS,
                    encoding="utf-8",
                ),
                file_level,
            )

        logging.getLogger("sqlalchemy.engine").setLevel(sql_level)
        self.configured = True

        logger = logging.getLogger(__name__)
        logger.debug(
            f"Registry logging ready (console {logging.getLevelName(console_level)})"
        )
        if log_to_file:
            logger.debug(f"Writing registry log to {self.log_file.absolute()}")

    def configure_from_env(self) -> None:
        """
        Read LOG_LEVEL, CONSOLE_LOG_LEVEL, FILE_LOG_LEVEL, SQL_LOG_LEVEL and
        LOG_TO_FILE from the environment.
        """
        level = parse_level(os.getenv("LOG_LEVEL"))
        self.configure(
            level=level,
            console_level=parse_level(os.getenv("CONSOLE_LOG_LEVEL"), level),
            file_level=parse_level(os.getenv("FILE_LOG_LEVEL"), level),
            log_to_file=env_flag("LOG_TO_FILE"),
            sql_level=parse_level(os.getenv("SQL_LOG_LEVEL"), logging.WARNING),
        )


_registry_logging = LoggingConfig()


def configure_from_env() -> None:
    _registry_logging.configure_from_env()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
