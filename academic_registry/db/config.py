import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from academic_registry.models import Base
from academic_registry.utils.logging_config import get_logger

load_dotenv()

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///local.db"
TIMEOUT_SECONDS = 120


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on FK enforcement for every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    logger.debug(f"Using database {url.split('@')[-1]}")
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": TIMEOUT_SECONDS},
            echo=echo,
            pool_pre_ping=True,
        )
        _enable_sqlite_foreign_keys(engine)
        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True)


def get_session(engine: Optional[Engine] = None) -> Session:
    SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine or get_engine()
    )
    return SessionLocal()


def init_db(engine: Optional[Engine] = None) -> None:
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database schema created")
