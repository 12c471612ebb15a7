from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from academic_registry.models import UserActivity
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)


class ActivityLogger:
    """
    Records user activity for the audit trail.

    Logging is fire-and-forget: a failure is logged and swallowed so that it
    never aborts the operation being recorded. Call it only after the primary
    operation has committed.
    """

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        tenant: TenantContext,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        severity: str = "INFO",
        category: Optional[str] = None,
    ) -> Optional[UserActivity]:
        try:
            activity = UserActivity(
                user_id=tenant.user_id,
                school_id=tenant.school_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details,
                description=description
                or f"{action.replace('_', ' ').title()} {entity_type}",
                severity=severity,
                category=category,
            )
            self.db.add(activity)
            self.db.commit()
            return activity
        except Exception as e:
            logger.warning(f"Failed to log activity {action} on {entity_type}: {e}")
            try:
                self.db.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback after activity log failure failed: {rollback_error}")
            return None
