from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.activity_log import ActivityLogger
from academic_registry.grade_definitions import GradingModelMap, validate_grading_model
from academic_registry.models import GradingModel
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)


def get_school_grading_model(
    db: Session, school_id: str
) -> Optional[Dict[str, List[float]]]:
    grading_model = (
        db.query(GradingModel)
        .filter(
            and_(GradingModel.school_id == school_id, GradingModel.deleted_at.is_(None))
        )
        .first()
    )
    return grading_model.model if grading_model else None


def get_grading_model(
    db: Session, tenant: TenantContext
) -> Optional[Dict[str, List[float]]]:
    return get_school_grading_model(db, tenant.school_id)


def upsert_grading_model(
    db: Session,
    tenant: TenantContext,
    model: GradingModelMap,
    activity_logger: Optional[ActivityLogger] = None,
) -> GradingModel:
    """Create or replace the school's grading model after validating coverage."""
    normalized = validate_grading_model(model)

    grading_model = (
        db.query(GradingModel).filter(GradingModel.school_id == tenant.school_id).first()
    )
    try:
        if grading_model:
            grading_model.model = normalized
            grading_model.deleted_at = None
            grading_model.updated_at = datetime.now()
        else:
            grading_model = GradingModel(school_id=tenant.school_id, model=normalized)
            db.add(grading_model)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Saved grading model for school {tenant.school_id} with grades {list(normalized)}"
    )
    if activity_logger:
        activity_logger.log(
            tenant,
            action="UPSERT",
            entity_type="GradingModel",
            entity_id=grading_model.id,
            details={"model": normalized},
            category="grading",
        )
    return grading_model
