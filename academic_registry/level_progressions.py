from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.errors import BadRequestError, ConflictError, NotFoundError
from academic_registry.models import Level, LevelProgression
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)

# Default progression when a school has not configured a rule for a level
LEVEL_LADDER = ["JSS1", "JSS2", "JSS3", "SS1", "SS2", "SS3"]


def get_school_level(db: Session, school_id: str, level_id: str) -> Level:
    level = (
        db.query(Level)
        .filter(
            and_(
                Level.id == level_id,
                Level.school_id == school_id,
                Level.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not level:
        raise NotFoundError("Level not found")
    return level


def find_level_progression(
    db: Session, school_id: str, from_level_id: str
) -> Optional[LevelProgression]:
    return (
        db.query(LevelProgression)
        .filter(
            and_(
                LevelProgression.school_id == school_id,
                LevelProgression.from_level_id == from_level_id,
                LevelProgression.deleted_at.is_(None),
            )
        )
        .first()
    )


def determine_next_level(db: Session, school_id: str, level: Level) -> Optional[Level]:
    """
    Work out which level a student in ``level`` moves up to.

    A configured progression rule wins unless its target level has been
    deleted. Otherwise the next name on the fixed ladder is looked up within
    the school. Returns None for the last level, for a level name outside the
    ladder, or when the school has no level with the next name.
    """
    progression = find_level_progression(db, school_id, level.id)
    if progression and progression.to_level.deleted_at is None:
        return progression.to_level

    if level.name not in LEVEL_LADDER:
        return None
    index = LEVEL_LADDER.index(level.name)
    if index == len(LEVEL_LADDER) - 1:
        return None

    return (
        db.query(Level)
        .filter(
            and_(
                Level.school_id == school_id,
                Level.name == LEVEL_LADDER[index + 1],
                Level.deleted_at.is_(None),
            )
        )
        .first()
    )


def list_level_progressions(
    db: Session, tenant: TenantContext
) -> List[LevelProgression]:
    return (
        db.query(LevelProgression)
        .filter(
            and_(
                LevelProgression.school_id == tenant.school_id,
                LevelProgression.deleted_at.is_(None),
            )
        )
        .order_by(LevelProgression.order)
        .all()
    )


def _validate_order(order: Optional[int]) -> None:
    if order is not None and order < 0:
        raise BadRequestError(f"Order must be zero or greater, got {order}")


def create_level_progression(
    db: Session,
    tenant: TenantContext,
    from_level_id: str,
    to_level_id: str,
    is_automatic: bool = True,
    requires_approval: bool = False,
    order: int = 0,
) -> LevelProgression:
    if from_level_id == to_level_id:
        raise BadRequestError("A level cannot progress to itself")
    _validate_order(order)

    get_school_level(db, tenant.school_id, from_level_id)
    get_school_level(db, tenant.school_id, to_level_id)

    if find_level_progression(db, tenant.school_id, from_level_id):
        raise ConflictError("A progression rule already exists for this level")

    try:
        progression = LevelProgression(
            school_id=tenant.school_id,
            from_level_id=from_level_id,
            to_level_id=to_level_id,
            is_automatic=is_automatic,
            requires_approval=requires_approval,
            order=order,
        )
        db.add(progression)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Created level progression {from_level_id} -> {to_level_id}")
    return progression


def _get_school_progression(
    db: Session, tenant: TenantContext, progression_id: str
) -> LevelProgression:
    progression = (
        db.query(LevelProgression)
        .filter(
            and_(
                LevelProgression.id == progression_id,
                LevelProgression.school_id == tenant.school_id,
                LevelProgression.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not progression:
        raise NotFoundError("Level progression not found")
    return progression


def update_level_progression(
    db: Session,
    tenant: TenantContext,
    progression_id: str,
    is_automatic: Optional[bool] = None,
    requires_approval: Optional[bool] = None,
    order: Optional[int] = None,
) -> LevelProgression:
    progression = _get_school_progression(db, tenant, progression_id)
    _validate_order(order)

    try:
        if is_automatic is not None:
            progression.is_automatic = is_automatic
        if requires_approval is not None:
            progression.requires_approval = requires_approval
        if order is not None:
            progression.order = order
        progression.updated_at = datetime.now()
        db.commit()
    except Exception:
        db.rollback()
        raise
    return progression


def delete_level_progression(
    db: Session, tenant: TenantContext, progression_id: str
) -> None:
    progression = _get_school_progression(db, tenant, progression_id)
    try:
        progression.deleted_at = datetime.now()
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Deleted level progression {progression_id}")
