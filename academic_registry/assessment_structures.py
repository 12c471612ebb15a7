"""
Per-line assessment structures for a school session.

This is the older, row-per-component model that runs alongside templates.
The lines of one (school, session) may add up to less than 100 while they are
being set up, but never to more.
"""

from dataclasses import dataclass, field
from datetime import datetime
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.academic_calendar import get_school_session
from academic_registry.assessment_templates import format_score
from academic_registry.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    RegistryError,
)
from academic_registry.filters import AssessmentRecordFilter
from academic_registry.models import AssessmentStructure
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_SESSION_TOTAL = 100

NOT_FOUND = "Assessment structure not found"
ALREADY_EXISTS = "Assessment structure with this name already exists"
IN_USE = (
    "Cannot modify or delete assessment structure that is already being used "
    "in existing assessments"
)


@dataclass
class BulkUpdateResult:
    results: List[AssessmentStructure] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def validate_max_score(max_score) -> None:
    if (
        not isinstance(max_score, Real)
        or isinstance(max_score, bool)
        or not 1 <= max_score <= 100
    ):
        raise BadRequestError(f"maxScore must be between 1 and 100, got {max_score}")


def _session_structures(
    db: Session, school_id: str, academic_session_id: str
) -> List[AssessmentStructure]:
    return (
        db.query(AssessmentStructure)
        .filter(
            and_(
                AssessmentStructure.school_id == school_id,
                AssessmentStructure.academic_session_id == academic_session_id,
                AssessmentStructure.deleted_at.is_(None),
            )
        )
        .order_by(AssessmentStructure.order)
        .all()
    )


def _validate_session_total(
    db: Session,
    school_id: str,
    academic_session_id: str,
    new_max_score: float,
    exclude_id: Optional[str] = None,
) -> None:
    existing = _session_structures(db, school_id, academic_session_id)
    total = sum(s.max_score for s in existing if s.id != exclude_id) + new_max_score
    if total > MAX_SESSION_TOTAL:
        raise BadRequestError(
            f"Total of all assessment structure maxScores cannot exceed "
            f"{MAX_SESSION_TOTAL}, got {format_score(total)}"
        )


def _name_taken(
    db: Session,
    school_id: str,
    academic_session_id: str,
    name: str,
    exclude_id: Optional[str] = None,
) -> bool:
    query = db.query(AssessmentStructure).filter(
        and_(
            AssessmentStructure.school_id == school_id,
            AssessmentStructure.academic_session_id == academic_session_id,
            AssessmentStructure.name == name,
            AssessmentStructure.deleted_at.is_(None),
        )
    )
    if exclude_id:
        query = query.filter(AssessmentStructure.id != exclude_id)
    return query.first() is not None


def is_structure_in_use(db: Session, structure: AssessmentStructure) -> bool:
    return AssessmentRecordFilter(
        school_id=structure.school_id,
        academic_session_id=structure.academic_session_id,
        names=[structure.name],
    ).exists(db)


def list_structures(
    db: Session, tenant: TenantContext, academic_session_id: Optional[str] = None
) -> List[AssessmentStructure]:
    query = db.query(AssessmentStructure).filter(
        and_(
            AssessmentStructure.school_id == tenant.school_id,
            AssessmentStructure.deleted_at.is_(None),
        )
    )
    if academic_session_id:
        query = query.filter(
            AssessmentStructure.academic_session_id == academic_session_id
        )
    return query.order_by(AssessmentStructure.order).all()


def get_structure(
    db: Session, tenant: TenantContext, structure_id: str
) -> AssessmentStructure:
    structure = (
        db.query(AssessmentStructure)
        .filter(
            and_(
                AssessmentStructure.id == structure_id,
                AssessmentStructure.school_id == tenant.school_id,
                AssessmentStructure.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not structure:
        raise NotFoundError(NOT_FOUND)
    return structure


def _add_structure(
    db: Session,
    tenant: TenantContext,
    academic_session_id: str,
    name: str,
    max_score: float,
    is_exam: bool = False,
    order: Optional[int] = None,
    description: Optional[str] = None,
) -> AssessmentStructure:
    if not name or not name.strip():
        raise BadRequestError("Assessment structure name is required")
    validate_max_score(max_score)
    if _name_taken(db, tenant.school_id, academic_session_id, name):
        raise ConflictError(ALREADY_EXISTS)

    if order is None:
        order = len(_session_structures(db, tenant.school_id, academic_session_id)) + 1

    structure = AssessmentStructure(
        school_id=tenant.school_id,
        academic_session_id=academic_session_id,
        name=name,
        description=description,
        max_score=max_score,
        is_exam=is_exam,
        order=order,
        is_active=True,
    )
    db.add(structure)
    db.flush()
    return structure


def _change_structure(
    db: Session,
    structure: AssessmentStructure,
    changes: Mapping[str, Any],
) -> AssessmentStructure:
    name = changes.get("name")
    if name and name != structure.name:
        if _name_taken(
            db,
            structure.school_id,
            structure.academic_session_id,
            name,
            exclude_id=structure.id,
        ):
            raise ConflictError(ALREADY_EXISTS)

    max_score = changes.get("max_score")
    if max_score is not None:
        validate_max_score(max_score)

    is_exam = changes.get("is_exam")
    score_changed = (max_score is not None and max_score != structure.max_score) or (
        is_exam is not None and is_exam != structure.is_exam
    )
    renamed = bool(name) and name != structure.name
    if (score_changed or renamed) and is_structure_in_use(db, structure):
        raise ConflictError(IN_USE)

    if name:
        structure.name = name
    if max_score is not None:
        structure.max_score = max_score
    if is_exam is not None:
        structure.is_exam = is_exam
    for attribute in ("order", "description", "is_active"):
        if changes.get(attribute) is not None:
            setattr(structure, attribute, changes[attribute])
    structure.updated_at = datetime.now()
    db.flush()
    return structure


def create_structure(
    db: Session,
    tenant: TenantContext,
    academic_session_id: str,
    name: str,
    max_score: float,
    is_exam: bool = False,
    order: Optional[int] = None,
    description: Optional[str] = None,
) -> AssessmentStructure:
    get_school_session(db, tenant.school_id, academic_session_id)
    validate_max_score(max_score)
    _validate_session_total(db, tenant.school_id, academic_session_id, max_score)

    try:
        structure = _add_structure(
            db,
            tenant,
            academic_session_id,
            name,
            max_score,
            is_exam=is_exam,
            order=order,
            description=description,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Created assessment structure {structure.name} ({structure.id})")
    return structure


def update_structure(
    db: Session,
    tenant: TenantContext,
    structure_id: str,
    name: Optional[str] = None,
    max_score: Optional[float] = None,
    is_exam: Optional[bool] = None,
    order: Optional[int] = None,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> AssessmentStructure:
    structure = get_structure(db, tenant, structure_id)

    if max_score is not None:
        validate_max_score(max_score)
        _validate_session_total(
            db,
            tenant.school_id,
            structure.academic_session_id,
            max_score,
            exclude_id=structure.id,
        )

    try:
        _change_structure(
            db,
            structure,
            {
                "name": name,
                "max_score": max_score,
                "is_exam": is_exam,
                "order": order,
                "description": description,
                "is_active": is_active,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return structure


def remove_structure(db: Session, tenant: TenantContext, structure_id: str) -> None:
    structure = get_structure(db, tenant, structure_id)
    if is_structure_in_use(db, structure):
        raise ConflictError(IN_USE)

    try:
        structure.deleted_at = datetime.now()
        structure.is_active = False
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Removed assessment structure {structure_id}")


def _projected_total(
    existing: Sequence[AssessmentStructure], items: Sequence[Mapping[str, Any]]
) -> float:
    scores = {s.id: s.max_score for s in existing}
    added = 0.0
    for item in items:
        max_score = item.get("max_score", item.get("maxScore"))
        if not isinstance(max_score, Real) or isinstance(max_score, bool):
            continue
        if item.get("id") in scores:
            scores[item["id"]] = max_score
        else:
            added += max_score
    return sum(scores.values()) + added


def bulk_update_structures(
    db: Session,
    tenant: TenantContext,
    academic_session_id: str,
    items: Sequence[Mapping[str, Any]],
) -> BulkUpdateResult:
    """
    Create or update several structures of one session in a single call.

    Items carrying an ``id`` update that structure; the rest are created.
    The projected session total is checked once before anything is written.
    After that, a failing item is reported in ``errors`` and the remaining
    items are still applied.
    """
    get_school_session(db, tenant.school_id, academic_session_id)

    existing = _session_structures(db, tenant.school_id, academic_session_id)
    total = _projected_total(existing, items)
    if total > MAX_SESSION_TOTAL:
        raise BadRequestError(
            f"Total of all assessment structure maxScores cannot exceed "
            f"{MAX_SESSION_TOTAL}, got {format_score(total)}"
        )

    outcome = BulkUpdateResult()
    for index, item in enumerate(items):
        max_score = item.get("max_score", item.get("maxScore"))
        is_exam = item.get("is_exam", item.get("isExam"))
        try:
            if item.get("id"):
                structure = get_structure(db, tenant, item["id"])
                if structure.academic_session_id != academic_session_id:
                    raise NotFoundError(NOT_FOUND)
                structure = _change_structure(
                    db,
                    structure,
                    {
                        "name": item.get("name"),
                        "max_score": max_score,
                        "is_exam": is_exam,
                        "order": item.get("order"),
                        "description": item.get("description"),
                    },
                )
            else:
                structure = _add_structure(
                    db,
                    tenant,
                    academic_session_id,
                    item.get("name", ""),
                    max_score,
                    is_exam=bool(is_exam),
                    order=item.get("order"),
                    description=item.get("description"),
                )
            outcome.results.append(structure)
        except RegistryError as e:
            outcome.errors.append(
                {"index": index, "id": item.get("id"), "name": item.get("name"), "error": e.message}
            )

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Bulk updated structures for session {academic_session_id}: "
        f"{len(outcome.results)} saved, {len(outcome.errors)} failed"
    )
    return outcome
