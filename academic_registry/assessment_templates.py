"""
Assessment structure templates.

A template is the ordered list of assessment components (name, max score,
exam flag) a school uses for every subject in one academic session. The
component max scores always add up to exactly 100.

Templates for the current session are materialised on first read: the
school's own structures, its previous session, the global default, or the
built-in components, in that order. Past sessions are never back-filled, so
historical results are not rewritten with today's rubric.
"""

from collections import Counter
from datetime import datetime
from numbers import Real
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.academic_calendar import get_school_session
from academic_registry.errors import BadRequestError, ConflictError, NotFoundError
from academic_registry.filters import AssessmentRecordFilter
from academic_registry.models import (
    AcademicSession,
    AssessmentComponent,
    AssessmentStructure,
    AssessmentStructureTemplate,
)
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_TOTAL = 100
STANDARD_TEMPLATE_NAME = "Standard Assessment Structure"
STANDARD_TEMPLATE_DESCRIPTION = "Standard assessment structure for all subjects"

GLOBAL_DEFAULT_NAME = "Global Default Assessment Structure"
GLOBAL_DEFAULT_DESCRIPTION = "Default assessment structure for new schools"
GLOBAL_DEFAULT_COMPONENTS = [
    AssessmentComponent("Test 1", 20, False, 1, "First continuous assessment"),
    AssessmentComponent("Test 2", 20, False, 2, "Second continuous assessment"),
    AssessmentComponent("Exam", 60, True, 3, "Final examination"),
]

# Used when a school has no history and no global default exists
BUILT_IN_COMPONENTS = [
    AssessmentComponent("CA 1", 20, False, 1, "First continuous assessment test"),
    AssessmentComponent("CA 2", 20, False, 2, "Second continuous assessment test"),
    AssessmentComponent("Exam", 60, True, 3, "Final examination"),
]

ComponentInput = Union[AssessmentComponent, Mapping[str, Any]]


def format_score(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def parse_components(items: Iterable[ComponentInput]) -> List[AssessmentComponent]:
    """
    Turn raw component input into validated AssessmentComponent values.

    Components without an explicit order keep their input position.
    """
    components = []
    for index, item in enumerate(items, 1):
        if isinstance(item, AssessmentComponent):
            component = item
        else:
            if "order" not in item:
                item = {**item, "order": index}
            try:
                component = AssessmentComponent.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                raise BadRequestError(f"Invalid assessment component {item!r}: {e}")

        if not isinstance(component.name, str) or not component.name.strip():
            raise BadRequestError("Assessment name is required")
        if (
            not isinstance(component.max_score, Real)
            or isinstance(component.max_score, bool)
            or not 1 <= component.max_score <= 100
        ):
            raise BadRequestError(
                f"maxScore for {component.name} must be between 1 and 100, "
                f"got {component.max_score}"
            )
        components.append(component)

    if not components:
        raise BadRequestError("At least one assessment component is required")
    return components


def validate_total_score(components: Sequence[AssessmentComponent]) -> None:
    total = sum(c.max_score for c in components)
    if total != REQUIRED_TOTAL:
        raise BadRequestError(
            f"Total score must be exactly {REQUIRED_TOTAL}%, got {format_score(total)}%"
        )


def validate_unique_names(components: Sequence[AssessmentComponent]) -> None:
    counts = Counter(c.name for c in components)
    duplicates = [name for name, count in counts.items() if count > 1]
    if duplicates:
        raise BadRequestError(
            f"Duplicate assessment names found: {', '.join(duplicates)}"
        )


def _scoped_template_query(db: Session, school_id: str, academic_session_id: str):
    return db.query(AssessmentStructureTemplate).filter(
        and_(
            AssessmentStructureTemplate.school_id == school_id,
            AssessmentStructureTemplate.academic_session_id == academic_session_id,
            AssessmentStructureTemplate.is_active.is_(True),
            AssessmentStructureTemplate.deleted_at.is_(None),
        )
    )


def _active_structures(
    db: Session, school_id: str, academic_session_id: str
) -> List[AssessmentStructure]:
    return (
        db.query(AssessmentStructure)
        .filter(
            and_(
                AssessmentStructure.school_id == school_id,
                AssessmentStructure.academic_session_id == academic_session_id,
                AssessmentStructure.is_active.is_(True),
                AssessmentStructure.deleted_at.is_(None),
            )
        )
        .order_by(AssessmentStructure.order)
        .all()
    )


def get_global_default(db: Session) -> Optional[AssessmentStructureTemplate]:
    return (
        db.query(AssessmentStructureTemplate)
        .filter(
            and_(
                AssessmentStructureTemplate.is_global_default.is_(True),
                AssessmentStructureTemplate.is_active.is_(True),
                AssessmentStructureTemplate.deleted_at.is_(None),
            )
        )
        .first()
    )


def find_template_for_session_read_only(
    db: Session, school_id: str, academic_session_id: str
) -> Optional[AssessmentStructureTemplate]:
    """Look up the session's template without ever creating one."""
    return _scoped_template_query(db, school_id, academic_session_id).first()


def _create_scoped_template(
    db: Session,
    school_id: str,
    academic_session_id: str,
    components: Sequence[AssessmentComponent],
    name: str = STANDARD_TEMPLATE_NAME,
    description: Optional[str] = STANDARD_TEMPLATE_DESCRIPTION,
    with_structures: bool = True,
) -> AssessmentStructureTemplate:
    if with_structures:
        for component in components:
            db.add(
                AssessmentStructure(
                    school_id=school_id,
                    academic_session_id=academic_session_id,
                    name=component.name,
                    description=component.description,
                    max_score=component.max_score,
                    is_exam=component.is_exam,
                    order=component.order,
                    is_active=True,
                )
            )

    template = AssessmentStructureTemplate(
        school_id=school_id,
        academic_session_id=academic_session_id,
        name=name,
        description=description,
        is_active=True,
    )
    template.components = list(components)
    db.add(template)
    db.flush()
    return template


def _is_complete(components: Sequence[AssessmentComponent]) -> bool:
    """Whether a component set could stand as a template on its own."""
    try:
        validate_total_score(components)
        validate_unique_names(components)
    except BadRequestError as e:
        logger.info(f"Skipping incomplete assessment set: {e.message}")
        return False
    return True


def _materialise_template(
    db: Session, school_id: str, academic_session_id: str
) -> AssessmentStructureTemplate:
    existing_structures = _active_structures(db, school_id, academic_session_id)
    if existing_structures:
        components = [s.to_component() for s in existing_structures]
        if _is_complete(components):
            logger.info(
                f"Building template for session {academic_session_id} from its existing structures"
            )
            return _create_scoped_template(
                db, school_id, academic_session_id, components, with_structures=False
            )

    # A session that already has structures of its own keeps them as they are
    with_structures = not existing_structures

    previous_sessions = (
        db.query(AcademicSession)
        .filter(
            and_(
                AcademicSession.school_id == school_id,
                AcademicSession.id != academic_session_id,
                AcademicSession.deleted_at.is_(None),
            )
        )
        .order_by(AcademicSession.created_at.desc())
        .all()
    )
    for previous in previous_sessions:
        previous_template = find_template_for_session_read_only(
            db, school_id, previous.id
        )
        if previous_template and _is_complete(previous_template.components):
            logger.info(
                f"Copying template from session {previous.academic_year} "
                f"to session {academic_session_id}"
            )
            return _create_scoped_template(
                db,
                school_id,
                academic_session_id,
                previous_template.components,
                name=previous_template.name,
                description=previous_template.description,
                with_structures=with_structures,
            )
        previous_components = [
            s.to_component() for s in _active_structures(db, school_id, previous.id)
        ]
        if previous_components and _is_complete(previous_components):
            logger.info(
                f"Copying structures from session {previous.academic_year} "
                f"to session {academic_session_id}"
            )
            return _create_scoped_template(
                db,
                school_id,
                academic_session_id,
                previous_components,
                with_structures=with_structures,
            )

    global_default = get_global_default(db)
    if global_default:
        logger.info(f"Copying global default template to session {academic_session_id}")
        return _create_scoped_template(
            db,
            school_id,
            academic_session_id,
            global_default.components,
            name=global_default.name,
            description=global_default.description,
            with_structures=with_structures,
        )

    logger.info(f"Using built-in assessment components for session {academic_session_id}")
    return _create_scoped_template(
        db,
        school_id,
        academic_session_id,
        BUILT_IN_COMPONENTS,
        with_structures=with_structures,
    )


def _find_or_materialise(
    db: Session, school_id: str, academic_session_id: str
) -> AssessmentStructureTemplate:
    template = _scoped_template_query(db, school_id, academic_session_id).first()
    if template:
        return template

    try:
        template = _materialise_template(db, school_id, academic_session_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return template


def find_active_for_session(
    db: Session, tenant: TenantContext, academic_session_id: str
) -> AssessmentStructureTemplate:
    """
    Return the session's active template, creating a scoped copy if none exists.

    Calling this twice for the same session creates at most one template.
    """
    get_school_session(db, tenant.school_id, academic_session_id)
    return _find_or_materialise(db, tenant.school_id, academic_session_id)


def find_active_template_for_school_session(
    db: Session, school_id: str, session: AcademicSession
) -> Optional[AssessmentStructureTemplate]:
    """Resolve a template for reporting: create only for the current session."""
    if session.is_current:
        return _find_or_materialise(db, school_id, session.id)
    return find_template_for_session_read_only(db, school_id, session.id)


def list_templates(
    db: Session, tenant: TenantContext
) -> List[AssessmentStructureTemplate]:
    return (
        db.query(AssessmentStructureTemplate)
        .filter(
            and_(
                AssessmentStructureTemplate.school_id == tenant.school_id,
                AssessmentStructureTemplate.deleted_at.is_(None),
            )
        )
        .order_by(AssessmentStructureTemplate.created_at.desc())
        .all()
    )


def create_template(
    db: Session,
    tenant: TenantContext,
    academic_session_id: str,
    name: str,
    assessments: Iterable[ComponentInput],
    description: Optional[str] = None,
) -> AssessmentStructureTemplate:
    components = parse_components(assessments)
    validate_total_score(components)
    validate_unique_names(components)
    get_school_session(db, tenant.school_id, academic_session_id)

    if _scoped_template_query(db, tenant.school_id, academic_session_id).first():
        raise ConflictError(
            "An active assessment structure template already exists for this academic session"
        )

    try:
        template = _create_scoped_template(
            db,
            tenant.school_id,
            academic_session_id,
            components,
            name=name,
            description=description,
            with_structures=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Created template {template.id} for session {academic_session_id}")
    return template


def _get_school_template(
    db: Session, tenant: TenantContext, template_id: str
) -> AssessmentStructureTemplate:
    template = (
        db.query(AssessmentStructureTemplate)
        .filter(
            and_(
                AssessmentStructureTemplate.id == template_id,
                AssessmentStructureTemplate.school_id == tenant.school_id,
                AssessmentStructureTemplate.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not template:
        raise NotFoundError("Assessment structure template not found")
    return template


def _components_in_use(
    db: Session, template: AssessmentStructureTemplate, names: Sequence[str]
) -> bool:
    if not names or not template.academic_session_id or not template.school_id:
        return False
    return AssessmentRecordFilter(
        school_id=template.school_id,
        academic_session_id=template.academic_session_id,
        names=list(names),
    ).exists(db)


def validate_assessments_not_in_use(
    db: Session,
    template: AssessmentStructureTemplate,
    new_components: Sequence[AssessmentComponent],
) -> None:
    """Reject score-impacting changes to components that already have recorded scores."""
    new_by_name = {c.name: c for c in new_components}
    changed = [
        c.name
        for c in template.components
        if c.name not in new_by_name
        or new_by_name[c.name].max_score != c.max_score
        or new_by_name[c.name].is_exam != c.is_exam
    ]
    if _components_in_use(db, template, changed):
        raise ConflictError(
            "Cannot change or remove assessments that already have recorded scores: "
            + ", ".join(changed)
        )


def validate_template_not_in_use(
    db: Session, template: AssessmentStructureTemplate
) -> None:
    if _components_in_use(db, template, [c.name for c in template.components]):
        raise ConflictError(
            "Cannot delete an assessment structure template that is used by recorded scores"
        )


def update_template(
    db: Session,
    tenant: TenantContext,
    template_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    assessments: Optional[Iterable[ComponentInput]] = None,
) -> AssessmentStructureTemplate:
    template = _get_school_template(db, tenant, template_id)

    components = None
    if assessments is not None:
        components = parse_components(assessments)
        validate_total_score(components)
        validate_unique_names(components)
        validate_assessments_not_in_use(db, template, components)

    try:
        if name:
            template.name = name
        if description is not None:
            template.description = description
        if components is not None:
            template.components = components
        template.updated_at = datetime.now()
        db.commit()
    except Exception:
        db.rollback()
        raise
    return template


def delete_template(db: Session, tenant: TenantContext, template_id: str) -> None:
    template = _get_school_template(db, tenant, template_id)
    validate_template_not_in_use(db, template)

    try:
        template.deleted_at = datetime.now()
        template.is_active = False
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Deleted template {template_id}")


def create_global_default(db: Session) -> AssessmentStructureTemplate:
    if get_global_default(db):
        raise ConflictError(
            "Global default assessment structure template already exists"
        )

    try:
        template = AssessmentStructureTemplate(
            school_id=None,
            academic_session_id=None,
            name=GLOBAL_DEFAULT_NAME,
            description=GLOBAL_DEFAULT_DESCRIPTION,
            is_active=True,
            is_global_default=True,
        )
        template.components = GLOBAL_DEFAULT_COMPONENTS
        db.add(template)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Created global default template {template.id}")
    return template
