"""
Student promotion and repetition.

Moving a student between class-arms never deletes anything: the enrollment the
student leaves is closed (``is_active=False`` with ``left_at`` set), a new
active enrollment is opened, and a StudentPromotion row is appended to the
history. Cohort promotions do all of this for every selected student in one
transaction, so either the whole cohort moves or nobody does.
"""

import re
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from academic_registry.academic_calendar import get_school_session
from academic_registry.activity_log import ActivityLogger
from academic_registry.enrollments import enroll_student, get_active_enrollment
from academic_registry.errors import BadRequestError, NotFoundError
from academic_registry.level_progressions import (
    determine_next_level,
    find_level_progression,
    get_school_level,
)
from academic_registry.models import (
    AcademicSession,
    ClassArm,
    ClassArmStudent,
    Level,
    Student,
    StudentPromotion,
)
from academic_registry.ranking import get_school_class_arm
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CLASS_CAPACITY = 30
NOT_AVAILABLE = "N/A"
TO_BE_CREATED = "To be created"
OVER_CAPACITY_WARNING = "Target class is over capacity"

PROMOTION_TYPES = ("AUTOMATIC", "MANUAL", "REPEAT", "GRADUATION", "TRANSFER")
COHORT_PROMOTION_TYPES = ("PROMOTE", "REPEAT")

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_uuid(value: str) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def normalize_promotion_type(promotion_type: str) -> str:
    """Map request promotion types onto the stored ones; PROMOTE means MANUAL."""
    value = (promotion_type or "").upper()
    if value == "PROMOTE":
        return "MANUAL"
    if value not in PROMOTION_TYPES:
        raise BadRequestError(
            f"Invalid promotion type {promotion_type!r}, expected one of "
            f"PROMOTE, {', '.join(PROMOTION_TYPES)}"
        )
    return value


@dataclass
class PromoteStudentRequest:
    student_id: str
    to_class_arm_id: str
    promotion_type: str = "PROMOTE"
    notes: Optional[str] = None


@dataclass
class PromoteClassArmRequest:
    from_class_arm_id: str
    to_academic_session_id: str
    promotion_type: str = "PROMOTE"
    to_level_id: Optional[str] = None
    student_ids: Optional[List[str]] = None
    repeater_student_ids: Optional[List[str]] = None
    use_existing_class_arm: bool = False
    existing_target_class_arm_id: Optional[str] = None
    target_class_arm_name: Optional[str] = None
    repeaters_class_arm_id: Optional[str] = None
    repeaters_class_arm_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class PromotionResult:
    student_id: str
    success: bool
    student_name: Optional[str] = None
    promotion_type: Optional[str] = None
    from_level: str = NOT_AVAILABLE
    to_level: Optional[str] = None
    from_class_arm: str = NOT_AVAILABLE
    to_class_arm: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PromotionBatchResult:
    batch_id: str
    total_students: int
    successful_promotions: int
    failed_promotions: int
    promoted_count: int
    repeated_count: int
    status: str
    results: List[PromotionResult]
    target_class_arm_id: Optional[str] = None
    repeaters_class_arm_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClassArmCapacityInfo:
    class_arm_id: str
    class_name: str
    current_capacity: int
    max_capacity: int
    available_slots: int
    is_over_capacity: bool


@dataclass
class StudentPromotionPreview:
    student_id: str
    student_name: str
    student_no: str
    current_level: str
    current_class_arm: str
    proposed_level: str
    proposed_class_arm: str
    promotion_type: str
    can_promote: bool
    requires_approval: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class PromotionStatistics:
    total_students: int = 0
    eligible_for_promotion: int = 0
    requires_manual_review: int = 0
    cannot_promote: int = 0
    by_level: Dict[str, int] = field(default_factory=dict)
    by_class_arm: Dict[str, int] = field(default_factory=dict)


def _get_school_student(db: Session, school_id: str, student_id: str) -> Student:
    student = (
        db.query(Student)
        .filter(
            and_(
                Student.id == student_id,
                Student.school_id == school_id,
                Student.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not student:
        raise NotFoundError("Student not found")
    return student


def count_active_enrollments(db: Session, class_arm_id: str) -> int:
    return (
        db.query(func.count(ClassArmStudent.id))
        .filter(
            and_(
                ClassArmStudent.class_arm_id == class_arm_id,
                ClassArmStudent.is_active.is_(True),
            )
        )
        .scalar()
        or 0
    )


def get_class_arm_capacity(
    db: Session,
    class_arm_id: str,
    school_id: Optional[str] = None,
    max_capacity: int = DEFAULT_CLASS_CAPACITY,
) -> ClassArmCapacityInfo:
    query = db.query(ClassArm).filter(
        and_(ClassArm.id == class_arm_id, ClassArm.deleted_at.is_(None))
    )
    if school_id:
        query = query.filter(ClassArm.school_id == school_id)
    class_arm = query.first()
    if not class_arm:
        raise NotFoundError("Class arm not found")

    current = count_active_enrollments(db, class_arm_id)
    return ClassArmCapacityInfo(
        class_arm_id=class_arm_id,
        class_name=class_arm.name,
        current_capacity=current,
        max_capacity=max_capacity,
        available_slots=max_capacity - current,
        is_over_capacity=current >= max_capacity,
    )


def _capacity_warnings(db: Session, class_arm: ClassArm) -> List[str]:
    capacity = get_class_arm_capacity(db, class_arm.id)
    if capacity.is_over_capacity:
        logger.warning(
            f"Class arm {class_arm.name} ({class_arm.id}) has "
            f"{capacity.current_capacity}/{capacity.max_capacity} students"
        )
        return [OVER_CAPACITY_WARNING]
    return []


def _record_promotion(
    db: Session,
    student: Student,
    from_enrollment: Optional[ClassArmStudent],
    to_class_arm: ClassArm,
    to_level_id: str,
    promotion_type: str,
    promoted_by: str,
    notes: Optional[str] = None,
) -> StudentPromotion:
    from_class_arm = from_enrollment.class_arm if from_enrollment else None
    promotion = StudentPromotion(
        student_id=student.id,
        from_class_arm_id=from_class_arm.id if from_class_arm else None,
        to_class_arm_id=to_class_arm.id,
        from_level_id=from_class_arm.level_id if from_class_arm else None,
        to_level_id=to_level_id,
        from_academic_session_id=(
            from_class_arm.academic_session_id if from_class_arm else None
        ),
        to_academic_session_id=to_class_arm.academic_session_id,
        promotion_type=promotion_type,
        promotion_date=datetime.now(),
        promoted_by=promoted_by,
        notes=notes,
    )
    db.add(promotion)
    db.flush()
    return promotion


def transfer_enrollment(
    db: Session,
    student: Student,
    from_enrollment: Optional[ClassArmStudent],
    to_class_arm: ClassArm,
    to_level_id: str,
    promotion_type: str,
    promoted_by: str,
    notes: Optional[str] = None,
) -> StudentPromotion:
    """
    Move one student into ``to_class_arm`` and record the move.

    Flushes but does not commit.
    """
    if from_enrollment and from_enrollment.is_active:
        from_enrollment.is_active = False
        from_enrollment.left_at = datetime.now()
        db.flush()

    enroll_student(db, student, to_class_arm)
    return _record_promotion(
        db,
        student,
        from_enrollment,
        to_class_arm,
        to_level_id,
        promotion_type,
        promoted_by,
        notes,
    )


def promote_student(
    db: Session,
    tenant: TenantContext,
    request: PromoteStudentRequest,
    activity_logger: Optional[ActivityLogger] = None,
) -> PromotionResult:
    promotion_type = normalize_promotion_type(request.promotion_type)
    student = _get_school_student(db, tenant.school_id, request.student_id)

    target = (
        db.query(ClassArm)
        .filter(
            and_(
                ClassArm.id == request.to_class_arm_id,
                ClassArm.school_id == tenant.school_id,
                ClassArm.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not target:
        raise NotFoundError("Target class arm not found")

    if student.status != "ACTIVE":
        raise BadRequestError("Promotion validation failed: Student is not active")

    warnings = _capacity_warnings(db, target)
    current = get_active_enrollment(db, student.id)
    from_class_arm = current.class_arm if current else None

    result = PromotionResult(
        student_id=student.id,
        success=True,
        student_name=student.full_name,
        promotion_type=promotion_type,
        from_level=from_class_arm.level.name if from_class_arm else NOT_AVAILABLE,
        to_level=target.level.name,
        from_class_arm=from_class_arm.name if from_class_arm else NOT_AVAILABLE,
        to_class_arm=target.name,
        warnings=warnings,
    )

    try:
        promotion = transfer_enrollment(
            db,
            student,
            current,
            target,
            target.level_id,
            promotion_type,
            tenant.user_id,
            request.notes,
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Promotion of student {student.id} rolled back: {e}")
        raise

    logger.info(
        f"Promoted student {student.student_no} from {result.from_class_arm} "
        f"to {result.to_class_arm} ({promotion_type})"
    )
    if activity_logger:
        activity_logger.log(
            tenant,
            action="PROMOTE_STUDENT",
            entity_type="StudentPromotion",
            entity_id=promotion.id,
            details=result.to_dict(),
            category="promotion",
        )
    return result


def _validate_cohort_request(request: PromoteClassArmRequest) -> None:
    for label, value in (
        ("existingTargetClassArmId", request.existing_target_class_arm_id),
        ("repeatersClassArmId", request.repeaters_class_arm_id),
    ):
        if value is not None and not is_valid_uuid(value):
            raise BadRequestError(f"{label} must be a valid UUID, got {value!r}")

    if request.promotion_type not in COHORT_PROMOTION_TYPES:
        raise BadRequestError(
            f"Invalid promotion type {request.promotion_type!r}, expected PROMOTE or REPEAT"
        )
    if request.use_existing_class_arm and not request.existing_target_class_arm_id:
        raise BadRequestError(
            "existingTargetClassArmId is required when useExistingClassArm is set"
        )


def _class_arm_name_taken(
    db: Session, school_id: str, level_id: str, session_id: str, name: str
) -> bool:
    return (
        db.query(ClassArm)
        .filter(
            and_(
                ClassArm.school_id == school_id,
                ClassArm.level_id == level_id,
                ClassArm.academic_session_id == session_id,
                ClassArm.name == name,
                ClassArm.deleted_at.is_(None),
            )
        )
        .first()
        is not None
    )


def _existing_class_arm(
    db: Session,
    tenant: TenantContext,
    class_arm_id: str,
    level: Level,
    session: AcademicSession,
    label: str,
) -> ClassArm:
    class_arm = get_school_class_arm(db, tenant.school_id, class_arm_id)
    if class_arm.level_id != level.id or class_arm.academic_session_id != session.id:
        raise BadRequestError(
            f"{label} class arm {class_arm.name} must be in {level.name} "
            f"for the {session.academic_year} academic session"
        )
    return class_arm


def _new_class_arm(
    db: Session,
    source: ClassArm,
    level: Level,
    session: AcademicSession,
    name: str,
) -> ClassArm:
    class_arm = ClassArm(
        school_id=source.school_id,
        level_id=level.id,
        academic_session_id=session.id,
        name=name,
        class_teacher_id=source.class_teacher_id,
        location=source.location,
    )
    db.add(class_arm)
    db.flush()
    logger.info(f"Created class arm {level.name}-{name} for {session.academic_year}")
    return class_arm


def _source_roster(db: Session, source: ClassArm) -> List[ClassArmStudent]:
    return (
        db.query(ClassArmStudent)
        .join(Student, ClassArmStudent.student_id == Student.id)
        .filter(
            and_(
                ClassArmStudent.class_arm_id == source.id,
                ClassArmStudent.is_active.is_(True),
                Student.deleted_at.is_(None),
            )
        )
        .order_by(ClassArmStudent.enrolled_at, ClassArmStudent.id)
        .all()
    )


def promote_class_arm_students(
    db: Session,
    tenant: TenantContext,
    request: PromoteClassArmRequest,
    activity_logger: Optional[ActivityLogger] = None,
) -> PromotionBatchResult:
    """
    Promote or repeat the students of one class-arm into a new session.

    Promoted students go to a class-arm in the next level, repeaters to a
    class-arm in the same level. Both class-arms are reused when given and
    created otherwise. Every enrollment change, promotion record and new
    class-arm is written in one transaction.

    Raises:
        BadRequestError: Malformed ids, an empty selection, a duplicate
            class-arm name, a class-arm in the wrong level or session, or a
            source level with nowhere to be promoted to
        NotFoundError: The source class-arm, target session or target level
            does not exist in the school
    """
    _validate_cohort_request(request)
    started_at = datetime.now()

    source = get_school_class_arm(db, tenant.school_id, request.from_class_arm_id)
    target_session = get_school_session(
        db, tenant.school_id, request.to_academic_session_id
    )

    roster = _source_roster(db, source)
    if request.student_ids:
        selected_ids = set(request.student_ids)
        roster = [e for e in roster if e.student_id in selected_ids]
    if not roster:
        raise BadRequestError("No students selected for promotion")

    if request.promotion_type == "REPEAT":
        promoted, repeaters = [], roster
    else:
        repeater_ids = set(request.repeater_student_ids or [])
        promoted = [e for e in roster if e.student_id not in repeater_ids]
        repeaters = [e for e in roster if e.student_id in repeater_ids]

    next_level = None
    if request.to_level_id:
        next_level = get_school_level(db, tenant.school_id, request.to_level_id)
    elif promoted:
        next_level = determine_next_level(db, tenant.school_id, source.level)
        if not next_level:
            raise BadRequestError(
                f"No next level after {source.level.name}. Students in the final "
                f"level graduate instead of being promoted"
            )

    target_arm = None
    target_arm_name = None
    if promoted:
        if request.use_existing_class_arm:
            target_arm = _existing_class_arm(
                db,
                tenant,
                request.existing_target_class_arm_id,
                next_level,
                target_session,
                "Target",
            )
        else:
            target_arm_name = request.target_class_arm_name or source.name
            if _class_arm_name_taken(
                db, tenant.school_id, next_level.id, target_session.id, target_arm_name
            ):
                raise BadRequestError(
                    f"Class arm {target_arm_name} already exists in {next_level.name} "
                    f"for the {target_session.academic_year} academic session"
                )

    repeaters_arm = None
    repeaters_arm_name = None
    if repeaters:
        if request.repeaters_class_arm_id:
            repeaters_arm = _existing_class_arm(
                db,
                tenant,
                request.repeaters_class_arm_id,
                source.level,
                target_session,
                "Repeaters",
            )
        else:
            repeaters_arm_name = (
                request.repeaters_class_arm_name or f"{source.name}-Repeaters"
            )
            if _class_arm_name_taken(
                db,
                tenant.school_id,
                source.level_id,
                target_session.id,
                repeaters_arm_name,
            ):
                raise BadRequestError(
                    f"Class arm {repeaters_arm_name} already exists in "
                    f"{source.level.name} for the {target_session.academic_year} "
                    f"academic session"
                )

    # Read everything the results need before the transaction expires it
    source_level_name = source.level.name
    source_name = source.name
    roster_students = {e.id: e.student for e in roster}
    student_names = {e.id: e.student.full_name for e in roster}

    results: List[PromotionResult] = []
    try:
        if promoted and target_arm is None:
            target_arm = _new_class_arm(
                db, source, next_level, target_session, target_arm_name
            )
        if repeaters and repeaters_arm is None:
            repeaters_arm = _new_class_arm(
                db, source, source.level, target_session, repeaters_arm_name
            )

        for enrollment in promoted:
            transfer_enrollment(
                db,
                roster_students[enrollment.id],
                enrollment,
                target_arm,
                next_level.id,
                "MANUAL",
                tenant.user_id,
                request.notes,
            )
            results.append(
                PromotionResult(
                    student_id=enrollment.student_id,
                    success=True,
                    student_name=student_names[enrollment.id],
                    promotion_type="MANUAL",
                    from_level=source_level_name,
                    to_level=next_level.name,
                    from_class_arm=source_name,
                    to_class_arm=target_arm.name,
                )
            )

        for enrollment in repeaters:
            transfer_enrollment(
                db,
                roster_students[enrollment.id],
                enrollment,
                repeaters_arm,
                source.level_id,
                "REPEAT",
                tenant.user_id,
                request.notes,
            )
            results.append(
                PromotionResult(
                    student_id=enrollment.student_id,
                    success=True,
                    student_name=student_names[enrollment.id],
                    promotion_type="REPEAT",
                    from_level=source_level_name,
                    to_level=source_level_name,
                    from_class_arm=source_name,
                    to_class_arm=repeaters_arm.name,
                )
            )

        target_arm_id = target_arm.id if target_arm else None
        repeaters_arm_id = repeaters_arm.id if repeaters_arm else None
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(
            f"Promotion of class arm {request.from_class_arm_id} rolled back, "
            f"no students were moved: {e}"
        )
        raise

    batch = PromotionBatchResult(
        batch_id=f"classarm-{int(time.time() * 1000)}",
        total_students=len(results),
        successful_promotions=len(results),
        failed_promotions=0,
        promoted_count=len(promoted),
        repeated_count=len(repeaters),
        status="COMPLETED",
        results=results,
        target_class_arm_id=target_arm_id,
        repeaters_class_arm_id=repeaters_arm_id,
        started_at=started_at,
        completed_at=datetime.now(),
    )
    logger.info(
        f"Class arm {source_level_name}-{source_name}: promoted {batch.promoted_count}, "
        f"repeated {batch.repeated_count} into session {request.to_academic_session_id}"
    )
    if activity_logger:
        activity_logger.log(
            tenant,
            action="PROMOTE_CLASS_ARM",
            entity_type="ClassArm",
            entity_id=request.from_class_arm_id,
            details={
                "batchId": batch.batch_id,
                "toAcademicSessionId": request.to_academic_session_id,
                "promoted": batch.promoted_count,
                "repeated": batch.repeated_count,
                "targetClassArmId": target_arm_id,
                "repeatersClassArmId": repeaters_arm_id,
            },
            category="promotion",
        )
    return batch


def get_student_promotion_history(
    db: Session, tenant: TenantContext, student_id: str
) -> List[StudentPromotion]:
    _get_school_student(db, tenant.school_id, student_id)
    return (
        db.query(StudentPromotion)
        .filter(
            and_(
                StudentPromotion.student_id == student_id,
                StudentPromotion.deleted_at.is_(None),
            )
        )
        .order_by(StudentPromotion.promotion_date.desc())
        .all()
    )


def _students_for_promotion(
    db: Session, school_id: str, academic_session_id: str
) -> List[ClassArmStudent]:
    """Active enrollments of ACTIVE students in the session."""
    return (
        db.query(ClassArmStudent)
        .join(Student, ClassArmStudent.student_id == Student.id)
        .filter(
            and_(
                ClassArmStudent.academic_session_id == academic_session_id,
                ClassArmStudent.is_active.is_(True),
                Student.school_id == school_id,
                Student.status == "ACTIVE",
                Student.deleted_at.is_(None),
            )
        )
        .order_by(Student.student_no)
        .all()
    )


def _first_class_arm(
    db: Session, level_id: str, academic_session_id: str
) -> Optional[ClassArm]:
    return (
        db.query(ClassArm)
        .filter(
            and_(
                ClassArm.level_id == level_id,
                ClassArm.academic_session_id == academic_session_id,
                ClassArm.deleted_at.is_(None),
            )
        )
        .order_by(ClassArm.name)
        .first()
    )


def get_promotion_preview(
    db: Session, tenant: TenantContext, from_session_id: str, to_session_id: str
) -> List[StudentPromotionPreview]:
    """
    Show where each student of a session would go. Nothing is written.

    Students in a level with no next level are left out.
    """
    get_school_session(db, tenant.school_id, from_session_id)
    get_school_session(db, tenant.school_id, to_session_id)

    previews = []
    for enrollment in _students_for_promotion(db, tenant.school_id, from_session_id):
        class_arm = enrollment.class_arm
        next_level = determine_next_level(db, tenant.school_id, class_arm.level)
        if not next_level:
            continue

        progression = find_level_progression(db, tenant.school_id, class_arm.level_id)
        target = _first_class_arm(db, next_level.id, to_session_id)
        warnings = []
        if target and get_class_arm_capacity(db, target.id).is_over_capacity:
            warnings.append(OVER_CAPACITY_WARNING)

        previews.append(
            StudentPromotionPreview(
                student_id=enrollment.student_id,
                student_name=enrollment.student.full_name,
                student_no=enrollment.student.student_no,
                current_level=class_arm.level.name,
                current_class_arm=class_arm.name,
                proposed_level=next_level.name,
                proposed_class_arm=target.name if target else TO_BE_CREATED,
                promotion_type="AUTOMATIC",
                can_promote=True,
                requires_approval=bool(progression and progression.requires_approval),
                warnings=warnings,
            )
        )
    return previews


def get_promotion_statistics(
    db: Session, tenant: TenantContext, academic_session_id: str
) -> PromotionStatistics:
    get_school_session(db, tenant.school_id, academic_session_id)

    enrollments = _students_for_promotion(db, tenant.school_id, academic_session_id)
    by_level: Counter = Counter()
    by_class_arm: Counter = Counter()
    statistics = PromotionStatistics(total_students=len(enrollments))

    for enrollment in enrollments:
        class_arm = enrollment.class_arm
        by_level[class_arm.level.name] += 1
        by_class_arm[class_arm.display_name] += 1

        if determine_next_level(db, tenant.school_id, class_arm.level):
            statistics.eligible_for_promotion += 1
            progression = find_level_progression(
                db, tenant.school_id, class_arm.level_id
            )
            if progression and progression.requires_approval:
                statistics.requires_manual_review += 1
        else:
            statistics.cannot_promote += 1

    statistics.by_level = dict(by_level)
    statistics.by_class_arm = dict(by_class_arm)
    return statistics
