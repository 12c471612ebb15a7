from datetime import datetime
from typing import Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.models import AcademicSession, ClassArm, ClassArmStudent, Student


def get_active_enrollment(
    db: Session, student_id: str, academic_session_id: Optional[str] = None
) -> Optional[ClassArmStudent]:
    """
    Return the student's active class-arm enrollment.

    Without a session, the most recent active enrollment in any session is
    returned.
    """
    query = db.query(ClassArmStudent).filter(
        and_(
            ClassArmStudent.student_id == student_id,
            ClassArmStudent.is_active.is_(True),
        )
    )
    if academic_session_id:
        query = query.filter(ClassArmStudent.academic_session_id == academic_session_id)
    return query.order_by(ClassArmStudent.enrolled_at.desc()).first()


def get_session_enrollment(
    db: Session, student_id: str, academic_session_id: str
) -> Optional[ClassArmStudent]:
    """The active enrollment in a session, else the last one the student left."""
    enrollment = get_active_enrollment(db, student_id, academic_session_id)
    if enrollment:
        return enrollment
    return (
        db.query(ClassArmStudent)
        .filter(
            and_(
                ClassArmStudent.student_id == student_id,
                ClassArmStudent.academic_session_id == academic_session_id,
            )
        )
        .order_by(ClassArmStudent.enrolled_at.desc())
        .first()
    )


def deactivate_enrollments(
    db: Session, student_id: str, academic_session_id: Optional[str] = None
) -> int:
    """Close every active enrollment of the student, optionally within one session."""
    query = db.query(ClassArmStudent).filter(
        and_(
            ClassArmStudent.student_id == student_id,
            ClassArmStudent.is_active.is_(True),
        )
    )
    if academic_session_id:
        query = query.filter(ClassArmStudent.academic_session_id == academic_session_id)

    now = datetime.now()
    count = 0
    for enrollment in query.all():
        enrollment.is_active = False
        enrollment.left_at = now
        count += 1
    return count


def enroll_student(
    db: Session,
    student: Student,
    class_arm: ClassArm,
    session: Optional[AcademicSession] = None,
) -> ClassArmStudent:
    """
    Place a student in a class-arm, leaving at most one active enrollment per session.

    Changes are flushed but not committed; the caller owns the transaction.
    """
    academic_session_id = session.id if session else class_arm.academic_session_id
    deactivate_enrollments(db, student.id, academic_session_id)

    enrollment = ClassArmStudent(
        student_id=student.id,
        class_arm_id=class_arm.id,
        academic_session_id=academic_session_id,
        is_active=True,
        enrolled_at=datetime.now(),
    )
    db.add(enrollment)
    db.flush()
    return enrollment
