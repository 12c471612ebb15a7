"""
Student result sheets.

A result sheet lists every subject a student was scored in for one term. Each
subject shows one line per component of the session's assessment template, in
template order, so partly graded subjects still have the full shape. Missing
components appear as zero-score placeholder lines.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.academic_calendar import resolve_session, resolve_term
from academic_registry.assessment_templates import (
    find_active_template_for_school_session,
)
from academic_registry.enrollments import get_session_enrollment
from academic_registry.errors import NotFoundError
from academic_registry.filters import AssessmentRecordFilter
from academic_registry.grade_definitions import calculate_grade
from academic_registry.grading_models import get_school_grading_model
from academic_registry.models import (
    AssessmentStructureTemplate,
    ClassArmStudentAssessment,
    Student,
    Subject,
)
from academic_registry.ranking import rank_class_arm
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class AssessmentLine:
    name: str
    score: float
    max_score: Optional[float]
    is_exam: bool
    id: Optional[str] = None
    date: Optional[datetime] = None


@dataclass
class SubjectResult:
    id: str
    name: str
    code: str
    total_score: float
    grade: str
    assessments: List[AssessmentLine] = field(default_factory=list)


@dataclass
class OverallStats:
    total_subjects: int
    total_score: float
    average_score: float
    grade: str
    position: Optional[int] = None
    total_students: int = 0


@dataclass
class StudentResults:
    student_id: str
    student_no: str
    full_name: str
    academic_session_id: str
    academic_year: str
    term_id: str
    term_name: str
    class_arm_id: Optional[str]
    class_arm_name: Optional[str]
    subjects: List[SubjectResult]
    overall_stats: OverallStats

    def subject(self, name: str) -> Optional[SubjectResult]:
        for subject in self.subjects:
            if subject.name == name:
                return subject
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _record_line(record: ClassArmStudentAssessment, max_score, is_exam) -> AssessmentLine:
    return AssessmentLine(
        id=record.id,
        name=record.name,
        score=record.score,
        max_score=max_score,
        is_exam=is_exam,
        date=record.updated_at or record.created_at,
    )


def build_assessment_lines(
    records: List[ClassArmStudentAssessment],
    template: Optional[AssessmentStructureTemplate],
) -> List[AssessmentLine]:
    """
    Lay a student's records for one subject over the template components.

    Without a template the recorded lines are returned as they are, in the
    order they were created.
    """
    if template is None:
        return [_record_line(r, None, r.is_exam) for r in records]

    by_name: Dict[str, ClassArmStudentAssessment] = {}
    for record in records:
        by_name.setdefault(record.name, record)

    lines = []
    for component in template.components:
        record = by_name.get(component.name)
        if record:
            lines.append(_record_line(record, component.max_score, component.is_exam))
        else:
            lines.append(
                AssessmentLine(
                    name=component.name,
                    score=0,
                    max_score=component.max_score,
                    is_exam=component.is_exam,
                )
            )
    return lines


def get_student_results(
    db: Session,
    tenant: TenantContext,
    student_id: str,
    academic_session_id: Optional[str] = None,
    term_id: Optional[str] = None,
    subject_id: Optional[str] = None,
) -> StudentResults:
    student = (
        db.query(Student)
        .filter(
            and_(
                Student.id == student_id,
                Student.school_id == tenant.school_id,
                Student.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not student:
        raise NotFoundError("Student not found")

    session = resolve_session(db, tenant.school_id, academic_session_id, term_id)
    term = resolve_term(db, tenant.school_id, session, term_id)

    records = AssessmentRecordFilter(
        student_id=student.id, term_id=term.id, subject_id=subject_id
    ).records(db)

    grouped: Dict[str, List[ClassArmStudentAssessment]] = defaultdict(list)
    subjects: Dict[str, Subject] = {}
    for record in records:
        subject = record.class_arm_subject.subject
        grouped[subject.id].append(record)
        subjects[subject.id] = subject

    template = find_active_template_for_school_session(db, tenant.school_id, session)
    if template is None:
        logger.debug(
            f"No assessment template for session {session.academic_year}, "
            f"showing recorded lines only"
        )
    grading_model = get_school_grading_model(db, tenant.school_id)

    subject_results = []
    for subject_key in sorted(grouped, key=lambda key: subjects[key].name):
        subject = subjects[subject_key]
        subject_records = grouped[subject_key]
        total = sum(r.score for r in subject_records)
        subject_results.append(
            SubjectResult(
                id=subject.id,
                name=subject.name,
                code=subject.display_code,
                total_score=total,
                grade=calculate_grade(total, grading_model),
                assessments=build_assessment_lines(subject_records, template),
            )
        )

    total_subjects = len(subject_results)
    total_score = sum(s.total_score for s in subject_results)
    average_score = total_score / total_subjects if total_subjects else 0
    stats = OverallStats(
        total_subjects=total_subjects,
        total_score=total_score,
        average_score=round(average_score, 2),
        grade=calculate_grade(average_score, grading_model),
    )

    enrollment = get_session_enrollment(db, student.id, session.id)
    if enrollment:
        ranking = rank_class_arm(db, tenant, term.id, enrollment.class_arm_id)
        stats.position = ranking.position_of(student.id)
        stats.total_students = ranking.total_students

    return StudentResults(
        student_id=student.id,
        student_no=student.student_no,
        full_name=student.full_name,
        academic_session_id=session.id,
        academic_year=session.academic_year,
        term_id=term.id,
        term_name=term.name,
        class_arm_id=enrollment.class_arm_id if enrollment else None,
        class_arm_name=enrollment.class_arm.display_name if enrollment else None,
        subjects=subject_results,
        overall_stats=stats,
    )
