"""
Typed query filters for assessment records.

Each optional field is one filter dimension. Only the dimensions that are set
add a clause, and soft-deleted records are always excluded.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.orm import Query

from academic_registry.models import (
    ClassArm,
    ClassArmStudentAssessment,
    ClassArmSubject,
    Term,
)


@dataclass(frozen=True)
class AssessmentRecordFilter:
    student_id: Optional[str] = None
    term_id: Optional[str] = None
    term_ids: Optional[Sequence[str]] = None
    academic_session_id: Optional[str] = None
    subject_id: Optional[str] = None
    class_arm_id: Optional[str] = None
    school_id: Optional[str] = None
    names: Optional[Sequence[str]] = None

    def _needs_class_arm_subject(self) -> bool:
        return any(
            v is not None for v in (self.subject_id, self.class_arm_id, self.school_id)
        )

    def apply(self, query: Query) -> Query:
        query = query.filter(ClassArmStudentAssessment.deleted_at.is_(None))

        if self._needs_class_arm_subject():
            query = query.join(
                ClassArmSubject,
                ClassArmStudentAssessment.class_arm_subject_id == ClassArmSubject.id,
            )
        if self.school_id is not None:
            query = query.join(ClassArm, ClassArmSubject.class_arm_id == ClassArm.id)
            query = query.filter(ClassArm.school_id == self.school_id)
        if self.academic_session_id is not None:
            query = query.join(Term, ClassArmStudentAssessment.term_id == Term.id)
            query = query.filter(Term.academic_session_id == self.academic_session_id)

        if self.student_id is not None:
            query = query.filter(ClassArmStudentAssessment.student_id == self.student_id)
        if self.term_id is not None:
            query = query.filter(ClassArmStudentAssessment.term_id == self.term_id)
        if self.term_ids is not None:
            query = query.filter(ClassArmStudentAssessment.term_id.in_(self.term_ids))
        if self.subject_id is not None:
            query = query.filter(ClassArmSubject.subject_id == self.subject_id)
        if self.class_arm_id is not None:
            query = query.filter(ClassArmSubject.class_arm_id == self.class_arm_id)
        if self.names is not None:
            query = query.filter(ClassArmStudentAssessment.name.in_(self.names))
        return query

    def records(self, db) -> list[ClassArmStudentAssessment]:
        query = self.apply(db.query(ClassArmStudentAssessment))
        return query.order_by(
            ClassArmStudentAssessment.created_at, ClassArmStudentAssessment.id
        ).all()

    def exists(self, db) -> bool:
        query = self.apply(db.query(ClassArmStudentAssessment.id))
        return query.first() is not None
