from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from academic_registry.academic_calendar import get_school_term
from academic_registry.errors import NotFoundError
from academic_registry.filters import AssessmentRecordFilter
from academic_registry.models import ClassArm, ClassArmStudentAssessment
from academic_registry.tenancy import TenantContext


@dataclass
class RankEntry:
    position: int
    student_id: str
    total_score: float


@dataclass
class ClassRanking:
    """Students of a class-arm ordered by their term total, best first."""

    term_id: str
    class_arm_id: str
    entries: List[RankEntry] = field(default_factory=list)

    @property
    def total_students(self) -> int:
        return len(self.entries)

    def entry_for(self, student_id: str) -> Optional[RankEntry]:
        for entry in self.entries:
            if entry.student_id == student_id:
                return entry
        return None

    def position_of(self, student_id: str) -> Optional[int]:
        entry = self.entry_for(student_id)
        return entry.position if entry else None


def get_school_class_arm(db: Session, school_id: str, class_arm_id: str) -> ClassArm:
    class_arm = (
        db.query(ClassArm)
        .filter(
            and_(
                ClassArm.id == class_arm_id,
                ClassArm.school_id == school_id,
                ClassArm.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not class_arm:
        raise NotFoundError("Class arm not found")
    return class_arm


def sort_totals(totals: Dict[str, float]) -> List[RankEntry]:
    """Rank totals highest first; equal totals are ordered by student id."""
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [
        RankEntry(position=index, student_id=student_id, total_score=total)
        for index, (student_id, total) in enumerate(ordered, 1)
    ]


def rank_class_arm(
    db: Session, tenant: TenantContext, term_id: str, class_arm_id: str
) -> ClassRanking:
    get_school_term(db, tenant.school_id, term_id)
    get_school_class_arm(db, tenant.school_id, class_arm_id)

    query = db.query(
        ClassArmStudentAssessment.student_id,
        func.sum(ClassArmStudentAssessment.score),
    )
    query = AssessmentRecordFilter(term_id=term_id, class_arm_id=class_arm_id).apply(
        query
    )
    rows = query.group_by(ClassArmStudentAssessment.student_id).all()

    totals = {student_id: float(total or 0) for student_id, total in rows}
    return ClassRanking(
        term_id=term_id, class_arm_id=class_arm_id, entries=sort_totals(totals)
    )
