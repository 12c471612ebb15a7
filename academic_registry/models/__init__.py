from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def new_id() -> str:
    return str(uuid4())


class School(Base):
    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )

    def __repr__(self) -> str:
        return f"<School id={self.id!r} name={self.name!r}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("schools.id", ondelete="SET NULL")
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )

    school: Mapped[Optional["School"]] = relationship()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User id={self.id!r} school_id={self.school_id!r}>"


class AcademicSession(Base):
    __tablename__ = "academic_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    academic_year: Mapped[str] = mapped_column(String, nullable=False)  # eg. 2025/2026
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    terms: Mapped[list["Term"]] = relationship(back_populates="academic_session")

    def __repr__(self) -> str:
        return f"<AcademicSession id={self.id!r} academic_year={self.academic_year!r} is_current={self.is_current!r}>"


class Term(Base):
    __tablename__ = "terms"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    academic_session_id: Mapped[str] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    academic_session: Mapped["AcademicSession"] = relationship(back_populates="terms")

    def __repr__(self) -> str:
        return f"<Term id={self.id!r} name={self.name!r} is_current={self.is_current!r}>"


class Level(Base):
    __tablename__ = "levels"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)  # eg. JSS1, SS2
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<Level id={self.id!r} name={self.name!r}>"


class ClassArm(Base):
    __tablename__ = "class_arms"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    level_id: Mapped[str] = mapped_column(
        ForeignKey("levels.id", ondelete="cascade"), nullable=False
    )
    academic_session_id: Mapped[str] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(
        String, nullable=False
    )  # JSS1-A -> name is A, level is JSS1
    class_teacher_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    location: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    level: Mapped["Level"] = relationship()
    academic_session: Mapped["AcademicSession"] = relationship()
    class_teacher: Mapped[Optional["User"]] = relationship()
    enrollments: Mapped[list["ClassArmStudent"]] = relationship(
        back_populates="class_arm"
    )
    subjects: Mapped[list["ClassArmSubject"]] = relationship(
        back_populates="class_arm"
    )

    @property
    def display_name(self) -> str:
        return f"{self.level.name}-{self.name}" if self.level else self.name

    def __repr__(self) -> str:
        return f"<ClassArm id={self.id!r} name={self.name!r} level_id={self.level_id!r}>"


StudentStatus = Literal[
    "ACTIVE", "INACTIVE", "SUSPENDED", "GRADUATED", "TRANSFERRED", "WITHDRAWN"
]


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="cascade"), nullable=False
    )
    student_no: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[StudentStatus] = mapped_column(
        String, nullable=False, default="ACTIVE"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user: Mapped["User"] = relationship()
    enrollments: Mapped[list["ClassArmStudent"]] = relationship(
        back_populates="student"
    )

    @property
    def full_name(self) -> str:
        return self.user.full_name if self.user else self.student_no

    def __repr__(self) -> str:
        return f"<Student id={self.id!r} student_no={self.student_no!r} status={self.status!r}>"


class ClassArmStudent(Base):
    __tablename__ = "class_arm_students"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="cascade"), nullable=False
    )
    class_arm_id: Mapped[str] = mapped_column(
        ForeignKey("class_arms.id", ondelete="cascade"), nullable=False
    )
    academic_session_id: Mapped[str] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="cascade"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enrolled_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    left_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    student: Mapped["Student"] = relationship(back_populates="enrollments")
    class_arm: Mapped["ClassArm"] = relationship(back_populates="enrollments")

    __table_args__ = (
        Index(
            "ix_class_arm_students_student_session",
            "student_id",
            "academic_session_id",
            "is_active",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ClassArmStudent id={self.id!r} student_id={self.student_id!r} "
            f"class_arm_id={self.class_arm_id!r} is_active={self.is_active!r}>"
        )


class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def display_code(self) -> str:
        return self.code or self.name[:3].upper()

    def __repr__(self) -> str:
        return f"<Subject id={self.id!r} name={self.name!r}>"


class ClassArmSubject(Base):
    __tablename__ = "class_arm_subjects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    class_arm_id: Mapped[str] = mapped_column(
        ForeignKey("class_arms.id", ondelete="cascade"), nullable=False
    )
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="cascade"), nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    class_arm: Mapped["ClassArm"] = relationship(back_populates="subjects")
    subject: Mapped["Subject"] = relationship()

    __table_args__ = (
        UniqueConstraint("class_arm_id", "subject_id", name="unique_class_arm_subject"),
    )

    def __repr__(self) -> str:
        return f"<ClassArmSubject id={self.id!r} class_arm_id={self.class_arm_id!r} subject_id={self.subject_id!r}>"


class ClassArmStudentAssessment(Base):
    """One scored assessment component for one student, subject and term."""

    __tablename__ = "class_arm_student_assessments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="cascade"), nullable=False
    )
    class_arm_subject_id: Mapped[str] = mapped_column(
        ForeignKey("class_arm_subjects.id", ondelete="cascade"), nullable=False
    )
    term_id: Mapped[str] = mapped_column(
        ForeignKey("terms.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(
        String, nullable=False
    )  # matches an AssessmentComponent name, eg. Test 1
    score: Mapped[float] = mapped_column(Float, nullable=False)
    is_exam: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    student: Mapped["Student"] = relationship()
    class_arm_subject: Mapped["ClassArmSubject"] = relationship()
    term: Mapped["Term"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<ClassArmStudentAssessment id={self.id!r} student_id={self.student_id!r} "
            f"name={self.name!r} score={self.score!r}>"
        )


@dataclass(frozen=True)
class AssessmentComponent:
    """A named, weighted part of an assessment template."""

    name: str
    max_score: float
    is_exam: bool
    order: int
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssessmentComponent":
        return cls(
            name=data["name"],
            max_score=data.get("max_score", data.get("maxScore")),
            is_exam=bool(data.get("is_exam", data.get("isExam", False))),
            order=int(data.get("order", 0)),
            description=data.get("description"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AssessmentStructureTemplate(Base):
    __tablename__ = "assessment_structure_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade")
    )  # NULL for the global default
    academic_session_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="cascade")
    )  # NULL for the global default
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String)
    assessments: Mapped[list[dict]] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_global_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def components(self) -> list[AssessmentComponent]:
        return sorted(
            (AssessmentComponent.from_dict(a) for a in self.assessments or []),
            key=lambda c: c.order,
        )

    @components.setter
    def components(self, value: list[AssessmentComponent]) -> None:
        self.assessments = [c.to_dict() for c in value]

    def __repr__(self) -> str:
        return (
            f"<AssessmentStructureTemplate id={self.id!r} school_id={self.school_id!r} "
            f"academic_session_id={self.academic_session_id!r} is_global_default={self.is_global_default!r}>"
        )


class AssessmentStructure(Base):
    __tablename__ = "assessment_structures"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    academic_session_id: Mapped[str] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String)
    max_score: Mapped[float] = mapped_column(Float, nullable=False)
    is_exam: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def to_component(self) -> AssessmentComponent:
        return AssessmentComponent(
            name=self.name,
            max_score=self.max_score,
            is_exam=self.is_exam,
            order=self.order,
            description=self.description,
        )

    def __repr__(self) -> str:
        return f"<AssessmentStructure id={self.id!r} name={self.name!r} max_score={self.max_score!r}>"


PromotionType = Literal["AUTOMATIC", "MANUAL", "REPEAT", "GRADUATION", "TRANSFER"]


class StudentPromotion(Base):
    """Append-only history of promotion and repetition events."""

    __tablename__ = "student_promotions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="cascade"), nullable=False
    )
    from_class_arm_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("class_arms.id", ondelete="SET NULL")
    )
    to_class_arm_id: Mapped[str] = mapped_column(
        ForeignKey("class_arms.id", ondelete="cascade"), nullable=False
    )
    from_level_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("levels.id", ondelete="SET NULL")
    )
    to_level_id: Mapped[str] = mapped_column(
        ForeignKey("levels.id", ondelete="cascade"), nullable=False
    )
    from_academic_session_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="SET NULL")
    )
    to_academic_session_id: Mapped[str] = mapped_column(
        ForeignKey("academic_sessions.id", ondelete="cascade"), nullable=False
    )
    promotion_type: Mapped[PromotionType] = mapped_column(String, nullable=False)
    promotion_date: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    promoted_by: Mapped[str] = mapped_column(String, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    student: Mapped["Student"] = relationship()
    from_class_arm: Mapped[Optional["ClassArm"]] = relationship(
        foreign_keys=[from_class_arm_id]
    )
    to_class_arm: Mapped["ClassArm"] = relationship(foreign_keys=[to_class_arm_id])
    from_level: Mapped[Optional["Level"]] = relationship(foreign_keys=[from_level_id])
    to_level: Mapped["Level"] = relationship(foreign_keys=[to_level_id])
    from_academic_session: Mapped[Optional["AcademicSession"]] = relationship(
        foreign_keys=[from_academic_session_id]
    )
    to_academic_session: Mapped["AcademicSession"] = relationship(
        foreign_keys=[to_academic_session_id]
    )

    def __repr__(self) -> str:
        return (
            f"<StudentPromotion id={self.id!r} student_id={self.student_id!r} "
            f"promotion_type={self.promotion_type!r}>"
        )


class LevelProgression(Base):
    __tablename__ = "level_progressions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    from_level_id: Mapped[str] = mapped_column(
        ForeignKey("levels.id", ondelete="cascade"), nullable=False
    )
    to_level_id: Mapped[str] = mapped_column(
        ForeignKey("levels.id", ondelete="cascade"), nullable=False
    )
    is_automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_approval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    from_level: Mapped["Level"] = relationship(foreign_keys=[from_level_id])
    to_level: Mapped["Level"] = relationship(foreign_keys=[to_level_id])

    def __repr__(self) -> str:
        return f"<LevelProgression id={self.id!r} from_level_id={self.from_level_id!r} to_level_id={self.to_level_id!r}>"


class GradingModel(Base):
    __tablename__ = "grading_models"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False, unique=True
    )
    model: Mapped[dict] = mapped_column(JSON, nullable=False)  # {"A": [70, 100], ...}
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<GradingModel id={self.id!r} school_id={self.school_id!r}>"


ActivitySeverity = Literal["INFO", "WARNING", "ERROR", "CRITICAL"]


class UserActivity(Base):
    __tablename__ = "user_activities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="cascade"), nullable=False
    )
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    description: Mapped[Optional[str]] = mapped_column(String)
    severity: Mapped[ActivitySeverity] = mapped_column(
        String, nullable=False, default="INFO"
    )
    category: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )

    def __repr__(self) -> str:
        return f"<UserActivity id={self.id!r} action={self.action!r} entity_type={self.entity_type!r}>"
