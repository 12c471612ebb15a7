from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from academic_registry.level_progressions import LEVEL_LADDER
from academic_registry.models import (
    AcademicSession,
    Base,
    ClassArm,
    ClassArmStudent,
    Level,
    School,
    Student,
    Subject,
    Term,
    User,
)
from academic_registry.tenancy import TenantContext


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


def _user(school, first_name, last_name):
    return User(
        school_id=school.id if school else None,
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{last_name.lower()}@example.com",
    )


@pytest.fixture
def seed(db):
    """
    One school with two sessions, the full level ladder and a JSS1-A class of
    three students in the past session. A second school exists for tenant
    isolation checks.
    """
    s = SimpleNamespace()
    s.school = School(name="Greenfield College")
    s.other_school = School(name="Hillside Academy")
    db.add_all([s.school, s.other_school])
    db.flush()

    s.admin = _user(s.school, "Ada", "Obi")
    s.outsider = _user(s.other_school, "Tunde", "Bello")
    s.no_school_user = _user(None, "Guest", "User")
    db.add_all([s.admin, s.outsider, s.no_school_user])
    db.flush()

    s.past_session = AcademicSession(
        school_id=s.school.id,
        academic_year="2024/2025",
        is_current=False,
        created_at=datetime(2024, 9, 1),
    )
    s.current_session = AcademicSession(
        school_id=s.school.id,
        academic_year="2025/2026",
        is_current=True,
        created_at=datetime(2025, 9, 1),
    )
    s.other_session = AcademicSession(
        school_id=s.other_school.id,
        academic_year="2025/2026",
        is_current=True,
        created_at=datetime(2025, 9, 1),
    )
    db.add_all([s.past_session, s.current_session, s.other_session])
    db.flush()

    s.past_term = Term(
        academic_session_id=s.past_session.id,
        name="Third Term",
        is_current=False,
        created_at=datetime(2025, 4, 20),
    )
    s.term = Term(
        academic_session_id=s.current_session.id,
        name="First Term",
        is_current=True,
        created_at=datetime(2025, 9, 2),
    )
    s.other_term = Term(
        academic_session_id=s.other_session.id,
        name="First Term",
        is_current=True,
        created_at=datetime(2025, 9, 2),
    )
    db.add_all([s.past_term, s.term, s.other_term])

    s.levels = {name: Level(school_id=s.school.id, name=name) for name in LEVEL_LADDER}
    s.other_level = Level(school_id=s.other_school.id, name="JSS2")
    db.add_all(list(s.levels.values()) + [s.other_level])
    db.flush()

    s.jss1_a = ClassArm(
        school_id=s.school.id,
        level_id=s.levels["JSS1"].id,
        academic_session_id=s.past_session.id,
        name="A",
        class_teacher_id=s.admin.id,
        location="Block A",
    )
    s.other_class_arm = ClassArm(
        school_id=s.other_school.id,
        level_id=s.other_level.id,
        academic_session_id=s.other_session.id,
        name="A",
    )
    db.add_all([s.jss1_a, s.other_class_arm])

    s.mathematics = Subject(school_id=s.school.id, name="Mathematics", code="MTH")
    s.english = Subject(school_id=s.school.id, name="English Language", code="ENG")
    db.add_all([s.mathematics, s.english])
    db.flush()

    s.students = []
    for number, (first_name, last_name) in enumerate(
        [("Chidi", "Okafor"), ("Bola", "Adeyemi"), ("Emeka", "Nwosu")], 1
    ):
        user = _user(s.school, first_name, last_name)
        db.add(user)
        db.flush()
        student = Student(
            school_id=s.school.id, user_id=user.id, student_no=f"GF{number:03d}"
        )
        db.add(student)
        db.flush()
        db.add(
            ClassArmStudent(
                student_id=student.id,
                class_arm_id=s.jss1_a.id,
                academic_session_id=s.past_session.id,
                is_active=True,
                enrolled_at=datetime(2024, 9, 10, 8, number),
            )
        )
        s.students.append(student)

    db.commit()

    s.tenant = TenantContext(user_id=s.admin.id, school_id=s.school.id)
    s.other_tenant = TenantContext(user_id=s.outsider.id, school_id=s.other_school.id)
    return s
