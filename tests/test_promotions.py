from datetime import datetime

import pytest

from academic_registry import promotions
from academic_registry.activity_log import ActivityLogger
from academic_registry.errors import BadRequestError, NotFoundError
from academic_registry.level_progressions import create_level_progression
from academic_registry.models import (
    ClassArm,
    ClassArmStudent,
    Student,
    StudentPromotion,
    User,
    UserActivity,
)
from academic_registry.promotions import (
    NOT_AVAILABLE,
    OVER_CAPACITY_WARNING,
    TO_BE_CREATED,
    PromoteClassArmRequest,
    PromoteStudentRequest,
    get_class_arm_capacity,
    get_promotion_preview,
    get_promotion_statistics,
    get_student_promotion_history,
    is_valid_uuid,
    promote_class_arm_students,
    promote_student,
)
from tests.factories import make_class_arm


def _new_student(db, school, student_no, first_name="New", last_name="Pupil"):
    user = User(school_id=school.id, first_name=first_name, last_name=last_name)
    db.add(user)
    db.flush()
    student = Student(school_id=school.id, user_id=user.id, student_no=student_no)
    db.add(student)
    db.flush()
    return student


def _active_enrollments(db, student_id):
    return (
        db.query(ClassArmStudent)
        .filter(
            ClassArmStudent.student_id == student_id,
            ClassArmStudent.is_active.is_(True),
        )
        .all()
    )


def _class_arms(db, level, session):
    return (
        db.query(ClassArm)
        .filter(
            ClassArm.level_id == level.id,
            ClassArm.academic_session_id == session.id,
        )
        .all()
    )


def _cohort(seed, **kwargs):
    return PromoteClassArmRequest(
        from_class_arm_id=seed.jss1_a.id,
        to_academic_session_id=seed.current_session.id,
        **kwargs,
    )


def test_is_valid_uuid():
    assert is_valid_uuid("6f1c2a9e-3b4d-4c5e-8f70-123456789abc")
    assert not is_valid_uuid("6f1c2a9e3b4d4c5e8f70123456789abc")
    assert not is_valid_uuid("not-a-uuid")
    assert not is_valid_uuid(None)


def test_promote_cohort_into_next_level(db, seed):
    student_ids = [s.id for s in seed.students]
    jss1_a_id = seed.jss1_a.id

    batch = promote_class_arm_students(db, seed.tenant, _cohort(seed))

    assert batch.status == "COMPLETED"
    assert batch.total_students == 3
    assert batch.promoted_count == 3
    assert batch.repeated_count == 0
    assert batch.failed_promotions == 0
    assert batch.batch_id.startswith("classarm-")
    assert batch.repeaters_class_arm_id is None

    [new_arm] = _class_arms(db, seed.levels["JSS2"], seed.current_session)
    assert new_arm.id == batch.target_class_arm_id
    assert new_arm.name == "A"
    assert new_arm.class_teacher_id == seed.admin.id
    assert new_arm.location == "Block A"

    for student_id in student_ids:
        [active] = _active_enrollments(db, student_id)
        assert active.class_arm_id == new_arm.id
        assert active.academic_session_id == seed.current_session.id

        old = (
            db.query(ClassArmStudent)
            .filter(
                ClassArmStudent.student_id == student_id,
                ClassArmStudent.class_arm_id == jss1_a_id,
            )
            .one()
        )
        assert old.is_active is False
        assert old.left_at is not None

    records = db.query(StudentPromotion).all()
    assert len(records) == 3
    for record in records:
        assert record.promotion_type == "MANUAL"
        assert record.from_class_arm_id == jss1_a_id
        assert record.from_level_id == seed.levels["JSS1"].id
        assert record.to_level_id == seed.levels["JSS2"].id
        assert record.from_academic_session_id == seed.past_session.id
        assert record.to_academic_session_id == seed.current_session.id
        assert record.promoted_by == seed.admin.id

    result = batch.results[0]
    assert (result.from_level, result.to_level) == ("JSS1", "JSS2")
    assert (result.from_class_arm, result.to_class_arm) == ("A", "A")
    assert result.student_name == "Chidi Okafor"


def test_cohort_promotion_is_all_or_nothing(db, seed, monkeypatch):
    student_ids = [s.id for s in seed.students]
    original = promotions._record_promotion
    calls = []

    def failing_record(*args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("disk full")
        return original(*args, **kwargs)

    monkeypatch.setattr(promotions, "_record_promotion", failing_record)

    with pytest.raises(RuntimeError):
        promote_class_arm_students(db, seed.tenant, _cohort(seed))

    assert db.query(StudentPromotion).count() == 0
    assert _class_arms(db, seed.levels["JSS2"], seed.current_session) == []
    for student_id in student_ids:
        [active] = _active_enrollments(db, student_id)
        assert active.academic_session_id == seed.past_session.id
        assert active.left_at is None


def test_promote_selected_students_only(db, seed):
    chidi, bola, emeka = seed.students
    chidi_id, bola_id = chidi.id, bola.id
    jss1_a_id = seed.jss1_a.id

    batch = promote_class_arm_students(
        db, seed.tenant, _cohort(seed, student_ids=[chidi_id])
    )

    assert batch.total_students == 1
    [active] = _active_enrollments(db, chidi_id)
    assert active.class_arm_id == batch.target_class_arm_id
    [untouched] = _active_enrollments(db, bola_id)
    assert untouched.class_arm_id == jss1_a_id


def test_repeaters_go_to_a_repeaters_class_arm(db, seed):
    emeka_id = seed.students[2].id

    batch = promote_class_arm_students(
        db, seed.tenant, _cohort(seed, repeater_student_ids=[emeka_id])
    )

    assert batch.promoted_count == 2
    assert batch.repeated_count == 1
    [repeaters] = _class_arms(db, seed.levels["JSS1"], seed.current_session)
    assert repeaters.name == "A-Repeaters"
    assert repeaters.id == batch.repeaters_class_arm_id

    [active] = _active_enrollments(db, emeka_id)
    assert active.class_arm_id == repeaters.id
    record = db.query(StudentPromotion).filter_by(student_id=emeka_id).one()
    assert record.promotion_type == "REPEAT"
    assert record.to_level_id == seed.levels["JSS1"].id


def test_repeat_type_repeats_everyone(db, seed):
    batch = promote_class_arm_students(
        db,
        seed.tenant,
        _cohort(seed, promotion_type="REPEAT", repeaters_class_arm_name="Retake"),
    )

    assert batch.promoted_count == 0
    assert batch.repeated_count == 3
    assert batch.target_class_arm_id is None
    assert _class_arms(db, seed.levels["JSS2"], seed.current_session) == []
    [repeaters] = _class_arms(db, seed.levels["JSS1"], seed.current_session)
    assert repeaters.name == "Retake"
    assert {r.to_class_arm for r in batch.results} == {"Retake"}


def test_promote_into_existing_class_arm(db, seed):
    gold = make_class_arm(
        db, seed.school.id, seed.levels["JSS2"], seed.current_session, "Gold"
    )
    db.commit()
    gold_id = gold.id

    batch = promote_class_arm_students(
        db,
        seed.tenant,
        _cohort(seed, use_existing_class_arm=True, existing_target_class_arm_id=gold_id),
    )

    assert batch.target_class_arm_id == gold_id
    assert len(_class_arms(db, seed.levels["JSS2"], seed.current_session)) == 1
    assert get_class_arm_capacity(db, gold_id).current_capacity == 3


def test_existing_class_arm_must_match_level_and_session(db, seed):
    wrong = make_class_arm(
        db, seed.school.id, seed.levels["JSS3"], seed.current_session, "Gold"
    )
    db.commit()

    with pytest.raises(BadRequestError):
        promote_class_arm_students(
            db,
            seed.tenant,
            _cohort(
                seed, use_existing_class_arm=True, existing_target_class_arm_id=wrong.id
            ),
        )


def test_explicit_target_level(db, seed):
    jss3_id = seed.levels["JSS3"].id
    batch = promote_class_arm_students(
        db, seed.tenant, _cohort(seed, to_level_id=jss3_id, target_class_arm_name="Gold")
    )
    target = db.get(ClassArm, batch.target_class_arm_id)
    assert target.level_id == jss3_id
    assert target.name == "Gold"


def test_ids_are_validated_before_any_lookup(db, seed):
    request = PromoteClassArmRequest(
        from_class_arm_id="missing",
        to_academic_session_id="missing",
        use_existing_class_arm=True,
        existing_target_class_arm_id="not-a-uuid",
    )
    with pytest.raises(BadRequestError) as exc_info:
        promote_class_arm_students(db, seed.tenant, request)
    assert "UUID" in exc_info.value.message


@pytest.mark.parametrize(
    "kwargs",
    [
        {"promotion_type": "GRADUATE"},
        {"use_existing_class_arm": True},
        {"repeaters_class_arm_id": "123"},
    ],
)
def test_invalid_cohort_requests(db, seed, kwargs):
    with pytest.raises(BadRequestError):
        promote_class_arm_students(db, seed.tenant, _cohort(seed, **kwargs))


def test_duplicate_target_name_is_rejected(db, seed):
    make_class_arm(db, seed.school.id, seed.levels["JSS2"], seed.current_session, "A")
    db.commit()

    with pytest.raises(BadRequestError) as exc_info:
        promote_class_arm_students(db, seed.tenant, _cohort(seed))
    assert "already exists" in exc_info.value.message
    assert db.query(StudentPromotion).count() == 0


def test_final_level_cannot_be_promoted(db, seed):
    ss3 = make_class_arm(db, seed.school.id, seed.levels["SS3"], seed.past_session, "A")
    student = _new_student(db, seed.school, "GF100")
    db.add(
        ClassArmStudent(
            student_id=student.id,
            class_arm_id=ss3.id,
            academic_session_id=seed.past_session.id,
        )
    )
    db.commit()

    request = PromoteClassArmRequest(
        from_class_arm_id=ss3.id, to_academic_session_id=seed.current_session.id
    )
    with pytest.raises(BadRequestError) as exc_info:
        promote_class_arm_students(db, seed.tenant, request)
    assert "No next level" in exc_info.value.message


def test_empty_selection(db, seed):
    with pytest.raises(BadRequestError) as exc_info:
        promote_class_arm_students(
            db, seed.tenant, _cohort(seed, student_ids=["someone-else"])
        )
    assert exc_info.value.message == "No students selected for promotion"


def test_cohort_scoped_to_school(db, seed):
    with pytest.raises(NotFoundError):
        promote_class_arm_students(db, seed.other_tenant, _cohort(seed))


def test_cohort_promotion_is_logged(db, seed):
    promote_class_arm_students(db, seed.tenant, _cohort(seed), ActivityLogger(db))

    activity = db.query(UserActivity).one()
    assert activity.action == "PROMOTE_CLASS_ARM"
    assert activity.details["promoted"] == 3


@pytest.fixture
def gold(db, seed):
    class_arm = make_class_arm(
        db, seed.school.id, seed.levels["JSS2"], seed.current_session, "Gold"
    )
    db.commit()
    return class_arm


def test_promote_single_student(db, seed, gold):
    chidi_id = seed.students[0].id
    gold_id = gold.id

    result = promote_student(
        db, seed.tenant, PromoteStudentRequest(chidi_id, gold_id, notes="Mid-year")
    )

    assert result.success
    assert result.promotion_type == "MANUAL"
    assert (result.from_level, result.to_level) == ("JSS1", "JSS2")
    assert (result.from_class_arm, result.to_class_arm) == ("A", "Gold")
    assert result.warnings == []

    [active] = _active_enrollments(db, chidi_id)
    assert active.class_arm_id == gold_id
    record = db.query(StudentPromotion).one()
    assert record.notes == "Mid-year"
    assert record.from_class_arm_id == seed.jss1_a.id


def test_promote_student_without_enrollment(db, seed, gold):
    student = _new_student(db, seed.school, "GF200")
    db.commit()

    result = promote_student(
        db, seed.tenant, PromoteStudentRequest(student.id, gold.id, "MANUAL")
    )

    assert result.from_level == NOT_AVAILABLE
    assert result.from_class_arm == NOT_AVAILABLE
    record = db.query(StudentPromotion).one()
    assert record.from_class_arm_id is None
    assert record.from_level_id is None
    assert record.from_academic_session_id is None


def test_promote_student_into_full_class_arm_warns(db, seed, gold):
    filler = seed.students[2]
    for _ in range(30):
        db.add(
            ClassArmStudent(
                student_id=filler.id,
                class_arm_id=gold.id,
                academic_session_id=seed.current_session.id,
            )
        )
    db.commit()

    result = promote_student(
        db, seed.tenant, PromoteStudentRequest(seed.students[0].id, gold.id)
    )
    assert result.success
    assert result.warnings == [OVER_CAPACITY_WARNING]


def test_promote_student_rejections(db, seed, gold):
    chidi = seed.students[0]

    with pytest.raises(NotFoundError) as exc_info:
        promote_student(db, seed.tenant, PromoteStudentRequest(chidi.id, "missing"))
    assert exc_info.value.message == "Target class arm not found"

    with pytest.raises(NotFoundError):
        promote_student(
            db, seed.tenant, PromoteStudentRequest(chidi.id, seed.other_class_arm.id)
        )
    with pytest.raises(NotFoundError):
        promote_student(db, seed.other_tenant, PromoteStudentRequest(chidi.id, gold.id))
    with pytest.raises(BadRequestError):
        promote_student(
            db, seed.tenant, PromoteStudentRequest(chidi.id, gold.id, "SIDEWAYS")
        )

    chidi.status = "SUSPENDED"
    db.commit()
    with pytest.raises(BadRequestError) as exc_info:
        promote_student(db, seed.tenant, PromoteStudentRequest(chidi.id, gold.id))
    assert exc_info.value.message == "Promotion validation failed: Student is not active"


def test_promotion_history_newest_first(db, seed, gold):
    chidi_id = seed.students[0].id
    promote_class_arm_students(db, seed.tenant, _cohort(seed, student_ids=[chidi_id]))
    first = db.query(StudentPromotion).one()
    first.promotion_date = datetime(2025, 9, 1)
    db.commit()

    promote_student(db, seed.tenant, PromoteStudentRequest(chidi_id, gold.id))

    history = get_student_promotion_history(db, seed.tenant, chidi_id)
    assert len(history) == 2
    assert history[0].to_class_arm_id == gold.id
    assert history[1].id == first.id

    with pytest.raises(NotFoundError):
        get_student_promotion_history(db, seed.other_tenant, chidi_id)


def test_promotion_preview(db, seed):
    previews = get_promotion_preview(
        db, seed.tenant, seed.past_session.id, seed.current_session.id
    )

    assert [p.student_no for p in previews] == ["GF001", "GF002", "GF003"]
    preview = previews[0]
    assert preview.current_level == "JSS1"
    assert preview.current_class_arm == "A"
    assert preview.proposed_level == "JSS2"
    assert preview.proposed_class_arm == TO_BE_CREATED
    assert preview.can_promote is True
    assert preview.requires_approval is False

    # Nothing was written
    assert db.query(StudentPromotion).count() == 0


def test_preview_uses_existing_class_arm_and_progression_rule(db, seed):
    make_class_arm(db, seed.school.id, seed.levels["JSS3"], seed.current_session, "B")
    db.commit()
    create_level_progression(
        db,
        seed.tenant,
        seed.levels["JSS1"].id,
        seed.levels["JSS3"].id,
        requires_approval=True,
    )

    [preview, *_] = get_promotion_preview(
        db, seed.tenant, seed.past_session.id, seed.current_session.id
    )
    assert preview.proposed_level == "JSS3"
    assert preview.proposed_class_arm == "B"
    assert preview.requires_approval is True


def test_preview_skips_final_level(db, seed):
    ss3 = make_class_arm(db, seed.school.id, seed.levels["SS3"], seed.past_session, "A")
    student = _new_student(db, seed.school, "GF300")
    db.add(
        ClassArmStudent(
            student_id=student.id,
            class_arm_id=ss3.id,
            academic_session_id=seed.past_session.id,
        )
    )
    db.commit()

    previews = get_promotion_preview(
        db, seed.tenant, seed.past_session.id, seed.current_session.id
    )
    assert "GF300" not in [p.student_no for p in previews]

    statistics = get_promotion_statistics(db, seed.tenant, seed.past_session.id)
    assert statistics.total_students == 4
    assert statistics.eligible_for_promotion == 3
    assert statistics.cannot_promote == 1
    assert statistics.by_level == {"JSS1": 3, "SS3": 1}
    assert statistics.by_class_arm == {"JSS1-A": 3, "SS3-A": 1}


def test_promotion_statistics(db, seed):
    create_level_progression(
        db,
        seed.tenant,
        seed.levels["JSS1"].id,
        seed.levels["JSS2"].id,
        requires_approval=True,
    )
    seed.students[0].status = "WITHDRAWN"
    db.commit()

    statistics = get_promotion_statistics(db, seed.tenant, seed.past_session.id)
    assert statistics.total_students == 2
    assert statistics.eligible_for_promotion == 2
    assert statistics.requires_manual_review == 2
    assert statistics.cannot_promote == 0

    with pytest.raises(NotFoundError):
        get_promotion_statistics(db, seed.other_tenant, seed.past_session.id)
