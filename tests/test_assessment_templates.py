import pytest

from academic_registry.assessment_templates import (
    BUILT_IN_COMPONENTS,
    GLOBAL_DEFAULT_COMPONENTS,
    create_global_default,
    create_template,
    delete_template,
    find_active_for_session,
    find_active_template_for_school_session,
    find_template_for_session_read_only,
    list_templates,
    parse_components,
    update_template,
    validate_total_score,
    validate_unique_names,
)
from academic_registry.assessment_structures import create_structure
from academic_registry.errors import BadRequestError, ConflictError, NotFoundError
from academic_registry.models import (
    AssessmentComponent,
    AssessmentStructure,
    AssessmentStructureTemplate,
)
from tests.factories import make_class_arm, make_template, record_score, teach

THREE_PARTS = [
    {"name": "Test 1", "maxScore": 20},
    {"name": "Test 2", "maxScore": 20},
    {"name": "Exam", "maxScore": 60, "isExam": True},
]


def _scoped_templates(db, seed, session):
    return (
        db.query(AssessmentStructureTemplate)
        .filter(
            AssessmentStructureTemplate.school_id == seed.school.id,
            AssessmentStructureTemplate.academic_session_id == session.id,
        )
        .all()
    )


def test_total_must_be_exactly_100():
    components = parse_components(
        [{"name": "CA", "maxScore": 35}, {"name": "Exam", "maxScore": 60}]
    )
    with pytest.raises(BadRequestError) as exc_info:
        validate_total_score(components)
    assert exc_info.value.message == "Total score must be exactly 100%, got 95%"

    validate_total_score(parse_components(THREE_PARTS))


def test_duplicate_names_are_listed():
    components = parse_components(
        [
            {"name": "Test", "maxScore": 20},
            {"name": "Test", "maxScore": 20},
            {"name": "Exam", "maxScore": 60},
        ]
    )
    with pytest.raises(BadRequestError) as exc_info:
        validate_unique_names(components)
    assert "Test" in exc_info.value.message


def test_parse_components_keeps_input_order_and_checks_range():
    components = parse_components(THREE_PARTS)
    assert [c.order for c in components] == [1, 2, 3]
    assert components[2].is_exam is True

    with pytest.raises(BadRequestError):
        parse_components([{"name": "Exam", "maxScore": 0}])
    with pytest.raises(BadRequestError):
        parse_components([{"name": " ", "maxScore": 50}])


def test_global_default_is_a_singleton(db, seed):
    template = create_global_default(db)
    assert template.is_global_default
    assert template.school_id is None
    assert template.academic_session_id is None
    assert template.components == GLOBAL_DEFAULT_COMPONENTS

    with pytest.raises(ConflictError):
        create_global_default(db)


def test_copy_on_read_from_global_default(db, seed):
    create_global_default(db)

    first = find_active_for_session(db, seed.tenant, seed.current_session.id)
    second = find_active_for_session(db, seed.tenant, seed.current_session.id)

    assert first.id == second.id
    assert len(_scoped_templates(db, seed, seed.current_session)) == 1
    assert first.is_global_default is False
    assert first.school_id == seed.school.id
    assert [c.name for c in first.components] == ["Test 1", "Test 2", "Exam"]
    assert [c.max_score for c in first.components] == [20, 20, 60]


def test_copy_on_read_creates_matching_structures(db, seed):
    create_global_default(db)
    find_active_for_session(db, seed.tenant, seed.current_session.id)

    structures = (
        db.query(AssessmentStructure)
        .filter(AssessmentStructure.academic_session_id == seed.current_session.id)
        .order_by(AssessmentStructure.order)
        .all()
    )
    assert [(s.name, s.max_score, s.is_exam) for s in structures] == [
        ("Test 1", 20, False),
        ("Test 2", 20, False),
        ("Exam", 60, True),
    ]


def test_built_in_components_without_global_default(db, seed):
    template = find_active_for_session(db, seed.tenant, seed.current_session.id)
    assert template.components == BUILT_IN_COMPONENTS


def test_previous_session_template_wins_over_global_default(db, seed):
    create_global_default(db)
    custom = [
        AssessmentComponent("Quiz", 10, False, 1),
        AssessmentComponent("Project", 30, False, 2),
        AssessmentComponent("Final", 60, True, 3),
    ]
    make_template(db, seed.school.id, seed.past_session.id, custom, name="Custom")
    db.commit()

    template = find_active_for_session(db, seed.tenant, seed.current_session.id)
    assert template.name == "Custom"
    assert [c.name for c in template.components] == ["Quiz", "Project", "Final"]


def test_existing_structures_become_the_template(db, seed):
    db.add_all(
        [
            AssessmentStructure(
                school_id=seed.school.id,
                academic_session_id=seed.current_session.id,
                name="Midterm",
                max_score=40,
                order=1,
            ),
            AssessmentStructure(
                school_id=seed.school.id,
                academic_session_id=seed.current_session.id,
                name="Exam",
                max_score=60,
                is_exam=True,
                order=2,
            ),
        ]
    )
    db.commit()

    template = find_active_for_session(db, seed.tenant, seed.current_session.id)
    assert [(c.name, c.max_score) for c in template.components] == [
        ("Midterm", 40),
        ("Exam", 60),
    ]
    assert db.query(AssessmentStructure).count() == 2


def test_incomplete_session_structures_are_not_adopted(db, seed):
    create_structure(db, seed.tenant, seed.current_session.id, "CA", 40)

    template = find_active_for_session(db, seed.tenant, seed.current_session.id)
    assert template.components == BUILT_IN_COMPONENTS
    assert sum(c.max_score for c in template.components) == 100
    # The session's own structure is left alone
    assert db.query(AssessmentStructure).count() == 1


def test_incomplete_past_structures_fall_through_to_global_default(db, seed):
    create_global_default(db)
    for name, max_score in (("CA", 30), ("Exam", 40)):
        db.add(
            AssessmentStructure(
                school_id=seed.school.id,
                academic_session_id=seed.past_session.id,
                name=name,
                max_score=max_score,
            )
        )
    db.commit()

    template = find_active_for_session(db, seed.tenant, seed.current_session.id)
    assert [c.name for c in template.components] == ["Test 1", "Test 2", "Exam"]
    assert sum(c.max_score for c in template.components) == 100


def test_past_session_is_never_back_filled(db, seed):
    create_global_default(db)

    assert (
        find_template_for_session_read_only(db, seed.school.id, seed.past_session.id)
        is None
    )
    assert (
        find_active_template_for_school_session(db, seed.school.id, seed.past_session)
        is None
    )
    assert _scoped_templates(db, seed, seed.past_session) == []


def test_current_session_variant_creates(db, seed):
    create_global_default(db)
    template = find_active_template_for_school_session(
        db, seed.school.id, seed.current_session
    )
    assert template is not None
    assert len(_scoped_templates(db, seed, seed.current_session)) == 1


def test_foreign_session_is_not_found(db, seed):
    with pytest.raises(NotFoundError):
        find_active_for_session(db, seed.tenant, seed.other_session.id)


def test_create_template(db, seed):
    template = create_template(
        db, seed.tenant, seed.current_session.id, "Term rubric", THREE_PARTS
    )
    assert template.school_id == seed.school.id
    assert [c.name for c in template.components] == ["Test 1", "Test 2", "Exam"]
    assert list_templates(db, seed.tenant)[0].id == template.id
    assert list_templates(db, seed.other_tenant) == []


def test_create_template_rejects_second_active_template(db, seed):
    create_template(db, seed.tenant, seed.current_session.id, "One", THREE_PARTS)
    with pytest.raises(ConflictError):
        create_template(db, seed.tenant, seed.current_session.id, "Two", THREE_PARTS)


def test_create_template_validates_before_writing(db, seed):
    with pytest.raises(BadRequestError) as exc_info:
        create_template(
            db,
            seed.tenant,
            seed.current_session.id,
            "Short",
            [{"name": "CA", "maxScore": 30}, {"name": "Exam", "maxScore": 60}],
        )
    assert "got 90%" in exc_info.value.message
    assert list_templates(db, seed.tenant) == []


def test_create_template_for_foreign_session(db, seed):
    with pytest.raises(NotFoundError):
        create_template(db, seed.tenant, seed.other_session.id, "X", THREE_PARTS)


@pytest.fixture
def scored_template(db, seed):
    """A current-session template with a recorded Test 1 score."""
    template = create_template(
        db, seed.tenant, seed.current_session.id, "Rubric", THREE_PARTS
    )
    class_arm = make_class_arm(
        db, seed.school.id, seed.levels["JSS2"], seed.current_session, "Gold"
    )
    maths = teach(db, class_arm, seed.mathematics)
    record_score(db, seed.students[0], maths, seed.term, "Test 1", 15)
    db.commit()
    return template


def test_update_untouched_components_while_in_use(db, seed, scored_template):
    updated = update_template(
        db,
        seed.tenant,
        scored_template.id,
        name="Renamed",
        assessments=[
            {"name": "Test 1", "maxScore": 20},
            {"name": "Project", "maxScore": 20},
            {"name": "Exam", "maxScore": 60, "isExam": True},
        ],
    )
    assert updated.name == "Renamed"
    assert [c.name for c in updated.components] == ["Test 1", "Project", "Exam"]


def test_update_blocks_changing_scored_component(db, seed, scored_template):
    with pytest.raises(ConflictError) as exc_info:
        update_template(
            db,
            seed.tenant,
            scored_template.id,
            assessments=[
                {"name": "Test 1", "maxScore": 30},
                {"name": "Test 2", "maxScore": 10},
                {"name": "Exam", "maxScore": 60, "isExam": True},
            ],
        )
    assert "Test 1" in exc_info.value.message


def test_update_blocks_removing_scored_component(db, seed, scored_template):
    with pytest.raises(ConflictError):
        update_template(
            db,
            seed.tenant,
            scored_template.id,
            assessments=[
                {"name": "Test 2", "maxScore": 40},
                {"name": "Exam", "maxScore": 60, "isExam": True},
            ],
        )


def test_update_validates_total(db, seed, scored_template):
    with pytest.raises(BadRequestError):
        update_template(
            db,
            seed.tenant,
            scored_template.id,
            assessments=[{"name": "Test 1", "maxScore": 20}],
        )


def test_update_missing_template(db, seed):
    with pytest.raises(NotFoundError):
        update_template(db, seed.tenant, "missing", name="x")


def test_delete_blocked_while_in_use(db, seed, scored_template):
    with pytest.raises(ConflictError):
        delete_template(db, seed.tenant, scored_template.id)


def test_delete_unused_template(db, seed):
    template = create_template(
        db, seed.tenant, seed.current_session.id, "Rubric", THREE_PARTS
    )
    delete_template(db, seed.tenant, template.id)

    assert list_templates(db, seed.tenant) == []
    assert (
        find_template_for_session_read_only(db, seed.school.id, seed.current_session.id)
        is None
    )
    with pytest.raises(NotFoundError):
        delete_template(db, seed.tenant, template.id)


def test_other_school_cannot_touch_template(db, seed):
    template = create_template(
        db, seed.tenant, seed.current_session.id, "Rubric", THREE_PARTS
    )
    with pytest.raises(NotFoundError):
        delete_template(db, seed.other_tenant, template.id)
