import pytest

from conftest import make_final, make_outline
from playplan.services.validators import (
    ValidationRules,
    validate_final_activity,
    validate_outline,
)


def test_valid_outline_passes():
    result = validate_outline(make_outline())

    assert result.ok
    assert result.errors == []
    assert result.value.activity_concept.startswith("Children test")
    assert len(result.value.step_plan) == 3


def test_outline_ignores_unknown_keys():
    result = validate_outline(make_outline(notes="extra"))
    assert result.ok


def test_outline_missing_safety_checks_is_structural_failure():
    outline = make_outline()
    del outline["safety_checks"]

    result = validate_outline(outline)

    assert not result.ok
    assert result.value is None
    assert any(error.startswith("safety_checks") for error in result.errors)


def test_outline_structural_failure_skips_domain_checks():
    # Too few materials would be a domain violation, but the shape error comes first
    result = validate_outline(make_outline(materials=["one"], step_plan="not a list"))

    assert not result.ok
    assert all(not error.startswith("materials") for error in result.errors)
    assert any(error.startswith("step_plan") for error in result.errors)


def test_outline_rejects_string_minutes():
    outline = make_outline()
    outline["step_plan"][0]["time_minutes"] = "10"

    result = validate_outline(outline)

    assert not result.ok
    assert any(error.startswith("step_plan.0.time_minutes") for error in result.errors)


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("materials", ["water", "blocks"]),
        ("step_plan", [{"step": 1, "label": "Play", "time_minutes": 45}]),
        ("safety_checks", ["supervise"]),
    ],
)
def test_outline_domain_minimums_name_the_field(field, value):
    result = validate_outline(make_outline(**{field: value}))

    assert not result.ok
    assert len(result.errors) == 1
    assert result.errors[0].startswith(field)


def test_outline_collects_all_domain_violations():
    result = validate_outline(make_outline(materials=[], step_plan=[], safety_checks=[]))

    assert [error.split(" ")[0] for error in result.errors] == [
        "materials",
        "step_plan",
        "safety_checks",
    ]


def test_outline_rules_can_be_tightened():
    rules = ValidationRules(min_materials=5)
    result = validate_outline(make_outline(), rules)

    assert result.errors == ["materials must have at least 5 items."]


def test_valid_final_activity_passes():
    result = validate_final_activity(make_final())

    assert result.ok
    assert result.value.activity.duration_minutes == 45
    assert result.value.schema_version == "activity.v1"


def test_final_activity_rejects_unknown_keys():
    document = make_final()
    document["activity"]["mood"] = "happy"

    result = validate_final_activity(document)

    assert not result.ok
    assert any("activity.mood" in error for error in result.errors)


def test_final_activity_rejects_wrong_schema_version():
    document = make_final()
    document["schema_version"] = "activity.v2"

    result = validate_final_activity(document)

    assert not result.ok
    assert any(error.startswith("schema_version") for error in result.errors)


def test_final_activity_teacher_tips_must_be_a_list():
    result = validate_final_activity(make_final(teacher_tips="Smile"))

    assert not result.ok
    assert any(error.startswith("activity.teacher_tips") for error in result.errors)


def test_final_activity_duration_mismatch():
    steps = [
        {"step": 1, "instruction": "Play", "time_minutes": 10},
        {"step": 2, "instruction": "Tidy", "time_minutes": 10},
    ]
    result = validate_final_activity(make_final(steps=steps))

    assert not result.ok
    assert result.errors == [
        "steps time_minutes total (20) must be within ±10 minutes of duration_minutes (45)."
    ]


def test_final_activity_duration_tolerance_is_inclusive():
    steps = [{"step": 1, "instruction": "Play", "time_minutes": 35}]
    assert validate_final_activity(make_final(steps=steps)).ok


def test_final_activity_empty_lists_collected_together():
    result = validate_final_activity(make_final(materials=[], steps=[], safety_notes=[]))

    assert not result.ok
    assert "materials must not be empty." in result.errors
    assert "steps must not be empty." in result.errors
    assert "safety_notes must not be empty." in result.errors
    assert any("duration_minutes" in error for error in result.errors)


def test_validation_is_idempotent():
    outline = validate_outline(make_outline()).value
    again = validate_outline(outline.model_dump())
    assert again.ok
    assert again.value == outline

    document = validate_final_activity(make_final()).value
    again = validate_final_activity(document.model_dump())
    assert again.ok
    assert again.value == document


def test_final_activity_echo_checked_against_request(request_params):
    result = validate_final_activity(make_final(theme="Art", group_size=8), request=request_params)

    assert not result.ok
    assert result.errors == [
        "activity.group_size (8) must match the requested value (12).",
        "activity.theme (Art) must match the requested value (STEM).",
    ]


def test_final_activity_echo_not_checked_without_request():
    assert validate_final_activity(make_final(theme="Art")).ok
