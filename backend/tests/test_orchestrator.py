import asyncio

import pytest

from conftest import FakeTransport, make_final, make_outline
from playplan.agents.prompts import Stage
from playplan.agents.transport import TransportError
from playplan.services.errors import ErrorCode, GenerationError
from playplan.services.orchestrator import (
    TRANSITIONS,
    InvalidTransitionError,
    OrchestratorState,
    _Run,
)

RECENT = ["Sink or Float Lab Children test which classroom objects sink or float"]


def outline_without_safety_checks() -> dict:
    outline = make_outline()
    del outline["safety_checks"]
    return outline


async def test_happy_path_echoes_request(make_orchestrator, request_params):
    transport = FakeTransport(make_outline(), make_final())

    result = await make_orchestrator(transport).run(request_params)

    activity = result.activity.activity
    assert activity.duration_minutes == 45
    assert activity.group_size == 12
    assert activity.theme == "STEM"
    assert result.outline.materials[0] == "water trays"
    assert result.novelty is None
    assert result.pipeline_runs == 1
    assert [(a.stage, a.status) for a in result.attempts] == [
        (Stage.OUTLINE, "success"),
        (Stage.FINAL, "success"),
    ]
    assert result.model_name == "test-model"


async def test_final_prompt_is_built_from_validated_outline(make_orchestrator, request_params):
    transport = FakeTransport(make_outline(concept="Floating boats"), make_final())

    await make_orchestrator(transport).run(request_params)

    assert "Floating boats" in transport.prompts[1].user_text


async def test_outline_retried_with_identical_prompt(make_orchestrator, request_params):
    transport = FakeTransport(outline_without_safety_checks(), make_outline(), make_final())

    result = await make_orchestrator(transport).run(request_params)

    assert transport.prompts[0] == transport.prompts[1]
    assert [a.status for a in result.attempts] == ["invalid", "success", "success"]


async def test_outline_budget_exhausted(make_orchestrator, request_params):
    transport = FakeTransport(*[outline_without_safety_checks()] * 3)

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(transport).run(request_params)

    error = exc_info.value
    assert error.code is ErrorCode.OUTLINE_VALIDATION_FAILED
    assert not error.retryable
    assert len(transport.prompts) == 3
    assert "safety_checks" in error.message
    assert len(error.details) == 3
    assert error.details[0].startswith("attempt 1: safety_checks")
    assert len(error.attempts) == 3


async def test_invalid_json_and_missing_output_consume_attempts(make_orchestrator, request_params):
    transport = FakeTransport("Sure! Here is your plan:", None, make_outline(), make_final())

    result = await make_orchestrator(transport).run(request_params)

    assert [a.status for a in result.attempts] == [
        "invalid_json",
        "missing_output",
        "success",
        "success",
    ]


async def test_deeply_nested_output_counts_as_invalid_json(make_orchestrator, request_params):
    transport = FakeTransport("[" * 200000, make_outline(), make_final())

    result = await make_orchestrator(transport).run(request_params)

    assert [a.status for a in result.attempts] == ["invalid_json", "success", "success"]
    assert "nesting is too deep" in result.attempts[0].violations[0]


async def test_deeply_nested_output_exhausts_outline_budget(make_orchestrator, request_params):
    transport = FakeTransport(*["[" * 200000] * 3)

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(transport).run(request_params)

    assert exc_info.value.code is ErrorCode.OUTLINE_VALIDATION_FAILED
    assert len(exc_info.value.attempts) == 3


async def test_custom_outline_budget(make_orchestrator, request_params):
    transport = FakeTransport("not json")

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(transport, outline_max_retries=0).run(request_params)

    assert exc_info.value.code is ErrorCode.OUTLINE_VALIDATION_FAILED
    assert "not valid JSON" in exc_info.value.message


async def test_final_budget_exhausted(make_orchestrator, request_params):
    bad_final = make_final(steps=[{"step": 1, "instruction": "Play", "time_minutes": 5}])
    transport = FakeTransport(make_outline(), bad_final, bad_final)

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(transport).run(request_params)

    error = exc_info.value
    assert error.code is ErrorCode.FINAL_VALIDATION_FAILED
    assert not error.retryable
    assert "duration_minutes" in error.message
    assert len(transport.prompts) == 3


async def test_final_activity_must_echo_request(make_orchestrator, request_params):
    drifted = make_final(
        duration_minutes=30,
        steps=[{"step": 1, "instruction": "Play", "time_minutes": 30}],
    )
    transport = FakeTransport(make_outline(), drifted, make_final())

    result = await make_orchestrator(transport).run(request_params)

    assert [a.status for a in result.attempts] == ["success", "invalid", "success"]
    assert result.attempts[1].violations == [
        "activity.duration_minutes (30) must match the requested value (45)."
    ]


async def test_transport_error_short_circuits_stage_budget(make_orchestrator, request_params):
    transport = FakeTransport(TransportError("HTTP 503"), make_outline(), make_final())

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(transport).run(request_params)

    error = exc_info.value
    assert error.code is ErrorCode.OPENAI_ERROR
    assert error.retryable
    assert len(transport.prompts) == 1
    assert error.attempts[0].status == "error"


async def test_timeout_is_reported_as_openai_timeout(make_orchestrator, request_params):
    class Hanging:
        async def submit(self, prompt):
            await asyncio.sleep(10)

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(Hanging(), deadline_seconds=0.01).run(request_params)

    assert exc_info.value.code is ErrorCode.OPENAI_TIMEOUT
    assert exc_info.value.retryable


async def test_novelty_gate_skipped_without_regenerate(make_orchestrator, request_params):
    transport = FakeTransport(make_outline(), make_final())

    result = await make_orchestrator(transport).run(request_params, RECENT)

    assert result.novelty is None


async def test_novelty_gate_skipped_without_recent_concepts(make_orchestrator, request_params):
    request = request_params.model_copy(update={"regenerate": True})
    transport = FakeTransport(make_outline(), make_final())

    result = await make_orchestrator(transport).run(request, [])

    assert result.novelty is None
    assert result.pipeline_runs == 1


async def test_novelty_approved_on_first_run(make_orchestrator, request_params):
    request = request_params.model_copy(update={"regenerate": True})
    transport = FakeTransport(
        make_outline(concept="Children make shadow puppets with torches"),
        make_final(title="Shadow Theatre"),
    )

    result = await make_orchestrator(transport).run(request, RECENT)

    assert result.novelty.approved
    assert result.pipeline_runs == 1
    assert "Avoid these recent concepts/titles: " + RECENT[0] in transport.prompts[0].user_text


async def test_novelty_rejection_retries_whole_pipeline_once(make_orchestrator, request_params):
    request = request_params.model_copy(update={"regenerate": True})
    transport = FakeTransport(
        make_outline(),
        make_final(),
        make_outline(concept="Children make shadow puppets with torches"),
        make_final(title="Shadow Theatre"),
    )

    result = await make_orchestrator(transport).run(request, RECENT)

    assert result.pipeline_runs == 2
    assert result.novelty.approved
    assert result.activity.activity.title == "Shadow Theatre"
    assert len(transport.prompts) == 4
    # The rejected title joins the avoid list for the second outline
    assert "Sink or Float Lab." in transport.prompts[2].user_text


async def test_novelty_failure_after_single_retry(make_orchestrator, request_params):
    request = request_params.model_copy(update={"regenerate": True})
    transport = FakeTransport(make_outline(), make_final(), make_outline(), make_final())

    with pytest.raises(GenerationError) as exc_info:
        await make_orchestrator(transport).run(request, RECENT)

    error = exc_info.value
    assert error.code is ErrorCode.NOVELTY_CHECK_FAILED
    assert not error.retryable
    assert RECENT[0] in error.message
    assert len(transport.prompts) == 4


async def test_runs_share_no_state(make_orchestrator, request_params):
    orchestrator = make_orchestrator(
        FakeTransport(make_outline(), make_final(), make_outline(), make_final())
    )

    first, second = await asyncio.gather(
        orchestrator.run(request_params), orchestrator.run(request_params)
    )

    assert len(first.attempts) == 2
    assert len(second.attempts) == 2


def test_invalid_transition_raises(request_params):
    run = _Run(request=request_params, recent_concepts=[])

    with pytest.raises(InvalidTransitionError):
        run.transition(OrchestratorState.DONE)


def test_failed_is_reachable_from_every_non_terminal_state(request_params):
    for state in OrchestratorState:
        if state in (OrchestratorState.DONE, OrchestratorState.FAILED):
            continue
        run = _Run(request=request_params, recent_concepts=[], state=state)
        run.transition(OrchestratorState.FAILED)
        assert run.state is OrchestratorState.FAILED


def test_terminal_states_have_no_outgoing_transitions():
    assert not any(
        source in (OrchestratorState.DONE, OrchestratorState.FAILED) for source, _ in TRANSITIONS
    )
