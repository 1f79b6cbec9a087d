import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from playplan.agents.client import AgentTimer, GenerationClient
from playplan.agents.transport import PydanticAITransport
from playplan.config import settings
from playplan.db import repo
from playplan.db.models import StageLog
from playplan.schemas.request import GenerateActivityPayload
from playplan.services.domain_config import DomainConfig, get_domain_config
from playplan.services.errors import GenerationError, RequestInvalidError
from playplan.services.orchestrator import (
    ActivityOrchestrator,
    OrchestrationResult,
    OrchestratorOptions,
    StageAttempt,
)
from playplan.services.pilot_auth import verify_pilot_token
from playplan.services.rate_limit import enforce_rate_limit

logger = logging.getLogger(__name__)


def get_orchestrator() -> ActivityOrchestrator:
    """FastAPI dependency building the production orchestrator."""
    return ActivityOrchestrator(
        client=GenerationClient(PydanticAITransport()),
        domain_config=get_domain_config(),
        options=OrchestratorOptions.from_settings(settings),
    )


def parse_generate_payload(raw: Any, domain_config: DomainConfig) -> GenerateActivityPayload:
    try:
        return GenerateActivityPayload.model_validate(
            raw, context={"domain_config": domain_config}
        )
    except ValidationError as e:
        message = " ".join(error["msg"] for error in e.errors())
        raise RequestInvalidError(message) from e


def _stage_logs(attempts: list[StageAttempt]) -> list[StageLog]:
    return [
        StageLog(
            stage=attempt.stage.value,
            attempt=attempt.attempt,
            status=attempt.status,
            prompt=attempt.prompt.user_text,
            output=attempt.output,
            violations=attempt.violations,
            duration_ms=attempt.duration_ms,
            input_tokens=attempt.input_tokens,
            output_tokens=attempt.output_tokens,
            model_name=attempt.model_name,
        )
        for attempt in attempts
    ]


async def generate_activity(
    db: AsyncSession,
    payload: GenerateActivityPayload,
    orchestrator: ActivityOrchestrator,
) -> OrchestrationResult:
    """Authenticate, charge the daily quota, orchestrate and record the outcome.

    A failed orchestration is recorded and committed before the error is
    re-raised, so both the quota charge and the failure row survive the
    request's rollback.
    """
    auth = await verify_pilot_token(db, payload.pilot_token)
    quota = await enforce_rate_limit(db, auth.institution_id)

    request = payload.to_generation_request()
    recent_concepts: list[str] = []
    if request.regenerate:
        recent_concepts = await repo.list_recent_concepts(
            db, auth.institution_id, settings.recent_concepts_limit
        )

    with AgentTimer() as timer:
        try:
            result = await orchestrator.run(request, recent_concepts)
        except GenerationError as e:
            await repo.create_generation(
                db,
                auth.institution_id,
                payload.logged_payload(),
                validation_pass=False,
                latency_ms=timer.duration_ms,
                model_name=next(
                    (a.model_name for a in reversed(e.attempts) if a.model_name), None
                ),
                regenerate_flag=request.regenerate,
                error_code=e.code.value,
                stage_logs=_stage_logs(e.attempts),
            )
            await db.commit()
            raise

    generation = await repo.create_generation(
        db,
        auth.institution_id,
        payload.logged_payload(),
        outline_json=result.outline.model_dump(),
        final_json=result.activity.model_dump(),
        validation_pass=True,
        latency_ms=timer.duration_ms,
        model_name=result.model_name,
        regenerate_flag=request.regenerate,
        stage_logs=_stage_logs(result.attempts),
    )
    logger.info(
        "Generated activity '%s' for institution %s (generation %s, %d ms, %d/%d left today)",
        result.activity.activity.title,
        auth.institution_id,
        generation.id,
        timer.duration_ms,
        quota.remaining,
        quota.limit,
    )
    return result
