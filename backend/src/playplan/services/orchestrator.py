import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from playplan.agents.client import GenerationClient, GenerationOutput
from playplan.agents.prompts import PromptContext, Stage, StagePrompt, build_stage_prompt
from playplan.config import Settings
from playplan.schemas.activity import FinalActivityDocument, Outline
from playplan.schemas.request import GenerationRequest
from playplan.services.domain_config import DomainConfig
from playplan.services.errors import ErrorCode, GenerationClientError, GenerationError
from playplan.services.novelty import DEFAULT_NOVELTY_THRESHOLD, NoveltyResult, check_novelty
from playplan.services.validators import (
    ValidationResult,
    ValidationRules,
    validate_final_activity,
    validate_outline,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    pass


class OrchestratorState(StrEnum):
    STAGE1_PENDING = "stage1_pending"
    STAGE1_VALIDATING = "stage1_validating"
    STAGE2_PENDING = "stage2_pending"
    STAGE2_VALIDATING = "stage2_validating"
    NOVELTY_CHECKING = "novelty_checking"
    DONE = "done"
    FAILED = "failed"


S = OrchestratorState

# Valid transitions; any non-terminal state may also move to FAILED
TRANSITIONS: set[tuple[OrchestratorState, OrchestratorState]] = {
    (S.STAGE1_PENDING, S.STAGE1_VALIDATING),
    (S.STAGE1_VALIDATING, S.STAGE1_PENDING),  # retry within the outline budget
    (S.STAGE1_VALIDATING, S.STAGE2_PENDING),
    (S.STAGE2_PENDING, S.STAGE2_VALIDATING),
    (S.STAGE2_VALIDATING, S.STAGE2_PENDING),  # retry within the final budget
    (S.STAGE2_VALIDATING, S.NOVELTY_CHECKING),
    (S.STAGE2_VALIDATING, S.DONE),
    (S.NOVELTY_CHECKING, S.DONE),
    (S.NOVELTY_CHECKING, S.STAGE1_PENDING),  # whole-pipeline retry
}

TERMINAL_STATES = {S.DONE, S.FAILED}


@dataclass(frozen=True)
class OrchestratorOptions:
    deadline_seconds: float = 25.0
    transport_max_retries: int = 0
    outline_max_retries: int = 2
    final_max_retries: int = 1
    novelty_max_retries: int = 1
    novelty_threshold: float = DEFAULT_NOVELTY_THRESHOLD

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorOptions":
        return cls(
            deadline_seconds=settings.generation_timeout_seconds,
            transport_max_retries=settings.transport_max_retries,
            outline_max_retries=settings.outline_max_retries,
            final_max_retries=settings.final_max_retries,
            novelty_max_retries=settings.novelty_max_retries,
            novelty_threshold=settings.novelty_threshold,
        )


@dataclass
class StageAttempt:
    """One generation call plus its validation, as recorded in the trace."""

    stage: Stage
    attempt: int
    status: str  # success, invalid, invalid_json, missing_output, error
    violations: list[str]
    prompt: StagePrompt
    output: str | None = None
    duration_ms: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    model_name: str | None = None


@dataclass
class OrchestrationResult:
    activity: FinalActivityDocument
    outline: Outline
    novelty: NoveltyResult | None
    attempts: list[StageAttempt]
    pipeline_runs: int

    @property
    def model_name(self) -> str | None:
        for attempt in reversed(self.attempts):
            if attempt.model_name:
                return attempt.model_name
        return None


@dataclass
class _Run:
    request: GenerationRequest
    recent_concepts: list[str]
    state: OrchestratorState = S.STAGE1_PENDING
    attempts: list[StageAttempt] = field(default_factory=list)
    pipeline_runs: int = 0
    rejected_titles: list[str] = field(default_factory=list)

    def transition(self, target: OrchestratorState) -> None:
        allowed = (self.state, target) in TRANSITIONS or (
            target is S.FAILED and self.state not in TERMINAL_STATES
        )
        if not allowed:
            raise InvalidTransitionError(
                f"Cannot transition from '{self.state}' to '{target}'"
            )
        logger.debug("Orchestrator state %s → %s", self.state, target)
        self.state = target

    @property
    def novelty_gate_active(self) -> bool:
        return self.request.regenerate and bool(self.recent_concepts)


@dataclass(frozen=True)
class _StageSpec:
    stage: Stage
    label: str
    pending: OrchestratorState
    validating: OrchestratorState
    max_retries: int
    failure_code: ErrorCode
    validate: Callable[[Any], ValidationResult]


class ActivityOrchestrator:
    def __init__(
        self,
        client: GenerationClient,
        domain_config: DomainConfig,
        options: OrchestratorOptions | None = None,
    ):
        self.client = client
        self.domain_config = domain_config
        self.options = options or OrchestratorOptions()
        self.rules: ValidationRules = domain_config.validation_rules()

    async def run(
        self,
        request: GenerationRequest,
        recent_concepts: list[str] | None = None,
    ) -> OrchestrationResult:
        """Generate one validated activity for ``request``.

        Raises:
            GenerationError: exactly one terminal failure, with the attempt
                trace attached as ``attempts``.
        """
        run = _Run(request=request, recent_concepts=list(recent_concepts or []))
        try:
            return await self._run_pipeline(run)
        except GenerationError as e:
            run.transition(S.FAILED)
            e.attempts = run.attempts
            logger.warning(
                "Activity generation failed with %s after %d pipeline run(s): %s",
                e.code,
                run.pipeline_runs,
                e.message,
            )
            raise

    async def _run_pipeline(self, run: _Run) -> OrchestrationResult:
        while True:
            run.pipeline_runs += 1

            avoid = run.recent_concepts + run.rejected_titles
            outline_prompt = build_stage_prompt(
                Stage.OUTLINE,
                run.request,
                self.domain_config,
                PromptContext(recent_concepts=avoid),
            )
            outline: Outline = await self._run_stage(run, self._outline_spec(), outline_prompt)
            run.transition(S.STAGE2_PENDING)

            final_prompt = build_stage_prompt(
                Stage.FINAL,
                run.request,
                self.domain_config,
                PromptContext(outline=outline),
            )
            document: FinalActivityDocument = await self._run_stage(
                run, self._final_spec(run.request), final_prompt
            )

            if not run.novelty_gate_active:
                run.transition(S.DONE)
                return self._result(run, document, outline, None)

            run.transition(S.NOVELTY_CHECKING)
            novelty = check_novelty(
                document.activity.title,
                outline.activity_concept,
                run.recent_concepts,
                self.options.novelty_threshold,
            )
            if novelty.approved:
                run.transition(S.DONE)
                return self._result(run, document, outline, novelty)

            logger.info(
                "Novelty check rejected '%s' (score %.2f, most similar: %s)",
                document.activity.title,
                novelty.score,
                novelty.most_similar,
            )
            if run.pipeline_runs > self.options.novelty_max_retries:
                raise GenerationError(
                    ErrorCode.NOVELTY_CHECK_FAILED,
                    f"Generated activity '{document.activity.title}' is too similar to "
                    f"recent concept '{novelty.most_similar}' "
                    f"(score {novelty.score:.2f} >= {self.options.novelty_threshold:.2f}) "
                    f"after {run.pipeline_runs} attempt(s).",
                    retryable=False,
                    details=[f"{novelty.most_similar}: {novelty.score:.2f}"],
                )
            run.rejected_titles.append(document.activity.title)
            run.transition(S.STAGE1_PENDING)

    def _outline_spec(self) -> _StageSpec:
        return _StageSpec(
            stage=Stage.OUTLINE,
            label="Outline",
            pending=S.STAGE1_PENDING,
            validating=S.STAGE1_VALIDATING,
            max_retries=self.options.outline_max_retries,
            failure_code=ErrorCode.OUTLINE_VALIDATION_FAILED,
            validate=lambda value: validate_outline(value, self.rules),
        )

    def _final_spec(self, request: GenerationRequest) -> _StageSpec:
        return _StageSpec(
            stage=Stage.FINAL,
            label="Final activity",
            pending=S.STAGE2_PENDING,
            validating=S.STAGE2_VALIDATING,
            max_retries=self.options.final_max_retries,
            failure_code=ErrorCode.FINAL_VALIDATION_FAILED,
            validate=lambda value: validate_final_activity(value, self.rules, request),
        )

    async def _run_stage(self, run: _Run, spec: _StageSpec, prompt: StagePrompt):
        budget = 1 + spec.max_retries
        violations: list[str] = []
        errors: list[str] = []

        for attempt in range(1, budget + 1):
            if attempt > 1:
                run.transition(spec.pending)

            try:
                output = await self.client.generate(
                    prompt,
                    deadline=self.options.deadline_seconds,
                    max_transport_retries=self.options.transport_max_retries,
                )
            except GenerationClientError as e:
                run.attempts.append(
                    StageAttempt(spec.stage, attempt, "error", [e.message], prompt)
                )
                raise GenerationError(
                    e.code, e.message, e.retryable, details=violations + [e.message]
                ) from e

            run.transition(spec.validating)
            status, errors, value = self._check_output(output, spec.validate)
            run.attempts.append(
                StageAttempt(
                    stage=spec.stage,
                    attempt=attempt,
                    status=status,
                    violations=errors,
                    prompt=prompt,
                    output=output.text,
                    duration_ms=output.duration_ms,
                    input_tokens=output.input_tokens,
                    output_tokens=output.output_tokens,
                    model_name=output.model_name,
                )
            )
            if value is not None:
                return value

            violations.extend(f"attempt {attempt}: {message}" for message in errors)
            logger.warning(
                "%s attempt %d/%d rejected (%s): %s",
                spec.label,
                attempt,
                budget,
                status,
                "; ".join(errors),
            )

        raise GenerationError(
            spec.failure_code,
            f"{spec.label} failed validation after {budget} attempt(s): {'; '.join(errors)}",
            retryable=False,
            details=violations,
        )

    @staticmethod
    def _check_output(
        output: GenerationOutput, validate: Callable[[Any], ValidationResult]
    ) -> tuple[str, list[str], Any]:
        if output.text is None or not output.text.strip():
            return "missing_output", ["Model returned no text output."], None

        try:
            data = json.loads(output.text)
        except json.JSONDecodeError as e:
            return "invalid_json", [f"Output is not valid JSON: {e.msg} at position {e.pos}."], None
        except RecursionError:
            return "invalid_json", ["Output is not valid JSON: nesting is too deep."], None

        result = validate(data)
        if not result.ok:
            return "invalid", result.errors, None
        return "success", [], result.value

    @staticmethod
    def _result(
        run: _Run,
        document: FinalActivityDocument,
        outline: Outline,
        novelty: NoveltyResult | None,
    ) -> OrchestrationResult:
        return OrchestrationResult(
            activity=document,
            outline=outline,
            novelty=novelty,
            attempts=run.attempts,
            pipeline_runs=run.pipeline_runs,
        )
