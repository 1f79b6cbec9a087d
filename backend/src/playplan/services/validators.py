from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from playplan.schemas.activity import FinalActivityDocument, Outline
from playplan.schemas.request import GenerationRequest

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class ValidationRules:
    min_materials: int = 3
    min_steps: int = 3
    min_safety_checks: int = 3
    time_tolerance_minutes: int = 10


DEFAULT_RULES = ValidationRules()

ECHOED_FIELDS = ("age_group", "duration_minutes", "group_size", "theme")


@dataclass
class ValidationResult(Generic[T]):
    value: T | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors


def format_validation_error(exc: ValidationError) -> list[str]:
    """Render pydantic errors as ``"<location>: <message>"`` strings."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return messages


def _parse(model: type[T], value: Any) -> ValidationResult[T]:
    try:
        return ValidationResult(value=model.model_validate(value))
    except ValidationError as exc:
        return ValidationResult(errors=format_validation_error(exc))


def validate_outline(
    value: Any, rules: ValidationRules = DEFAULT_RULES
) -> ValidationResult[Outline]:
    parsed = _parse(Outline, value)
    if parsed.errors:
        return parsed

    outline = parsed.value
    errors: list[str] = []

    if len(outline.materials) < rules.min_materials:
        errors.append(f"materials must have at least {rules.min_materials} items.")
    if len(outline.step_plan) < rules.min_steps:
        errors.append(f"step_plan must have at least {rules.min_steps} steps.")
    if len(outline.safety_checks) < rules.min_safety_checks:
        errors.append(
            f"safety_checks must have at least {rules.min_safety_checks} items."
        )

    if errors:
        return ValidationResult(errors=errors)
    return parsed


def validate_final_activity(
    value: Any,
    rules: ValidationRules = DEFAULT_RULES,
    request: GenerationRequest | None = None,
) -> ValidationResult[FinalActivityDocument]:
    """Validate a final document; with ``request``, the echoed request fields must match it."""
    parsed = _parse(FinalActivityDocument, value)
    if parsed.errors:
        return parsed

    activity = parsed.value.activity
    errors: list[str] = []

    if not activity.materials:
        errors.append("materials must not be empty.")
    if not activity.steps:
        errors.append("steps must not be empty.")
    if not activity.safety_notes:
        errors.append("safety_notes must not be empty.")

    step_total = sum(step.time_minutes for step in activity.steps)
    if abs(step_total - activity.duration_minutes) > rules.time_tolerance_minutes:
        errors.append(
            f"steps time_minutes total ({step_total}) must be within "
            f"±{rules.time_tolerance_minutes} minutes of duration_minutes "
            f"({activity.duration_minutes})."
        )

    if request is not None:
        for name in ECHOED_FIELDS:
            echoed, requested = getattr(activity, name), getattr(request, name)
            if echoed != requested:
                errors.append(
                    f"activity.{name} ({echoed}) must match the requested value ({requested})."
                )

    if errors:
        return ValidationResult(errors=errors)
    return parsed
