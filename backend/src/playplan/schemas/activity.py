from typing import Literal

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr

ACTIVITY_SCHEMA_VERSION = "activity.v1"


class AdaptationsPlan(BaseModel):
    easier: list[StrictStr]
    harder: list[StrictStr]


class OutlineStep(BaseModel):
    step: StrictInt
    label: StrictStr
    time_minutes: StrictInt


class Outline(BaseModel):
    """Output of the outline stage. Unknown keys are dropped."""

    activity_concept: StrictStr
    learning_outcomes: list[StrictStr]
    materials: list[StrictStr]
    step_plan: list[OutlineStep]
    adaptations_plan: AdaptationsPlan
    safety_checks: list[StrictStr]


class Adaptations(BaseModel):
    model_config = ConfigDict(extra="forbid")

    easier: list[StrictStr]
    harder: list[StrictStr]


class ActivityStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step: StrictInt
    instruction: StrictStr
    time_minutes: StrictInt


class FinalActivity(BaseModel):
    """The fully detailed activity returned to the caller."""

    model_config = ConfigDict(extra="forbid")

    title: StrictStr
    age_group: StrictStr
    duration_minutes: StrictInt
    group_size: StrictInt
    theme: StrictStr
    goal: StrictStr
    learning_outcomes: list[StrictStr]
    materials: list[StrictStr]
    steps: list[ActivityStep]
    adaptations: Adaptations
    backup_plan: StrictStr
    teacher_tips: list[StrictStr]
    safety_notes: list[StrictStr]


class FinalActivityDocument(BaseModel):
    """Output of the final stage: a schema-versioned activity document."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal["activity.v1"]
    activity: FinalActivity
