from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationInfo,
    field_validator,
)

from playplan.schemas.activity import FinalActivity

DURATION_OPTIONS = (30, 45, 60)
GROUP_SIZE_MIN = 2
GROUP_SIZE_MAX = 30
PILOT_TOKEN_MIN_LENGTH = 32
PILOT_TOKEN_MAX_LENGTH = 128
PILOT_TOKEN_PATTERN = r"^[A-Za-z0-9_-]+$"

EnergyLevel = Literal["calm", "medium", "active"]
CurriculumStyle = Literal["Play-based", "Montessori-inspired", "Reggio-inspired", "Mixed"]


class GenerationRequest(BaseModel):
    """Validated caller parameters for one orchestration run."""

    model_config = ConfigDict(frozen=True)

    age_group: str
    duration_minutes: int
    theme: str
    group_size: int
    energy_level: EnergyLevel | None = None
    curriculum_style: CurriculumStyle | None = None
    regenerate: bool = False


class GenerateActivityPayload(BaseModel):
    """Body of ``POST /api/generate-activity``.

    Age groups and themes are checked against the domain config passed in the
    validation context as ``{"domain_config": DomainConfig}``.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    pilot_token: StrictStr = Field(
        min_length=PILOT_TOKEN_MIN_LENGTH,
        max_length=PILOT_TOKEN_MAX_LENGTH,
        pattern=PILOT_TOKEN_PATTERN,
    )
    age_group: StrictStr
    duration_minutes: StrictInt
    theme: StrictStr
    group_size: StrictInt = Field(ge=GROUP_SIZE_MIN, le=GROUP_SIZE_MAX)
    energy_level: EnergyLevel | None = None
    curriculum_style: CurriculumStyle | None = None
    regenerate: StrictBool = False

    @field_validator("age_group")
    @classmethod
    def age_group_supported(cls, v: str, info: ValidationInfo) -> str:
        config = (info.context or {}).get("domain_config")
        if config is not None and v not in config.age_groups:
            raise ValueError("Unsupported age_group.")
        return v

    @field_validator("theme")
    @classmethod
    def theme_supported(cls, v: str, info: ValidationInfo) -> str:
        config = (info.context or {}).get("domain_config")
        if config is not None and v not in config.themes:
            raise ValueError("Unsupported theme.")
        return v

    @field_validator("duration_minutes")
    @classmethod
    def duration_supported(cls, v: int) -> int:
        if v not in DURATION_OPTIONS:
            raise ValueError("Unsupported duration_minutes.")
        return v

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(**self.model_dump(exclude={"pilot_token"}))

    def logged_payload(self) -> dict[str, Any]:
        """Request payload as persisted, without the credential."""
        return self.model_dump(exclude={"pilot_token"})


class GenerateActivityResponse(BaseModel):
    schema_version: str
    activity: FinalActivity
