import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from playplan.config import settings
from playplan.services.validators import ValidationRules

logger = logging.getLogger(__name__)


class AgeGroupConfig(BaseModel):
    label: str
    development_focus: list[str]
    constraints: list[str]
    pedagogical_notes: list[str]


class ThemeConfig(BaseModel):
    label: str
    learning_outcomes: list[str]
    suggested_activity_types: list[str]
    materials_pool: list[str]


class ActivityTemplatesConfig(BaseModel):
    schema_version: Literal["activity.v1"]
    required_sections: list[str]
    style_rules: list[str]
    min_steps: int | None = Field(default=None, gt=0)
    min_materials: int | None = Field(default=None, gt=0)
    time_tolerance_minutes: int | None = Field(default=None, gt=0)


class DomainConfig(BaseModel):
    """Static lookup tables for prompt building and request validation."""

    age_groups: dict[str, AgeGroupConfig]
    themes: dict[str, ThemeConfig]
    activity_templates: ActivityTemplatesConfig
    safety_rules: list[str]

    def validation_rules(self) -> ValidationRules:
        defaults = ValidationRules()
        template = self.activity_templates
        return ValidationRules(
            min_materials=template.min_materials or defaults.min_materials,
            min_steps=template.min_steps or defaults.min_steps,
            min_safety_checks=defaults.min_safety_checks,
            time_tolerance_minutes=(
                template.time_tolerance_minutes or defaults.time_tolerance_minutes
            ),
        )


# In-memory config loaded at startup
_domain_config: DomainConfig | None = None


def _read_json(base: Path, filename: str):
    return json.loads((base / filename).read_text(encoding="utf-8"))


def load_domain_config(config_dir: Path | None = None) -> DomainConfig:
    global _domain_config
    base = config_dir or settings.config_dir
    _domain_config = DomainConfig(
        age_groups=_read_json(base, "age_groups.json"),
        themes=_read_json(base, "themes.json"),
        activity_templates=_read_json(base, "activity_templates.json"),
        safety_rules=_read_json(base, "safety_rules.json"),
    )
    logger.info(
        "Loaded domain config from %s (%d age groups, %d themes)",
        base,
        len(_domain_config.age_groups),
        len(_domain_config.themes),
    )
    return _domain_config


def get_domain_config() -> DomainConfig:
    if _domain_config is None:
        return load_domain_config()
    return _domain_config


def clear_domain_config() -> None:
    global _domain_config
    _domain_config = None
