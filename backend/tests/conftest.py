import json
from pathlib import Path

import pytest

from playplan.agents.client import GenerationClient
from playplan.agents.transport import TransportResponse
from playplan.schemas.request import GenerationRequest
from playplan.services.domain_config import clear_domain_config, load_domain_config
from playplan.services.orchestrator import ActivityOrchestrator, OrchestratorOptions

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class FakeTransport:
    """Replays scripted responses: dicts are sent as JSON, strings verbatim,
    None as a response without text, and exceptions are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    async def submit(self, prompt):
        self.prompts.append(prompt)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if item is None or isinstance(item, str):
            text = item
        else:
            text = json.dumps(item)
        return TransportResponse(
            output_text=text, model_name="test-model", input_tokens=10, output_tokens=20
        )


def make_outline(concept: str = "Children test which classroom objects sink or float", **overrides) -> dict:
    outline = {
        "activity_concept": concept,
        "learning_outcomes": ["make a prediction", "observe what happens"],
        "materials": ["water trays", "wooden blocks", "pebbles", "sponges"],
        "step_plan": [
            {"step": 1, "label": "Gather and predict", "time_minutes": 10},
            {"step": 2, "label": "Test objects", "time_minutes": 20},
            {"step": 3, "label": "Sort and share", "time_minutes": 15},
        ],
        "adaptations_plan": {"easier": ["use fewer objects"], "harder": ["record results"]},
        "safety_checks": [
            "supervise water trays",
            "wipe spills immediately",
            "no objects smaller than 3 cm",
        ],
    }
    outline.update(overrides)
    return outline


def make_final(
    title: str = "Sink or Float Lab",
    age_group: str = "3-4",
    duration_minutes: int = 45,
    group_size: int = 12,
    theme: str = "STEM",
    **overrides,
) -> dict:
    activity = {
        "title": title,
        "age_group": age_group,
        "duration_minutes": duration_minutes,
        "group_size": group_size,
        "theme": theme,
        "goal": "Children predict and test whether objects sink or float.",
        "learning_outcomes": ["make a prediction", "describe what they observe"],
        "materials": ["water trays", "wooden blocks", "pebbles"],
        "steps": [
            {"step": 1, "instruction": "Show the objects and ask for predictions.", "time_minutes": 10},
            {"step": 2, "instruction": "Let each child test two objects.", "time_minutes": 20},
            {"step": 3, "instruction": "Sort the objects into sink and float groups.", "time_minutes": 15},
        ],
        "adaptations": {"easier": ["test one object each"], "harder": ["count floating objects"]},
        "backup_plan": "Use a picture sorting game if water play is not possible.",
        "teacher_tips": ["Ask 'why do you think so?'", "Keep towels nearby."],
        "safety_notes": ["Supervise all water play."],
    }
    activity.update(overrides)
    return {"schema_version": "activity.v1", "activity": activity}


@pytest.fixture
def domain_config():
    config = load_domain_config(CONFIG_DIR)
    yield config
    clear_domain_config()


@pytest.fixture
def request_params() -> GenerationRequest:
    return GenerationRequest(
        age_group="3-4",
        duration_minutes=45,
        theme="STEM",
        group_size=12,
        regenerate=False,
    )


@pytest.fixture
def make_orchestrator(domain_config):
    def _make(transport, **options) -> ActivityOrchestrator:
        return ActivityOrchestrator(
            client=GenerationClient(transport, backoff_base=0, backoff_cap=0),
            domain_config=domain_config,
            options=OrchestratorOptions(**options),
        )

    return _make
