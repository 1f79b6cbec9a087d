from dataclasses import dataclass
from typing import Protocol

from pydantic_ai.direct import model_request
from pydantic_ai.exceptions import ModelHTTPError, UserError
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from playplan.agents.prompts import StagePrompt
from playplan.config import settings

RETRYABLE_STATUS = {408, 429}


@dataclass(frozen=True)
class TransportResponse:
    output_text: str | None
    model_name: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


class TransportError(Exception):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class Transport(Protocol):
    async def submit(self, prompt: StagePrompt) -> TransportResponse: ...


def extract_text(response: ModelResponse) -> str | None:
    """Concatenate the text parts of a model response, or None if there are none."""
    text = "".join(part.content for part in response.parts if isinstance(part, TextPart))
    return text or None


class PydanticAITransport:
    """Sends the prompt as a single direct model request through PydanticAI."""

    def __init__(self, model: Model | str | None = None, temperature: float | None = None):
        self.model = model or settings.default_model
        self.temperature = temperature

    async def submit(self, prompt: StagePrompt) -> TransportResponse:
        messages = [
            ModelRequest(
                parts=[
                    SystemPromptPart(content=prompt.system_text),
                    UserPromptPart(content=prompt.user_text),
                ]
            )
        ]
        model_settings = {"temperature": self.temperature} if self.temperature is not None else None

        try:
            response = await model_request(self.model, messages, model_settings=model_settings)
        except UserError as e:
            # Misconfiguration (unknown model, missing API key) will not heal on retry
            raise TransportError(str(e), retryable=False) from e
        except ModelHTTPError as e:
            retryable = e.status_code >= 500 or e.status_code in RETRYABLE_STATUS
            raise TransportError(
                f"Model returned HTTP {e.status_code}", retryable=retryable
            ) from e

        usage = response.usage
        return TransportResponse(
            output_text=extract_text(response),
            model_name=response.model_name,
            input_tokens=usage.input_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
        )
