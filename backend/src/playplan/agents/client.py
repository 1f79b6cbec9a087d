import asyncio
import logging
import time
from dataclasses import dataclass

from playplan.agents.prompts import StagePrompt
from playplan.agents.transport import Transport, TransportError
from playplan.services.errors import ErrorCode, GenerationClientError

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 0.5
BACKOFF_CAP_SECONDS = 4.0


@dataclass(frozen=True)
class GenerationOutput:
    """Textual payload of one generation call. ``text`` is None when the model
    returned no text at all; that is a content failure, not a client error."""

    text: str | None
    model_name: str | None
    input_tokens: int | None
    output_tokens: int | None
    duration_ms: int


class AgentTimer:
    """Simple context manager for timing model calls."""

    def __enter__(self):
        self._start = time.monotonic()
        return self

    def __exit__(self, *args):
        pass

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


class GenerationClient:
    """Runs one logical generation call with a deadline and transport retries."""

    def __init__(
        self,
        transport: Transport,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        backoff_cap: float = BACKOFF_CAP_SECONDS,
    ):
        self.transport = transport
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2**attempt), self.backoff_cap)

    async def generate(
        self,
        prompt: StagePrompt,
        deadline: float,
        max_transport_retries: int = 0,
    ) -> GenerationOutput:
        """Submit ``prompt``, allowing ``deadline`` seconds per attempt.

        Raises:
            GenerationClientError: ``OPENAI_TIMEOUT`` when every attempt ran past
                the deadline, ``OPENAI_ERROR`` for any other transport failure.
        """
        attempt = 0
        while True:
            with AgentTimer() as timer:
                try:
                    async with asyncio.timeout(deadline):
                        response = await self.transport.submit(prompt)
                except TimeoutError as e:
                    cause: Exception = e
                    error = GenerationClientError(
                        ErrorCode.OPENAI_TIMEOUT,
                        f"Generation request timed out after {deadline:g}s.",
                        retryable=True,
                    )
                except TransportError as e:
                    cause = e
                    error = GenerationClientError(
                        ErrorCode.OPENAI_ERROR,
                        f"Generation request failed: {e}",
                        retryable=e.retryable,
                    )
                    if not e.retryable:
                        logger.warning("Non-retryable transport failure: %s", e)
                        raise error from e
                except Exception as e:
                    cause = e
                    error = GenerationClientError(
                        ErrorCode.OPENAI_ERROR,
                        f"Generation request failed: {e}",
                        retryable=True,
                    )
                else:
                    logger.info(
                        "Generation call succeeded in %d ms (model=%s, attempt=%d)",
                        timer.duration_ms,
                        response.model_name,
                        attempt + 1,
                    )
                    return GenerationOutput(
                        text=response.output_text,
                        model_name=response.model_name,
                        input_tokens=response.input_tokens,
                        output_tokens=response.output_tokens,
                        duration_ms=timer.duration_ms,
                    )

            if attempt >= max_transport_retries:
                logger.warning(
                    "Generation call failed after %d attempt(s): %s", attempt + 1, error.message
                )
                raise error from cause

            delay = self.backoff_delay(attempt)
            logger.info(
                "Retrying generation call in %.1fs after %s (attempt %d/%d)",
                delay,
                error.code,
                attempt + 1,
                max_transport_retries + 1,
            )
            await asyncio.sleep(delay)
            attempt += 1
