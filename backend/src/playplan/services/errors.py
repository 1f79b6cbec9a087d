from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    # Generation core
    OPENAI_TIMEOUT = "OPENAI_TIMEOUT"
    OPENAI_ERROR = "OPENAI_ERROR"
    OUTLINE_VALIDATION_FAILED = "OUTLINE_VALIDATION_FAILED"
    FINAL_VALIDATION_FAILED = "FINAL_VALIDATION_FAILED"
    NOVELTY_CHECK_FAILED = "NOVELTY_CHECK_FAILED"

    # Collaborators
    REQUEST_INVALID = "REQUEST_INVALID"
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    RATE_LIMITED = "RATE_LIMITED"
    ADMIN_UNAUTHORIZED = "ADMIN_UNAUTHORIZED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ApiError(Exception):
    """Base for every error that is reported as ``{code, message, retryable}``."""

    def __init__(self, code: ErrorCode, message: str, retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }


class GenerationClientError(ApiError):
    """Transport-level failure of a single generation call (timeout or generic)."""


class GenerationError(ApiError):
    """Terminal failure of an orchestration run.

    ``details`` holds the concrete violation/failure messages that caused it and
    ``attempts`` the stage attempt trace recorded up to the failure.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: bool = False,
        details: list[str] | None = None,
    ):
        super().__init__(code, message, retryable)
        self.details = list(details or [])
        self.attempts: list = []


class RequestInvalidError(ApiError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.REQUEST_INVALID, message or "Invalid request.", False)


class PilotTokenError(ApiError):
    pass


class RateLimitError(ApiError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.RATE_LIMITED, message, True)


class AdminAuthError(ApiError):
    def __init__(self, message: str = "Admin key is missing or invalid."):
        super().__init__(ErrorCode.ADMIN_UNAUTHORIZED, message, False)
