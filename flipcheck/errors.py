"""Error codes and user-facing messages for the HTTP layer."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from flipcheck.config import settings


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    DATABASE_QUERY_FAILED = "DATABASE_QUERY_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class ErrorInfo:
    title: str
    message: str
    status_code: int
    retryable: bool
    action: Optional[str] = None


ERRORS: dict[ErrorCode, ErrorInfo] = {
    ErrorCode.INVALID_INPUT: ErrorInfo(
        title="Invalid input",
        message="The information you provided isn't valid.",
        status_code=400,
        retryable=False,
        action="Check the item description and try again.",
    ),
    ErrorCode.DATABASE_QUERY_FAILED: ErrorInfo(
        title="Data unavailable",
        message="We couldn't retrieve the data you requested.",
        status_code=500,
        retryable=True,
    ),
    ErrorCode.INTERNAL_ERROR: ErrorInfo(
        title="Something went wrong",
        message="We're experiencing a temporary issue.",
        status_code=500,
        retryable=True,
        action="Please try again in a moment.",
    ),
}


class AppError(Exception):
    """Application error carrying a code the HTTP layer can render."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None, context: Optional[dict[str, Any]] = None):
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(detail or ERRORS[code].message)

    @property
    def info(self) -> ErrorInfo:
        return ERRORS[self.code]

    @property
    def status_code(self) -> int:
        return self.info.status_code

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "code": self.code.value,
            "title": self.info.title,
            "message": self.info.message,
            "action": self.info.action,
            "retryable": self.info.retryable,
        }
        # Only expose internals in development
        if settings.environment == "development":
            payload["detail"] = self.detail
            payload["context"] = self.context
        return payload
