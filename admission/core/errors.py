"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    reset_time: int
    retry_after: int
    denied_by: str
    scope: str
    request_id: str
    context: dict[str, Any]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class BlockedClientAppError(AppError):
    """Raised when a request comes from a blocked client IP."""


class NotFoundAppError(AppError):
    """Raised when a referenced resource does not exist."""


@dataclass
class RateLimitAppError(AppError):
    """Raised by the HTTP layer when an admission check denies a request.

    The limiter itself never raises; this error only carries a denial
    decision to the exception handler that renders the 429 response.
    """

    headers: dict[str, str] | None = None

