"""Exception hierarchy for socialsync.

Transient failures are retried by the backend client; everything else is
raised to the caller. Views swallow fetch errors (logging them) and let
mutation errors propagate.
"""

from typing import Any


class SocialSyncError(Exception):
    """Base class for all socialsync errors."""


class TransientBackendError(SocialSyncError):
    """Retryable network/HTTP layer failures.

    Raised for errors that should trigger retry logic:
    - Network timeouts
    - Connection errors
    - HTTP 429 (rate limit)
    - HTTP 5xx (server errors)
    """


class BackendError(SocialSyncError, RuntimeError):
    """Permanent failure reported by the backend.

    Attributes:
        status: HTTP status code
        code: Backend error code (e.g. ``23505`` for a unique violation)
        message: Human-readable message
        details: Extra detail string, if any
        hint: Backend hint, if any
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details
        self.hint = hint

    @classmethod
    def from_response(cls, status: int, body: Any) -> "BackendError":
        """Build from a JSON error body (``message``/``msg``/``error``)."""
        if not isinstance(body, dict):
            return cls(f"HTTP {status}", status=status)
        message = (
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or body.get("error")
            or f"HTTP {status}"
        )
        code = body.get("code") or body.get("error_code") or body.get("statusCode")
        return cls(
            str(message),
            status=status,
            code=str(code) if code is not None else None,
            details=body.get("details"),
            hint=body.get("hint"),
        )

    def __str__(self) -> str:
        prefix = f"HTTP {self.status}: " if self.status else ""
        return f"{prefix}{self.message}"


class NotAuthenticatedError(SocialSyncError):
    """Operation requires a signed-in viewer."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class UploadValidationError(SocialSyncError, ValueError):
    """Upload rejected before reaching storage (missing, too large, wrong type)."""


__all__ = [
    "SocialSyncError",
    "TransientBackendError",
    "BackendError",
    "NotAuthenticatedError",
    "UploadValidationError",
]
