"""Error taxonomy for memory tool requests.

Validation, privacy and auth failures are raised before any store call.
Timeout and upstream failures come back from the store client. The tool
router turns all of them into the same structured failure result.
"""

from __future__ import annotations


class SupermemoryError(Exception):
    """Base class for failures reported back to the calling agent."""


class ValidationError(SupermemoryError):
    """A required argument is missing or an argument value is not recognized."""


class PrivacyError(SupermemoryError):
    """Content would be stored as nothing but redaction placeholders."""


class AuthError(SupermemoryError):
    """API key is missing or malformed."""


class StoreTimeoutError(SupermemoryError):
    """A store call did not finish within its budget. Outcome unknown."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Timeout after {timeout:g}s waiting for Supermemory")
        self.timeout = timeout


class UpstreamError(SupermemoryError):
    """The store rejected a well-formed request or could not be reached."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
