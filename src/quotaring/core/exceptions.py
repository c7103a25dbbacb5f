from __future__ import annotations

from typing import Any


class QuotaRingError(Exception):
    """Base exception for all quotaring errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"HTTP_502"``).
        details: Arbitrary key/value context about the error.
        status_code: HTTP status code when the error originates from a
            remote response (``None`` when not applicable).
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        """Whether the next strategy (or the next tick) may succeed."""
        return False


class ConfigurationError(QuotaRingError): ...


class StorageError(QuotaRingError): ...


class NotConnectedError(QuotaRingError): ...


# ---------------------------------------------------------------------------
# Acquisition failures
# ---------------------------------------------------------------------------


class AuthenticationError(QuotaRingError):
    """The remote answered HTTP 401/403, or the scraped page was a login page.

    Never retryable: the user must sign in again.
    """


class TransientNetworkError(QuotaRingError):
    """The request raised, returned a non-auth error status, or a non-JSON body."""

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


class ParseFailureError(TransientNetworkError):
    """A success response whose body matched no known shape."""


class ScrapeTimeoutError(TransientNetworkError):
    """The content renderer did not answer before the deadline."""
