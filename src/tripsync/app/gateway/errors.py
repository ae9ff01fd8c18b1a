"""Exceptions raised across the remote store boundary."""

from __future__ import annotations


class GatewayError(RuntimeError):
    """Base class for failures talking to the remote store."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class GatewayUnavailable(GatewayError):
    """Raised when no remote store is configured or reachable."""


class RemoteRejection(GatewayError):
    """The remote store refused a request (validation or constraint failure).

    ``message`` is the store's own text and is shown to the user verbatim.
    """


class WriteTimeout(GatewayError):
    """A write did not complete within the configured budget."""


class NotFound(GatewayError):
    """A single-row read found nothing."""


class PatchValidationError(ValueError):
    """A typed patch failed validation before reaching the cache or the store."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


UNIQUE_VIOLATION = "23505"


__all__ = [
    "GatewayError",
    "GatewayUnavailable",
    "NotFound",
    "PatchValidationError",
    "RemoteRejection",
    "UNIQUE_VIOLATION",
    "WriteTimeout",
]
