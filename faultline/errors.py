"""Faultline exception types."""

from __future__ import annotations


class FaultlineError(Exception):
    """Base class for errors raised by Faultline itself."""


class ConfigurationError(FaultlineError):
    """A required setting is missing or invalid."""


class TrackingError(FaultlineError):
    """Persisting an error group or occurrence failed."""


class DeliveryError(FaultlineError):
    """An outbound channel rejected or failed a request."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
