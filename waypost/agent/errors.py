"""Error taxonomy for the telemetry agent."""

from typing import Any


class WaypostError(Exception):
    """Base class for agent errors."""


class LocationPermissionError(WaypostError):
    """Access to the position source was denied. Fatal for capture."""


class PositionTimeoutError(WaypostError):
    """No fix arrived within the subscription timeout. Not fatal."""


class PositionUnavailableError(WaypostError):
    """The position source is temporarily unusable. Not fatal."""


class ProviderError(WaypostError):
    """One approximate-position provider failed; the chain moves on."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class NetworkError(ProviderError):
    """Transport-level failure talking to a provider."""


class CoordinateValidationError(WaypostError):
    """A candidate position had missing or non-finite coordinates."""


class CameraUnavailableError(WaypostError):
    """The camera could not be opened. Capture continues without frames."""


class SyncError(WaypostError):
    """
    A remote write failed.

    Attributes:
        code: HTTP status or transport error name
        detail: Error body returned by the store, if any
        hint: Operator-facing suggestion, if any
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        detail: Any = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail
        self.hint = hint
