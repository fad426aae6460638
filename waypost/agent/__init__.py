"""
Telemetry agent.

Resolves position (IP providers and a serial GPS feed), grabs camera
frames on a timer and syncs each snapshot to the waypost server.
"""

from .errors import (CameraUnavailableError, CoordinateValidationError,
                     LocationPermissionError, NetworkError,
                     PositionTimeoutError, PositionUnavailableError,
                     ProviderError, SyncError, WaypostError)
from .resolver import DEFAULT_PROVIDERS, LocationResolver, ProviderDescriptor
from .scheduler import CaptureScheduler, SchedulerState
from .sync import BackendClient, SyncPipeline

__all__ = [
    "BackendClient",
    "CameraUnavailableError",
    "CaptureScheduler",
    "CoordinateValidationError",
    "DEFAULT_PROVIDERS",
    "LocationPermissionError",
    "LocationResolver",
    "NetworkError",
    "PositionTimeoutError",
    "PositionUnavailableError",
    "ProviderDescriptor",
    "ProviderError",
    "SchedulerState",
    "SyncError",
    "SyncPipeline",
    "WaypostError",
]
