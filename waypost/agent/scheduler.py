"""
Capture scheduler.

A small state machine (IDLE -> TRACKING -> IDLE, or TRACKING -> DENIED)
that keeps the most recent position, optionally drives a camera, and
emits a combined Snapshot on a fixed interval.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from ..types import DeviceInfo, Position, Snapshot
from .camera import OpenCVCamera
from .errors import CameraUnavailableError
from .resolver import LocationResolver, PreciseWatch

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_INTERVAL = 5.0

SnapshotCallback = Callable[[Snapshot], Awaitable[Any] | Any]
PositionCallback = Callable[[Position], Any]
DeniedCallback = Callable[[Exception], Any]


class SchedulerState(Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    DENIED = "denied"


class CaptureScheduler:
    """
    Periodically bundles the freshest position with a camera frame.

    The last-known-position cell is written by the GPS callback and read
    by the timer at tick time. Both run on the event loop, so no locking
    is needed.

    Args:
        resolver: Source of precise position updates
        device_id: Identifier stamped on every snapshot
        device_info: Fingerprint attached to every snapshot
        on_snapshot: Called with each Snapshot; may be a coroutine function
        camera: Optional camera; failure to open it is not fatal
        interval: Seconds between ticks
        on_position: Called with every precise position update
        on_denied: Called once when a start attempt ends in DENIED
        ip: Public IP stamped on every snapshot, if known
    """

    def __init__(
        self,
        resolver: LocationResolver,
        device_id: str,
        device_info: DeviceInfo | None,
        on_snapshot: SnapshotCallback,
        camera: OpenCVCamera | None = None,
        interval: float = DEFAULT_CAPTURE_INTERVAL,
        on_position: PositionCallback | None = None,
        on_denied: DeniedCallback | None = None,
        ip: str | None = None,
    ) -> None:
        self._resolver = resolver
        self.device_id = device_id
        self.device_info = device_info
        self._on_snapshot = on_snapshot
        self._camera = camera
        self.interval = interval
        self._on_position = on_position
        self._on_denied = on_denied
        self.ip = ip

        self.state = SchedulerState.IDLE
        self._last_position: Position | None = None
        self._watch: PreciseWatch | None = None
        self._timer: asyncio.Task[None] | None = None
        self._emit_tasks: set[asyncio.Task[Any]] = set()

    @property
    def last_position(self) -> Position | None:
        """The most recent position; written only by the GPS callback."""
        return self._last_position

    @property
    def camera_active(self) -> bool:
        return self._camera is not None and self._camera.is_active

    async def start(self) -> None:
        """
        Begin tracking.

        Opens the camera (non-fatal on failure), subscribes to precise
        positions and starts the capture timer. Calling start while
        already tracking does nothing. From DENIED, start retries.
        """
        if self.state is SchedulerState.TRACKING:
            logger.info("Capture scheduler already tracking")
            return

        if self._camera is not None:
            try:
                await asyncio.to_thread(self._camera.open)
            except CameraUnavailableError as e:
                logger.warning("Continuing without camera: %s", e)

        self.state = SchedulerState.TRACKING
        self._watch = self._resolver.watch_precise(self._handle_position, self._handle_fatal)
        if self.state is not SchedulerState.TRACKING:
            return
        self._timer = asyncio.get_running_loop().create_task(
            self._run_timer(), name="capture-timer"
        )
        logger.info(
            "Capture scheduler started (interval=%.1fs, camera=%s)",
            self.interval, "on" if self.camera_active else "off",
        )

    def stop(self) -> None:
        """Release the GPS subscription, the timer and the camera. Idempotent."""
        if self._watch is not None:
            self._watch.cancel()
            self._watch = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._camera is not None:
            self._camera.release()
        if self.state is SchedulerState.TRACKING:
            self.state = SchedulerState.IDLE
            logger.info("Capture scheduler stopped")

    def _handle_position(self, position: Position) -> None:
        self._last_position = position
        if self._on_position is not None:
            self._on_position(position)

    def _handle_fatal(self, error: Exception) -> None:
        if self.state is not SchedulerState.TRACKING:
            return
        self.stop()
        self.state = SchedulerState.DENIED
        logger.error("Capture scheduler denied: %s", error)
        if self._on_denied is not None:
            self._on_denied(error)

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Capture tick failed")

    async def tick(self) -> Snapshot | None:
        """
        Emit one snapshot from the current position cell.

        Returns:
            The emitted snapshot, or None before any position is known
        """
        position = self.last_position
        if position is None:
            logger.debug("No position yet, skipping capture tick")
            return None

        image: bytes | None = None
        if self._camera is not None and self._camera.is_active:
            image = await asyncio.to_thread(self._camera.read_jpeg)

        # Re-read the cell: a fix may have landed during the frame grab
        snapshot = Snapshot(
            position=self.last_position or position,
            device_id=self.device_id,
            image=image,
            device_info=self.device_info,
            ip=self.ip,
        )
        self._emit(snapshot)
        return snapshot

    def _emit(self, snapshot: Snapshot) -> None:
        try:
            result = self._on_snapshot(snapshot)
        except Exception:
            logger.exception("Snapshot handler failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._emit_tasks.add(task)
            task.add_done_callback(self._emit_done)

    def _emit_done(self, task: asyncio.Task[Any]) -> None:
        self._emit_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Snapshot handler failed: %s", task.exception())
