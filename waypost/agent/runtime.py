"""
Agent settings, logging and process lifecycle.

``AgentRuntime`` owns the single HTTP client shared by the resolver and
the sync pipeline, wires the scheduler to the pipeline and tears
everything down on shutdown.
"""

import asyncio
import logging
import logging.config
import signal
from dataclasses import dataclass

import httpx
from decouple import config

from ..types import Position
from ..utils import generate_device_id
from .camera import OpenCVCamera
from .fingerprint import collect_device_info
from .gps import DEFAULT_BAUD_RATE, SerialPositionFeed, WatchOptions
from .resolver import DEFAULT_PROVIDER_TIMEOUT, LocationResolver
from .scheduler import DEFAULT_CAPTURE_INTERVAL, CaptureScheduler, SchedulerState
from .sync import BackendClient, SyncPipeline

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_GPS_TIMEOUT = 30.0
BACKEND_TIMEOUT = 30.0


@dataclass
class AgentSettings:
    """
    Runtime configuration for the agent.

    Attributes:
        server_url: Base URL of the waypost server
        device_id: Stable identifier; generated when empty
        gps_port: Serial device of the NMEA receiver; empty disables GPS
        gps_baudrate: Serial baud rate
        camera_index: OpenCV camera index; negative disables the camera
        capture_interval: Seconds between snapshots
        provider_timeout: Per-request timeout for IP geolocation providers
        gps_timeout: Seconds without a fix before a timeout is reported
        screen_resolution: Reported display resolution
        touch_support: Reported touch capability
        log_level: Level name for the waypost loggers
    """

    server_url: str = DEFAULT_SERVER_URL
    device_id: str = ""
    gps_port: str = "/dev/ttyUSB0"
    gps_baudrate: int = DEFAULT_BAUD_RATE
    camera_index: int = 0
    capture_interval: float = DEFAULT_CAPTURE_INTERVAL
    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    gps_timeout: float = DEFAULT_GPS_TIMEOUT
    screen_resolution: str = "Unknown"
    touch_support: bool = False
    log_level: str = "INFO"


def load_agent_settings() -> AgentSettings:
    """Read agent settings from the environment or ``.env``."""
    return AgentSettings(
        server_url=str(config('WAYPOST_SERVER_URL', default=DEFAULT_SERVER_URL)),
        device_id=str(config('WAYPOST_DEVICE_ID', default='')),
        gps_port=str(config('WAYPOST_GPS_PORT', default='/dev/ttyUSB0')),
        gps_baudrate=config('WAYPOST_GPS_BAUDRATE', default=DEFAULT_BAUD_RATE, cast=int),
        camera_index=config('WAYPOST_CAMERA_INDEX', default=0, cast=int),
        capture_interval=config('WAYPOST_CAPTURE_INTERVAL', default=DEFAULT_CAPTURE_INTERVAL, cast=float),
        provider_timeout=config('WAYPOST_PROVIDER_TIMEOUT', default=DEFAULT_PROVIDER_TIMEOUT, cast=float),
        gps_timeout=config('WAYPOST_GPS_TIMEOUT', default=DEFAULT_GPS_TIMEOUT, cast=float),
        screen_resolution=str(config('WAYPOST_SCREEN_RESOLUTION', default='Unknown')),
        touch_support=config('WAYPOST_TOUCH_SUPPORT', default=False, cast=bool),
        log_level=str(config('WAYPOST_LOG_LEVEL', default='INFO')).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install console logging in the server's format."""
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'verbose': {
                'format': '%(asctime)s.%(msecs)03d %(levelname)-7s %(module)s %(message)s',
                'datefmt': '%Y%m%d-%H:%M:%S',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'verbose',
            },
        },
        'root': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
        'loggers': {
            'waypost': {
                'handlers': ['console'],
                'level': level,
                'propagate': False,
            },
        },
    })


class AgentRuntime:
    """
    Runs the capture loop until stopped or denied.

    Example:
        runtime = AgentRuntime(load_agent_settings())
        exit_code = await runtime.run()
    """

    def __init__(self, settings: AgentSettings) -> None:
        self.settings = settings
        self.device_id = settings.device_id or generate_device_id()
        self.scheduler: CaptureScheduler | None = None
        self.pipeline: SyncPipeline | None = None
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> int:
        """
        Resolve the approximate position, then capture until stopped.

        Returns:
            Process exit code: 0 on a requested stop, 1 on permission denial
        """
        settings = self.settings
        async with httpx.AsyncClient(
            base_url=settings.server_url,
            timeout=BACKEND_TIMEOUT,
        ) as client:
            feed = SerialPositionFeed(settings.gps_port, settings.gps_baudrate) if settings.gps_port else None
            resolver = LocationResolver(
                client,
                feed=feed,
                timeout=settings.provider_timeout,
                watch_options=WatchOptions(timeout=settings.gps_timeout),
            )
            approximate = await resolver.resolve_approximate()

            self.pipeline = SyncPipeline(
                BackendClient(client),
                on_status_change=lambda record: logger.info("Log %s synced", record.id),
            )
            camera = OpenCVCamera(settings.camera_index) if settings.camera_index >= 0 else None
            self.scheduler = CaptureScheduler(
                resolver,
                device_id=self.device_id,
                device_info=collect_device_info(settings.screen_resolution, settings.touch_support),
                on_snapshot=self.pipeline.submit,
                camera=camera,
                interval=settings.capture_interval,
                on_position=self._log_position,
                on_denied=lambda error: self.request_stop(),
                ip=approximate.ip,
            )

            self._install_signal_handlers()
            logger.info(
                "Agent %s reporting to %s (approximate position %.4f, %.4f)",
                self.device_id, settings.server_url, approximate.lat, approximate.lng,
            )
            try:
                await self.scheduler.start()
                await self._stop_event.wait()
            finally:
                self.scheduler.stop()
                await self.pipeline.drain()

        return 1 if self.scheduler.state is SchedulerState.DENIED else 0

    def _log_position(self, position: Position) -> None:
        logger.debug(
            "Position update (%.6f, %.6f) accuracy=%s",
            position.lat, position.lng, position.accuracy_m,
        )

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError) as e:
                logger.debug("Signal handler for %s not installed: %s", sig, e)


def run_agent(settings: AgentSettings) -> int:
    """Run the agent on a fresh event loop."""
    configure_logging(settings.log_level)
    runtime = AgentRuntime(settings)
    return asyncio.run(runtime.run())
