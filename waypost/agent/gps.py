"""
Serial NMEA position feed.

Reads NMEA 0183 sentences from a GPS receiver on a serial port using
serial_asyncio and turns GGA/RMC sentences into fixes. The feed exposes a
watch-style subscription: fixes and errors are delivered to callbacks until
the watch is cancelled.
"""

import asyncio
import datetime as dt
import errno
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import serial_asyncio

from .errors import (LocationPermissionError, PositionTimeoutError,
                     PositionUnavailableError)

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 9600
DEFAULT_RECONNECT_DELAY = 3.0

# Approximate user-equivalent range error; accuracy ~ HDOP * UERE
HDOP_TO_METERS = 5.0

# Fixes with a worse HDOP are discarded when high accuracy is requested
MAX_HIGH_ACCURACY_HDOP = 5.0

_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}


@dataclass(frozen=True)
class Fix:
    """A satellite fix decoded from NMEA."""

    latitude: float
    longitude: float
    timestamp: dt.datetime
    hdop: float | None = None

    @property
    def accuracy_m(self) -> float | None:
        if self.hdop is None:
            return None
        return self.hdop * HDOP_TO_METERS


@dataclass(frozen=True)
class WatchOptions:
    """
    Subscription options.

    Attributes:
        high_accuracy: Discard fixes whose HDOP exceeds MAX_HIGH_ACCURACY_HDOP
        timeout: Seconds without a fix before a PositionTimeoutError is reported
        maximum_age: 0 forces fresh fixes only; a fix not newer than the
            previously delivered one is dropped
    """

    high_accuracy: bool = True
    timeout: float = 30.0
    maximum_age: float = 0.0


FixCallback = Callable[[Fix], Any]
ErrorCallback = Callable[[Exception], Any]


class FeedWatch(Protocol):
    """Handle for a running feed subscription."""

    @property
    def active(self) -> bool: ...

    def cancel(self) -> None: ...


class PositionFeed(Protocol):
    """A platform source of continuous satellite fixes."""

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> FeedWatch: ...


def _parse_float(value: str | None) -> float | None:
    """Parse string to float, None on failure."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_latlon(value: str | None, direction: str | None, *, is_lat: bool) -> float | None:
    """Parse NMEA lat/lon format (DDMM.MMMM or DDDMM.MMMM) to decimal degrees."""
    if not value or not direction:
        return None
    deg_len = 2 if is_lat else 3
    if len(value) < deg_len:
        return None
    try:
        degrees = int(value[:deg_len])
        minutes = float(value[deg_len:])
    except ValueError:
        return None
    decimal = degrees + minutes / 60.0
    if direction.upper() in {"S", "W"}:
        decimal *= -1.0
    return decimal


def _parse_hms(value: str | None) -> dt.time | None:
    """Parse NMEA time format (HHMMSS.sss) to datetime.time."""
    if not value:
        return None
    main, dot, frac = value.strip().partition(".")
    main = main.rjust(6, "0")
    try:
        return dt.time(
            int(main[0:2]),
            int(main[2:4]),
            int(main[4:6]),
            int((frac[:6] if dot else "0").ljust(6, "0")),
            tzinfo=dt.UTC,
        )
    except ValueError:
        return None


def _parse_date(value: str | None) -> dt.date | None:
    """Parse NMEA date format (DDMMYY) to datetime.date."""
    if not value or len(value) != 6:
        return None
    try:
        return dt.date(2000 + int(value[4:6]), int(value[2:4]), int(value[0:2]))
    except ValueError:
        return None


def validate_checksum(sentence: str) -> bool:
    """Validate NMEA checksum."""
    if not sentence.startswith("$") or "*" not in sentence:
        return False
    try:
        payload, checksum_str = sentence[1:].split("*", 1)
        expected = int(checksum_str[:2], 16)
    except (ValueError, IndexError):
        return False
    calculated = 0
    for char in payload:
        calculated ^= ord(char)
    return calculated == expected


class NMEAParser:
    """
    Stateful NMEA sentence parser.

    GGA sentences carry fix quality and HDOP; RMC sentences carry validity
    and the date. The last RMC date is reused to timestamp GGA fixes.
    """

    def __init__(self) -> None:
        self._last_date: dt.date | None = None

    def feed(self, sentence: str) -> Fix | None:
        """
        Parse one sentence.

        Returns:
            A Fix for a valid GGA or RMC position sentence, otherwise None
        """
        sentence = sentence.strip()
        if not validate_checksum(sentence):
            return None
        body = sentence[1:].split("*", 1)[0]
        fields = body.split(",")
        kind = fields[0][-3:]
        if kind == "GGA":
            return self._parse_gga(fields[1:])
        if kind == "RMC":
            return self._parse_rmc(fields[1:])
        return None

    def _timestamp(self, time_obj: dt.time | None) -> dt.datetime:
        if time_obj is None:
            return dt.datetime.now(tz=dt.UTC)
        date_obj = self._last_date or dt.datetime.now(tz=dt.UTC).date()
        return dt.datetime.combine(date_obj, time_obj)

    def _parse_gga(self, fields: list[str]) -> Fix | None:
        """Parse $GPGGA: time, position, fix quality, satellites, HDOP."""
        if len(fields) < 8:
            return None
        quality = _parse_float(fields[5]) or 0
        lat = _parse_latlon(fields[1], fields[2], is_lat=True)
        lon = _parse_latlon(fields[3], fields[4], is_lat=False)
        if quality <= 0 or lat is None or lon is None:
            return None
        return Fix(
            latitude=lat,
            longitude=lon,
            timestamp=self._timestamp(_parse_hms(fields[0])),
            hdop=_parse_float(fields[7]),
        )

    def _parse_rmc(self, fields: list[str]) -> Fix | None:
        """Parse $GPRMC: time, status, position, date."""
        if len(fields) < 9:
            return None
        date_obj = _parse_date(fields[8])
        if date_obj:
            self._last_date = date_obj
        if (fields[1] or "").upper() != "A":
            return None
        lat = _parse_latlon(fields[2], fields[3], is_lat=True)
        lon = _parse_latlon(fields[4], fields[5], is_lat=False)
        if lat is None or lon is None:
            return None
        return Fix(latitude=lat, longitude=lon, timestamp=self._timestamp(_parse_hms(fields[0])))


class _SerialWatch:
    """One running subscription on a SerialPositionFeed."""

    def __init__(
        self,
        feed: "SerialPositionFeed",
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> None:
        self._feed = feed
        self._on_fix = on_fix
        self._on_error = on_error
        self._options = options
        self._parser = NMEAParser()
        self._last_delivered: dt.datetime | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task[None] = asyncio.get_running_loop().create_task(
            self._run(), name=f"gps-watch-{feed.port}"
        )

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        """Stop reading and close the port. Safe to call repeatedly."""
        if not self._task.done():
            self._task.cancel()
        self._close_writer()

    def _close_writer(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    async def _run(self) -> None:
        port = self._feed.port
        while True:
            try:
                reader, self._writer = await serial_asyncio.open_serial_connection(
                    url=port,
                    baudrate=self._feed.baudrate,
                )
            except OSError as exc:
                if exc.errno in _PERMISSION_ERRNOS:
                    self._on_error(LocationPermissionError(f"Permission denied opening {port}"))
                    return
                self._on_error(PositionUnavailableError(f"Cannot open {port}: {exc}"))
                await asyncio.sleep(self._feed.reconnect_delay)
                continue

            logger.info("Connected to GPS on %s at %d baud", port, self._feed.baudrate)
            try:
                await self._read_fixes(reader)
            except (OSError, PositionUnavailableError) as exc:
                self._on_error(
                    exc if isinstance(exc, PositionUnavailableError)
                    else PositionUnavailableError(f"GPS read failed on {port}: {exc}")
                )
            finally:
                self._close_writer()
            await asyncio.sleep(self._feed.reconnect_delay)

    async def _read_fixes(self, reader: asyncio.StreamReader) -> None:
        loop = asyncio.get_running_loop()
        timeout = self._options.timeout
        last_fix_at = loop.time()

        while True:
            try:
                raw = await asyncio.wait_for(reader.readline(), timeout=timeout)
            except TimeoutError:
                raw = b""
            if not raw and reader.at_eof():
                raise PositionUnavailableError(f"GPS port {self._feed.port} closed")

            fix = self._parser.feed(raw.decode("ascii", errors="ignore")) if raw else None
            now = loop.time()
            if fix is not None and self._accept(fix):
                last_fix_at = now
                self._last_delivered = fix.timestamp
                self._on_fix(fix)
            elif now - last_fix_at >= timeout:
                last_fix_at = now
                self._on_error(PositionTimeoutError(f"No GPS fix within {timeout:.0f}s"))

    def _accept(self, fix: Fix) -> bool:
        if (
            self._options.high_accuracy
            and fix.hdop is not None
            and fix.hdop > MAX_HIGH_ACCURACY_HDOP
        ):
            logger.debug("Discarding low-accuracy fix (HDOP %.1f)", fix.hdop)
            return False
        if (
            self._options.maximum_age <= 0
            and self._last_delivered is not None
            and fix.timestamp <= self._last_delivered
        ):
            return False
        return True


class SerialPositionFeed:
    """
    Position feed backed by an NMEA receiver on a serial port.

    Example:
        feed = SerialPositionFeed("/dev/serial0")
        watch = feed.watch(print, print, WatchOptions())
        ...
        watch.cancel()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUD_RATE,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.reconnect_delay = reconnect_delay

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> _SerialWatch:
        """Start reading fixes; must be called from a running event loop."""
        return _SerialWatch(self, on_fix, on_error, options)
