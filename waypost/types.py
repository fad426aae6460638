"""
Telemetry record types shared by the agent and the server.

Positions, fingerprints and snapshots are immutable once produced.
A LogRecord is immutable except for its sync status, which may move
from LOCAL to SYNCED exactly once.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .utils import decode_data_url, encode_data_url

logger = logging.getLogger(__name__)

# IP recorded when neither the snapshot nor its position carries one
UNKNOWN_IP = "Unknown"

# IP reported by the approximate-position fallback
FALLBACK_IP = "127.0.0.1"


class PositionSource(Enum):
    """Where a position came from."""

    IP = "ip"
    GPS = "gps"


class SyncStatus(Enum):
    """Whether a log record has reached the remote store."""

    LOCAL = "local"
    SYNCED = "synced"


def is_finite_number(value: Any) -> bool:
    """Return True for an int or float (not bool) that is neither NaN nor infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass(frozen=True)
class Position:
    """
    A single geographic fix.

    Attributes:
        lat: Latitude in decimal degrees
        lng: Longitude in decimal degrees
        timestamp: When the fix was taken
        source: IP geolocation or satellite fix
        accuracy_m: Estimated horizontal accuracy in meters
        ip: Public IP reported alongside an IP-derived position
    """

    lat: float
    lng: float
    timestamp: datetime
    source: PositionSource
    accuracy_m: float | None = None
    ip: str | None = None

    @property
    def has_finite_coordinates(self) -> bool:
        return is_finite_number(self.lat) and is_finite_number(self.lng)


@dataclass(frozen=True)
class DeviceInfo:
    """
    Passively observable attributes of the capturing device.

    Optional fields are None when the attribute could not be determined
    at collection time.
    """

    user_agent: str
    platform: str
    screen_resolution: str
    window_size: str
    language: str
    touch_support: bool = False
    cores: int | None = None
    memory_gb: float | None = None
    connection_type: str | None = None
    gpu_renderer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys of the stored ``device_info`` JSON."""
        data: dict[str, Any] = {
            'userAgent': self.user_agent,
            'platform': self.platform,
            'screenResolution': self.screen_resolution,
            'windowSize': self.window_size,
            'language': self.language,
            'touchSupport': self.touch_support,
        }
        optional = {
            'cores': self.cores,
            'memory': self.memory_gb,
            'connectionType': self.connection_type,
            'gpuRenderer': self.gpu_renderer,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceInfo":
        """Build a DeviceInfo from stored ``device_info`` JSON."""
        return cls(
            user_agent=str(data.get('userAgent', 'Unknown')),
            platform=str(data.get('platform', 'Unknown')),
            screen_resolution=str(data.get('screenResolution', 'Unknown')),
            window_size=str(data.get('windowSize', 'Unknown')),
            language=str(data.get('language', 'Unknown')),
            touch_support=bool(data.get('touchSupport', False)),
            cores=data.get('cores'),
            memory_gb=data.get('memory'),
            connection_type=data.get('connectionType'),
            gpu_renderer=data.get('gpuRenderer'),
        )


@dataclass(frozen=True)
class Snapshot:
    """One bundled capture: position, optional camera frame and fingerprint."""

    position: Position
    device_id: str
    image: bytes | None = None
    device_info: DeviceInfo | None = None
    ip: str | None = None


def _parse_coordinate(value: Any) -> float:
    """Coerce a stored coordinate to float; missing or garbage becomes NaN."""
    if value is None or isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class LogRecord:
    """
    An immutable telemetry log entry with a one-way sync status.

    Every attribute except ``sync_status`` is frozen after construction,
    and ``sync_status`` can only move from LOCAL to SYNCED.
    """

    id: uuid.UUID
    position: Position
    device_id: str
    ip: str
    created_at: datetime
    image: bytes | None = None
    device_info: DeviceInfo | None = None
    sync_status: SyncStatus = SyncStatus.LOCAL

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.__dict__:
            if name != 'sync_status':
                raise AttributeError(f"LogRecord.{name} cannot change after creation")
            if self.__dict__[name] is SyncStatus.SYNCED and value is not SyncStatus.SYNCED:
                raise AttributeError("LogRecord.sync_status cannot revert from SYNCED")
        super().__setattr__(name, value)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "LogRecord":
        """Create a fresh LOCAL record for a snapshot."""
        return cls(
            id=uuid.uuid4(),
            position=snapshot.position,
            device_id=snapshot.device_id,
            ip=snapshot.ip or snapshot.position.ip or UNKNOWN_IP,
            created_at=datetime.now(tz=UTC),
            image=snapshot.image,
            device_info=snapshot.device_info,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "LogRecord":
        """
        Build a SYNCED record from a remote store row.

        Coordinates are coerced without validation; missing or malformed
        values become NaN so consumers can reject them at ingress.

        Args:
            row: Row as served by the log API or the push channel
        """
        image: bytes | None = None
        image_data = row.get('image_data')
        if image_data:
            try:
                image = decode_data_url(str(image_data))
            except ValueError as e:
                logger.warning("Dropping undecodable image on row %s: %s", row.get('id'), e)

        device_info = row.get('device_info')
        created_at = _parse_timestamp(row['created_at'])
        return cls(
            id=uuid.UUID(str(row['id'])),
            position=Position(
                lat=_parse_coordinate(row.get('latitude')),
                lng=_parse_coordinate(row.get('longitude')),
                timestamp=created_at,
                source=PositionSource.GPS,
            ),
            device_id=str(row.get('device_id', '')),
            ip=str(row.get('ip_address') or UNKNOWN_IP),
            created_at=created_at,
            image=image,
            device_info=DeviceInfo.from_dict(device_info) if isinstance(device_info, dict) else None,
            sync_status=SyncStatus.SYNCED,
        )

    @property
    def latitude(self) -> float:
        return self.position.lat

    @property
    def longitude(self) -> float:
        return self.position.lng

    @property
    def is_synced(self) -> bool:
        return self.sync_status is SyncStatus.SYNCED

    def mark_synced(self) -> bool:
        """
        Record that the remote write succeeded.

        Returns:
            True if the status changed, False if it was already SYNCED
        """
        if self.sync_status is SyncStatus.SYNCED:
            return False
        self.sync_status = SyncStatus.SYNCED
        return True

    def to_payload(self) -> dict[str, Any]:
        """Serialize the record's stored fields for the remote insert."""
        return {
            'id': str(self.id),
            'latitude': self.position.lat,
            'longitude': self.position.lng,
            'device_id': self.device_id,
            'ip_address': self.ip,
            'image_data': encode_data_url(self.image) if self.image else None,
            'device_info': self.device_info.to_dict() if self.device_info else None,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class DeviceGroup:
    """Per-device view rebuilt from the record stream; never persisted."""

    device_id: str
    latest_log: LogRecord
    history: list[LogRecord] = field(default_factory=list)
    images: list[tuple[bytes, datetime]] = field(default_factory=list)
    ip: str = UNKNOWN_IP
