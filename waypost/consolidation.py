"""
Consolidation of the telemetry record stream.

The engine accepts an initial bulk fetch plus records arriving later from
the push channel, and derives two views from the accumulated stream:

- per-device groups (latest record, full history, captured images)
- a deduplicated activity feed that drops same-IP heartbeats which did
  not move far enough to matter
"""
import logging
import math
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .types import UNKNOWN_IP, DeviceGroup, LogRecord

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Same-IP records closer than this to the IP's reference point are heartbeats
DEFAULT_DEDUP_DISTANCE_KM = 0.05


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points on a sphere of Earth's radius.

    Args:
        lat1: Latitude of the first point in decimal degrees
        lng1: Longitude of the first point in decimal degrees
        lat2: Latitude of the second point in decimal degrees
        lng2: Longitude of the second point in decimal degrees

    Returns:
        Distance in kilometers
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass(frozen=True)
class StreamStats:
    """Headline counts over the consolidated stream."""

    total_logs: int
    active_devices: int
    captured_photos: int
    unique_ips: int

    def to_dict(self) -> dict[str, int]:
        return {
            'total_logs': self.total_logs,
            'active_devices': self.active_devices,
            'captured_photos': self.captured_photos,
            'unique_ips': self.unique_ips,
        }


class ConsolidationEngine:
    """
    Accumulates LogRecords and builds grouped and deduplicated views.

    Records are validated at ingress: anything without finite coordinates is
    rejected before either view sees it. A record id is stored once; a later
    arrival with the same id only upgrades the stored record to SYNCED.

    Example:
        engine = ConsolidationEngine()
        engine.ingest(initial_rows)
        engine.add(pushed_record)
        groups = engine.group_by_device()
        feed = engine.deduplicate()
    """

    def __init__(self, dedup_distance_km: float = DEFAULT_DEDUP_DISTANCE_KM) -> None:
        self.dedup_distance_km = dedup_distance_km
        self._records: list[LogRecord] = []
        self._by_id: dict[uuid.UUID, LogRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> list[LogRecord]:
        """Accepted records in arrival order."""
        return list(self._records)

    def add(self, record: LogRecord) -> bool:
        """
        Add one record to the stream.

        Args:
            record: Record from the bulk fetch, the push channel or the local agent

        Returns:
            True if the record was appended, False if it was rejected or
            already present
        """
        if not record.position.has_finite_coordinates:
            logger.debug(
                "Rejecting record %s with non-finite coordinates (%s, %s)",
                record.id, record.position.lat, record.position.lng,
            )
            return False

        existing = self._by_id.get(record.id)
        if existing is not None:
            if record.is_synced and existing.mark_synced():
                logger.debug("Record %s confirmed by the remote store", record.id)
            return False

        self._by_id[record.id] = record
        self._records.append(record)
        return True

    def ingest(self, records: Iterable[LogRecord]) -> int:
        """Add many records; returns how many were appended."""
        return sum(1 for record in records if self.add(record))

    def ingest_rows(self, rows: Iterable[dict[str, Any]]) -> int:
        """Add store rows (API or push channel payloads); returns how many were appended."""
        return self.ingest(LogRecord.from_row(row) for row in rows)

    def _oldest_first(self) -> list[LogRecord]:
        # sorted() is stable, so equal timestamps keep arrival order
        return sorted(self._records, key=lambda record: record.created_at)

    def group_by_device(self) -> list[DeviceGroup]:
        """
        Fold the stream oldest to newest into one group per device.

        Returns:
            Groups ordered by their latest record, most recently active first
        """
        groups: dict[str, DeviceGroup] = {}
        for record in self._oldest_first():
            group = groups.get(record.device_id)
            if group is None:
                group = DeviceGroup(device_id=record.device_id, latest_log=record)
                groups[record.device_id] = group
            group.latest_log = record
            group.history.append(record)
            if record.image:
                group.images.append((record.image, record.created_at))
            group.ip = record.ip

        return sorted(
            groups.values(),
            key=lambda group: group.latest_log.created_at,
            reverse=True,
        )

    def deduplicate(self) -> list[LogRecord]:
        """
        Fold the stream newest to oldest, dropping same-IP heartbeats.

        The first record seen for an IP is kept and becomes that IP's
        reference point. Later records for the IP are kept, and move the
        reference point, when they are farther than the dedup distance from
        it or carry an image. Records from an unknown IP are always kept.

        Returns:
            Movement-significant records, newest first
        """
        references: dict[str, tuple[float, float]] = {}
        kept: list[LogRecord] = []

        for record in reversed(self._oldest_first()):
            point = (record.position.lat, record.position.lng)
            if record.ip == UNKNOWN_IP:
                kept.append(record)
                continue

            reference = references.get(record.ip)
            if reference is None:
                references[record.ip] = point
                kept.append(record)
                continue

            distance = haversine_km(reference[0], reference[1], point[0], point[1])
            if distance > self.dedup_distance_km or record.image:
                references[record.ip] = point
                kept.append(record)
            else:
                logger.debug(
                    "Dropping heartbeat %s from %s (%.1f m from reference)",
                    record.id, record.ip, distance * 1000,
                )

        return kept

    def stats(self) -> StreamStats:
        """Counts over the accepted stream."""
        return StreamStats(
            total_logs=len(self._records),
            active_devices=len({record.device_id for record in self._records}),
            captured_photos=sum(1 for record in self._records if record.image),
            unique_ips=len({record.ip for record in self._records if record.ip != UNKNOWN_IP}),
        )
