"""
Tests for the consolidation engine: distance, grouping, deduplication,
identity handling and stream statistics.
"""
import math
from collections.abc import Callable

import pytest
from hamcrest import (assert_that, close_to, contains_exactly, equal_to,
                      has_length, is_, less_than, same_instance)

from waypost.consolidation import (DEFAULT_DEDUP_DISTANCE_KM,
                                   ConsolidationEngine, haversine_km)
from waypost.types import UNKNOWN_IP, LogRecord, SyncStatus

RecordFactory = Callable[..., LogRecord]

JAKARTA = (-6.2088, 106.8456)


class TestHaversine:
    """Tests for great-circle distance."""

    def test_zero_for_identical_points(self) -> None:
        assert_that(haversine_km(*JAKARTA, *JAKARTA), equal_to(0.0))

    @pytest.mark.parametrize("a,b", [
        ((-6.2088, 106.8456), (-6.2038, 106.8456)),
        ((51.5074, -0.1278), (40.7128, -74.0060)),
        ((0.0, 179.9), (0.0, -179.9)),
        ((89.0, 0.0), (-89.0, 180.0)),
    ])
    def test_symmetric(self, a: tuple[float, float], b: tuple[float, float]) -> None:
        assert_that(haversine_km(*a, *b), close_to(haversine_km(*b, *a), 1e-9))

    def test_known_short_distance(self) -> None:
        """0.005 degrees of latitude is about 556 meters."""
        assert_that(haversine_km(-6.2088, 106.8456, -6.2038, 106.8456), close_to(0.556, 0.002))

    def test_known_long_distance(self) -> None:
        """London to New York is about 5570 km."""
        assert_that(haversine_km(51.5074, -0.1278, 40.7128, -74.0060), close_to(5570, 10))

    def test_antimeridian_is_short(self) -> None:
        assert_that(haversine_km(0.0, 179.9, 0.0, -179.9), less_than(25))


class TestIngress:
    """Tests for record validation and identity on the way in."""

    @pytest.mark.parametrize("lat,lng", [
        (math.nan, 106.8),
        (-6.2, math.nan),
        (math.inf, 106.8),
        (-6.2, -math.inf),
    ])
    def test_rejects_non_finite_coordinates(self, make_record: RecordFactory, lat: float, lng: float) -> None:
        engine = ConsolidationEngine()
        assert_that(engine.add(make_record(lat=lat, lng=lng)), is_(False))
        assert_that(engine, has_length(0))

    def test_rejects_rows_with_missing_coordinates(self) -> None:
        engine = ConsolidationEngine()
        added = engine.ingest_rows([{
            'id': '2b1c4f7e-5f1a-4a8e-9d62-1f0c3b8f2a11',
            'latitude': None,
            'device_id': 'user_abc1234',
            'ip_address': '203.0.113.7',
            'created_at': '2025-01-15T12:00:00+00:00',
        }])
        assert_that(added, equal_to(0))
        assert_that(engine.group_by_device(), has_length(0))
        assert_that(engine.deduplicate(), has_length(0))

    def test_accepts_string_coordinates_from_rows(self) -> None:
        engine = ConsolidationEngine()
        added = engine.ingest_rows([{
            'id': '2b1c4f7e-5f1a-4a8e-9d62-1f0c3b8f2a11',
            'latitude': '-6.2088',
            'longitude': '106.8456',
            'device_id': 'user_abc1234',
            'ip_address': '203.0.113.7',
            'created_at': '2025-01-15T12:00:00Z',
        }])
        assert_that(added, equal_to(1))
        assert_that(engine.records[0].latitude, close_to(-6.2088, 1e-9))

    def test_same_id_is_stored_once(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        local = make_record()
        pushed = make_record(record_id=local.id, synced=True)

        assert_that(engine.add(local), is_(True))
        assert_that(engine.add(pushed), is_(False))
        assert_that(engine, has_length(1))

    def test_pushed_row_marks_optimistic_record_synced(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        local = make_record()
        engine.add(local)

        engine.add(make_record(record_id=local.id, synced=True))

        assert_that(engine.records[0], same_instance(local))
        assert_that(local.sync_status, equal_to(SyncStatus.SYNCED))

    def test_local_duplicate_does_not_change_status(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        local = make_record()
        engine.add(local)
        engine.add(make_record(record_id=local.id))
        assert_that(local.sync_status, equal_to(SyncStatus.LOCAL))

    def test_ingest_counts_appended(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        first = make_record()
        added = engine.ingest([first, make_record(minutes=1), make_record(record_id=first.id)])
        assert_that(added, equal_to(2))


class TestGroupByDevice:
    """Tests for the per-device grouping view."""

    def test_groups_per_device(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        a_records = [make_record(device_id='A', minutes=m) for m in (1, 2, 3)]
        b_records = [make_record(device_id='B', minutes=m) for m in (1.5, 2.5)]
        engine.ingest(b_records + list(reversed(a_records)))

        groups = engine.group_by_device()

        assert_that(groups, has_length(2))
        by_device = {group.device_id: group for group in groups}
        assert_that(by_device['A'].latest_log, same_instance(a_records[-1]))
        assert_that(by_device['A'].history, has_length(3))
        assert_that(by_device['B'].history, has_length(2))

    def test_history_is_oldest_first(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        records = [make_record(device_id='A', minutes=m) for m in (3, 1, 2)]
        engine.ingest(records)

        history = engine.group_by_device()[0].history
        assert_that(
            [record.created_at for record in history],
            equal_to(sorted(record.created_at for record in records)),
        )

    def test_most_recent_device_first(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(device_id='A', minutes=10),
            make_record(device_id='B', minutes=20),
            make_record(device_id='C', minutes=5),
        ])
        assert_that(
            [group.device_id for group in engine.group_by_device()],
            contains_exactly('B', 'A', 'C'),
        )

    def test_collects_images_with_timestamps(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        with_image = make_record(device_id='A', minutes=2, image=b'frame')
        engine.ingest([make_record(device_id='A', minutes=1), with_image])

        group = engine.group_by_device()[0]
        assert_that(group.images, contains_exactly((b'frame', with_image.created_at)))

    def test_group_ip_follows_latest_record(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(device_id='A', minutes=2, ip='198.51.100.1'),
            make_record(device_id='A', minutes=1, ip='203.0.113.7'),
        ])
        assert_that(engine.group_by_device()[0].ip, equal_to('198.51.100.1'))

    def test_empty_stream(self) -> None:
        assert_that(ConsolidationEngine().group_by_device(), equal_to([]))


class TestDeduplicate:
    """Tests for the heartbeat-dropping activity view."""

    def test_keeps_distant_same_ip_records(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(lat=-6.2088, lng=106.8456, minutes=0),
            make_record(lat=-6.2038, lng=106.8456, minutes=1),
        ])
        assert_that(engine.deduplicate(), has_length(2))

    def test_drops_nearby_same_ip_heartbeat(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        older = make_record(lat=-6.20880, lng=106.84560, minutes=0)
        newer = make_record(lat=-6.20885, lng=106.84565, minutes=1)
        engine.ingest([older, newer])

        kept = engine.deduplicate()

        assert_that(kept, contains_exactly(same_instance(newer)))

    def test_keeps_nearby_record_with_image(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(lat=-6.20880, lng=106.84560, minutes=0, image=b'frame'),
            make_record(lat=-6.20885, lng=106.84565, minutes=1),
        ])
        assert_that(engine.deduplicate(), has_length(2))

    def test_unknown_ip_is_never_deduplicated(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([make_record(ip=UNKNOWN_IP, minutes=m) for m in range(4)])
        assert_that(engine.deduplicate(), has_length(4))

    def test_different_ips_are_independent(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(ip='203.0.113.7', minutes=0),
            make_record(ip='198.51.100.1', minutes=1),
        ])
        assert_that(engine.deduplicate(), has_length(2))

    def test_reference_point_moves_with_kept_records(self, make_record: RecordFactory) -> None:
        """Each kept record becomes the new reference for its IP."""
        engine = ConsolidationEngine()
        # Newest to oldest: 0 m, 40 m, 80 m from the newest point
        engine.ingest([
            make_record(lat=-6.20952, lng=106.8456, minutes=0),
            make_record(lat=-6.20916, lng=106.8456, minutes=1),
            make_record(lat=-6.20880, lng=106.8456, minutes=2),
        ])
        kept = engine.deduplicate()
        # 40 m is a heartbeat; 80 m from the reference is kept
        assert_that(kept, has_length(2))
        assert_that(kept[1].latitude, close_to(-6.20952, 1e-9))

    def test_output_is_newest_first(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(ip=UNKNOWN_IP, minutes=1),
            make_record(ip=UNKNOWN_IP, minutes=3),
            make_record(ip=UNKNOWN_IP, minutes=2),
        ])
        created = [record.created_at for record in engine.deduplicate()]
        assert_that(created, equal_to(sorted(created, reverse=True)))

    def test_threshold_is_configurable(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine(dedup_distance_km=1.0)
        engine.ingest([
            make_record(lat=-6.2088, lng=106.8456, minutes=0),
            make_record(lat=-6.2038, lng=106.8456, minutes=1),
        ])
        assert_that(engine.deduplicate(), has_length(1))

    def test_default_threshold_is_fifty_meters(self) -> None:
        assert_that(DEFAULT_DEDUP_DISTANCE_KM, equal_to(0.05))


class TestStats:
    """Tests for the headline counts."""

    def test_counts(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([
            make_record(device_id='A', ip='203.0.113.7', image=b'frame'),
            make_record(device_id='A', ip='203.0.113.7', minutes=1),
            make_record(device_id='B', ip=UNKNOWN_IP, minutes=2),
            make_record(device_id='C', ip='198.51.100.1', minutes=3, image=b'frame'),
        ])
        stats = engine.stats()
        assert_that(stats.total_logs, equal_to(4))
        assert_that(stats.active_devices, equal_to(3))
        assert_that(stats.captured_photos, equal_to(2))
        assert_that(stats.unique_ips, equal_to(2))

    def test_empty(self) -> None:
        assert_that(ConsolidationEngine().stats().to_dict(), equal_to({
            'total_logs': 0,
            'active_devices': 0,
            'captured_photos': 0,
            'unique_ips': 0,
        }))

    def test_total_excludes_rejected(self, make_record: RecordFactory) -> None:
        engine = ConsolidationEngine()
        engine.ingest([make_record(), make_record(lat=math.nan)])
        assert_that(engine.stats().total_logs, equal_to(1))
