"""
Tests for the shared record types, data URL helpers and capture storage.
"""
import math
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest
from hamcrest import (assert_that, calling, contains_string, equal_to,
                      has_entries, has_length, is_, is_not, matches_regexp,
                      none, raises, starts_with)

from waypost.storage import EncodingError, capture_filename, write_capture
from waypost.types import (FALLBACK_IP, UNKNOWN_IP, DeviceInfo, LogRecord,
                           Position, PositionSource, Snapshot, SyncStatus,
                           is_finite_number)
from waypost.utils import (decode_data_url, encode_data_url,
                           generate_device_id, get_client_ip,
                           safe_filename_component)

RecordFactory = Callable[..., LogRecord]


def gps_position(ip: str | None = None) -> Position:
    return Position(
        lat=-6.2088,
        lng=106.8456,
        timestamp=datetime(2025, 1, 15, 12, 0, tzinfo=UTC),
        source=PositionSource.GPS,
        accuracy_m=12.0,
        ip=ip,
    )


class TestIsFiniteNumber:
    """Tests for the coordinate validity check."""

    @pytest.mark.parametrize("value", [0, -6.2088, 106, 1e300])
    def test_finite(self, value: float) -> None:
        assert_that(is_finite_number(value), is_(True))

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, None, "1.5", True, [1]])
    def test_not_finite(self, value: object) -> None:
        assert_that(is_finite_number(value), is_(False))


class TestDeviceInfo:
    """Tests for fingerprint serialization."""

    def test_to_dict_omits_unknown_optionals(self) -> None:
        info = DeviceInfo(
            user_agent='waypost-agent/0.1.0',
            platform='Linux',
            screen_resolution='Unknown',
            window_size='80x24',
            language='en-US',
        )
        data = info.to_dict()
        assert_that(data, equal_to({
            'userAgent': 'waypost-agent/0.1.0',
            'platform': 'Linux',
            'screenResolution': 'Unknown',
            'windowSize': '80x24',
            'language': 'en-US',
            'touchSupport': False,
        }))

    def test_round_trip_with_optionals(self) -> None:
        info = DeviceInfo(
            user_agent='ua',
            platform='Linux',
            screen_resolution='1920x1080',
            window_size='80x24',
            language='en-US',
            touch_support=True,
            cores=4,
            memory_gb=7.6,
            connection_type='wifi',
            gpu_renderer='Mali-G52',
        )
        assert_that(info.to_dict(), has_entries({
            'cores': 4,
            'memory': 7.6,
            'connectionType': 'wifi',
            'gpuRenderer': 'Mali-G52',
        }))
        assert_that(DeviceInfo.from_dict(info.to_dict()), equal_to(info))


class TestLogRecord:
    """Tests for record identity, immutability and sync status."""

    def test_from_snapshot_defaults(self) -> None:
        record = LogRecord.from_snapshot(Snapshot(position=gps_position(), device_id='user_abc1234'))

        assert_that(record.sync_status, equal_to(SyncStatus.LOCAL))
        assert_that(record.ip, equal_to(UNKNOWN_IP))
        assert_that(record.id, is_(uuid.UUID))
        assert_that(record.created_at.tzinfo, is_not(none()))

    def test_from_snapshot_prefers_snapshot_ip(self) -> None:
        snapshot = Snapshot(position=gps_position(ip='198.51.100.1'), device_id='d', ip='203.0.113.7')
        assert_that(LogRecord.from_snapshot(snapshot).ip, equal_to('203.0.113.7'))

    def test_from_snapshot_falls_back_to_position_ip(self) -> None:
        snapshot = Snapshot(position=gps_position(ip='198.51.100.1'), device_id='d')
        assert_that(LogRecord.from_snapshot(snapshot).ip, equal_to('198.51.100.1'))

    def test_each_snapshot_gets_a_fresh_id(self) -> None:
        snapshot = Snapshot(position=gps_position(), device_id='d')
        assert_that(LogRecord.from_snapshot(snapshot).id, is_not(equal_to(LogRecord.from_snapshot(snapshot).id)))

    def test_fields_are_frozen(self, make_record: RecordFactory) -> None:
        record = make_record()
        assert_that(calling(setattr).with_args(record, 'device_id', 'other'), raises(AttributeError))
        assert_that(calling(setattr).with_args(record, 'ip', '1.1.1.1'), raises(AttributeError))

    def test_mark_synced_is_one_way(self, make_record: RecordFactory) -> None:
        record = make_record()

        assert_that(record.mark_synced(), is_(True))
        assert_that(record.mark_synced(), is_(False))
        assert_that(record.is_synced, is_(True))
        assert_that(
            calling(setattr).with_args(record, 'sync_status', SyncStatus.LOCAL),
            raises(AttributeError),
        )

    def test_to_payload(self, make_record: RecordFactory) -> None:
        record = make_record(image=b'frame')
        payload = record.to_payload()

        assert_that(payload, has_entries({
            'id': str(record.id),
            'latitude': -6.2088,
            'longitude': 106.8456,
            'device_id': 'user_abc1234',
            'ip_address': '203.0.113.7',
            'image_data': starts_with('data:image/jpeg;base64,'),
            'device_info': None,
            'created_at': record.created_at.isoformat(),
        }))

    def test_from_row_is_synced(self, make_record: RecordFactory) -> None:
        original = make_record(image=b'frame')
        record = LogRecord.from_row(original.to_payload())

        assert_that(record.id, equal_to(original.id))
        assert_that(record.sync_status, equal_to(SyncStatus.SYNCED))
        assert_that(record.image, equal_to(b'frame'))
        assert_that(record.created_at, equal_to(original.created_at))

    def test_from_row_drops_undecodable_image(self) -> None:
        record = LogRecord.from_row({
            'id': str(uuid.uuid4()),
            'latitude': 1.0,
            'longitude': 2.0,
            'device_id': 'd',
            'ip_address': '',
            'image_data': 'data:image/jpeg;base64,***',
            'created_at': '2025-01-15T12:00:00Z',
        })
        assert_that(record.image, is_(none()))
        assert_that(record.ip, equal_to(UNKNOWN_IP))

    def test_from_row_missing_coordinates_are_nan(self) -> None:
        record = LogRecord.from_row({
            'id': str(uuid.uuid4()),
            'device_id': 'd',
            'created_at': '2025-01-15T12:00:00',
        })
        assert_that(math.isnan(record.latitude), is_(True))
        assert_that(record.position.has_finite_coordinates, is_(False))
        assert_that(record.created_at.tzinfo, equal_to(UTC))


class TestConstants:
    def test_sentinels(self) -> None:
        assert_that(UNKNOWN_IP, equal_to('Unknown'))
        assert_that(FALLBACK_IP, equal_to('127.0.0.1'))


class TestDataUrls:
    """Tests for base64 image helpers."""

    def test_encode(self) -> None:
        assert_that(encode_data_url(b'abc'), equal_to('data:image/jpeg;base64,YWJj'))

    @pytest.mark.parametrize("value", [
        'data:image/jpeg;base64,YWJj',
        'data:image/png;base64,YWJj',
        'YWJj',
    ])
    def test_decode_strips_prefix(self, value: str) -> None:
        assert_that(decode_data_url(value), equal_to(b'abc'))

    def test_decode_rejects_garbage(self) -> None:
        assert_that(calling(decode_data_url).with_args('not base64!'), raises(ValueError))


class TestUtils:
    """Tests for identifiers and request helpers."""

    def test_generate_device_id(self) -> None:
        assert_that(generate_device_id(), matches_regexp(r'^user_[a-z0-9]{7}$'))

    def test_generate_device_id_is_random(self) -> None:
        assert_that({generate_device_id() for _ in range(20)}, has_length(20))

    @pytest.mark.parametrize("value,expected", [
        ('user_abc1234', 'user_abc1234'),
        ('../../etc/passwd', 'etc_passwd'),
        ('a b/c', 'a_b_c'),
        ('///', 'unknown'),
    ])
    def test_safe_filename_component(self, value: str, expected: str) -> None:
        assert_that(safe_filename_component(value), equal_to(expected))

    def test_client_ip_prefers_forwarded_for(self) -> None:
        meta = {'HTTP_X_FORWARDED_FOR': '203.0.113.7, 10.0.0.1', 'REMOTE_ADDR': '10.0.0.1'}
        assert_that(get_client_ip(meta), equal_to('203.0.113.7'))

    def test_client_ip_remote_addr(self) -> None:
        assert_that(get_client_ip({'REMOTE_ADDR': '10.0.0.1'}), equal_to('10.0.0.1'))

    def test_client_ip_missing(self) -> None:
        assert_that(get_client_ip({}), is_(none()))


class TestStorage:
    """Tests for capture artifact writes."""

    def test_capture_filename(self) -> None:
        assert_that(capture_filename('user_abc1234', 1705320000000), equal_to('user_abc1234_1705320000000.jpg'))

    def test_write_capture(self, tmp_path: Path) -> None:
        upload_dir = tmp_path / 'uploads'
        name = write_capture(upload_dir, 'user_abc1234', 1705320000000, encode_data_url(b'frame'))

        assert_that(name, equal_to('user_abc1234_1705320000000.jpg'))
        assert_that((upload_dir / name).read_bytes(), equal_to(b'frame'))

    def test_write_capture_rejects_bad_base64(self, tmp_path: Path) -> None:
        assert_that(
            calling(write_capture).with_args(tmp_path, 'd', 1, 'data:image/jpeg;base64,%%%'),
            raises(EncodingError, 'base64'),
        )

    def test_write_capture_sanitizes_device_id(self, tmp_path: Path) -> None:
        name = write_capture(tmp_path, '../evil', 5, 'YWJj')
        assert_that(name, is_not(contains_string('/')))
        assert_that((tmp_path / name).exists(), is_(True))
