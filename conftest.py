"""Shared test fixtures for the waypost project."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from rest_framework.test import APIClient

from waypost.types import (LogRecord, Position, PositionSource, SyncStatus)

BASE_TIME = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

# 1x1 JPEG-ish payload; content is opaque to the code under test
SAMPLE_IMAGE = b'\xff\xd8\xff\xe0sample-frame\xff\xd9'


def build_record(
    lat: float = -6.2088,
    lng: float = 106.8456,
    device_id: str = 'user_abc1234',
    ip: str = '203.0.113.7',
    minutes: float = 0,
    image: bytes | None = None,
    synced: bool = False,
    record_id: uuid.UUID | None = None,
) -> LogRecord:
    """Build a LogRecord ``minutes`` after BASE_TIME."""
    created_at = BASE_TIME + timedelta(minutes=minutes)
    return LogRecord(
        id=record_id or uuid.uuid4(),
        position=Position(lat=lat, lng=lng, timestamp=created_at, source=PositionSource.GPS),
        device_id=device_id,
        ip=ip,
        created_at=created_at,
        image=image,
        sync_status=SyncStatus.SYNCED if synced else SyncStatus.LOCAL,
    )


@pytest.fixture
def make_record() -> Callable[..., LogRecord]:
    """Factory for LogRecords at fixed offsets from BASE_TIME."""
    return build_record


@pytest.fixture
def api_client() -> APIClient:
    """Provide a DRF API client for testing."""
    return APIClient()


@pytest.fixture
def upload_dir(settings: Any, tmp_path: Path) -> Path:
    """Point capture uploads at a temporary directory."""
    settings.UPLOAD_DIR = tmp_path / 'uploads'
    return settings.UPLOAD_DIR
