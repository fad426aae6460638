"""
Serializers for the telemetry API.

This module provides DRF serializers for the remote store rows, the
ingest bundle and the consolidated per-device views.
"""
import logging
import math
from typing import Any

from rest_framework import serializers

from .models import LogEntry
from .types import UNKNOWN_IP, DeviceGroup, LogRecord
from .utils import encode_data_url

logger = logging.getLogger(__name__)


def _validate_coordinate(value: float, name: str, bound: float) -> float:
    if not math.isfinite(value):
        raise serializers.ValidationError(f"Expected finite {name}, got {value}")
    if not -bound <= value <= bound:
        raise serializers.ValidationError(
            f"Expected {name} between -{bound:g} and +{bound:g} degrees, got {value}"
        )
    return value


class LogEntrySerializer(serializers.ModelSerializer):
    """
    Serializer for LogEntry rows.

    Accepts the agent-generated ``id`` so that a row keeps the identity of
    the optimistic record it came from.
    """

    id = serializers.UUIDField(required=False)
    ip_address = serializers.CharField(max_length=64, required=False, allow_blank=True)
    device_info = serializers.JSONField(required=False, allow_null=True)
    has_image = serializers.BooleanField(read_only=True)

    class Meta:
        model = LogEntry
        fields = [
            'id', 'latitude', 'longitude', 'device_id', 'ip_address',
            'image_data', 'device_info', 'created_at', 'has_image',
        ]
        extra_kwargs = {
            'created_at': {'required': False},
        }

    def validate_latitude(self, value: float) -> float:
        return _validate_coordinate(value, 'latitude', 90)

    def validate_longitude(self, value: float) -> float:
        return _validate_coordinate(value, 'longitude', 180)

    def validate_ip_address(self, value: str) -> str:
        return value or UNKNOWN_IP

    def validate_device_info(self, value: Any) -> Any:
        if value is not None and not isinstance(value, dict):
            raise serializers.ValidationError(
                f"Expected device_info object, got {type(value).__name__}"
            )
        return value


class CaptureSerializer(serializers.Serializer):
    """Bundle accepted by the ingest endpoint."""

    device_id = serializers.CharField(max_length=100)
    latitude = serializers.FloatField(required=False, allow_null=True)
    longitude = serializers.FloatField(required=False, allow_null=True)
    image_data = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    device_info = serializers.JSONField(required=False, allow_null=True)
    timestamp = serializers.IntegerField(required=False, allow_null=True, min_value=0)


def serialize_record(record: LogRecord) -> dict[str, Any]:
    """Render a LogRecord in the same shape as a LogEntry row."""
    return {
        'id': str(record.id),
        'latitude': record.latitude,
        'longitude': record.longitude,
        'device_id': record.device_id,
        'ip_address': record.ip,
        'image_data': encode_data_url(record.image) if record.image else None,
        'device_info': record.device_info.to_dict() if record.device_info else None,
        'created_at': record.created_at.isoformat(),
        'has_image': record.image is not None,
        'status': record.sync_status.value,
    }


def serialize_group(group: DeviceGroup, include_history: bool = True) -> dict[str, Any]:
    """Render a DeviceGroup; images are data URLs paired with their capture time."""
    data: dict[str, Any] = {
        'device_id': group.device_id,
        'ip_address': group.ip,
        'latest_log': serialize_record(group.latest_log),
        'log_count': len(group.history),
        'images': [
            {'image_data': encode_data_url(image), 'timestamp': timestamp.isoformat()}
            for image, timestamp in group.images
        ],
    }
    if include_history:
        data['history'] = [serialize_record(record) for record in group.history]
    return data
