"""
Database models for the telemetry store.

The store is a single table of log entries submitted by agents. Rows are
written once and never updated; consolidated views are derived on read.
"""
import uuid

from django.db import models

from .types import UNKNOWN_IP


class LogEntry(models.Model):
    """
    A single position sample, optionally with a camera capture.

    The primary key is generated by the submitting agent so that the
    optimistic local record and the stored row share one identity.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Record identifier, generated by the agent at capture time"
    )
    latitude = models.FloatField(
        help_text="Latitude in decimal degrees (-90 to +90)"
    )
    longitude = models.FloatField(
        help_text="Longitude in decimal degrees (-180 to +180)"
    )
    device_id = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Per-session identifier of the submitting agent"
    )
    ip_address = models.CharField(
        max_length=64,
        default=UNKNOWN_IP,
        help_text="Public IP the agent reported, or 'Unknown'"
    )
    image_data = models.TextField(
        null=True,
        blank=True,
        help_text="Camera capture as a base64 data URL"
    )
    device_info = models.JSONField(
        null=True,
        blank=True,
        help_text="Device fingerprint captured with this sample"
    )
    created_at = models.DateTimeField(
        db_index=True,
        help_text="When the agent created this record"
    )

    class Meta:
        db_table = 'user_locations'
        ordering = ['-created_at']
        verbose_name = 'Log Entry'
        verbose_name_plural = 'Log Entries'
        indexes = [
            models.Index(fields=['device_id', '-created_at'], name='user_locati_device__6f1c2a_idx'),
            models.Index(fields=['-created_at'], name='user_locati_created_9b3e4d_idx'),
        ]

    def __str__(self) -> str:
        """Return string representation of the log entry."""
        return f"{self.device_id} @ ({self.latitude}, {self.longitude}) on {self.created_at}"

    @property
    def has_image(self) -> bool:
        return bool(self.image_data)
