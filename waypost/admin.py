"""Django admin configuration for the waypost app."""

from django.contrib import admin

from .models import LogEntry


@admin.register(LogEntry)
class LogEntryAdmin(admin.ModelAdmin):
    """Admin interface for LogEntry model."""

    list_display: tuple[str, ...] = (
        'device_id',
        'latitude',
        'longitude',
        'ip_address',
        'has_image',
        'created_at',
    )
    list_filter: tuple[str, ...] = ('created_at',)
    search_fields: tuple[str, ...] = ('device_id', 'ip_address')
    readonly_fields: tuple[str, ...] = ('id', 'created_at', 'device_info')
    date_hierarchy: str = 'created_at'

    @admin.display(boolean=True, description='Image')
    def has_image(self, obj: LogEntry) -> bool:
        return obj.has_image
