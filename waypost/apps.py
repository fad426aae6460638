"""App configuration for the waypost application."""

import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class WaypostConfig(AppConfig):
    """Configuration for the waypost app."""

    default_auto_field: str = 'django.db.models.BigAutoField'
    name: str = 'waypost'
    verbose_name: str = 'Waypost'

    def ready(self) -> None:
        """Log where decoded captures will be written."""
        logger.debug("Capture uploads directory: %s", settings.UPLOAD_DIR)
