"""Waypost: location and camera telemetry with consolidated device history."""

import time

__version__ = "0.1.0"

# Sent to WebSocket clients so they can detect a server restart
STARTUP_TIMESTAMP: int = int(time.time())
