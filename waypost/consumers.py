"""
WebSocket consumers for real-time log updates.

Every row inserted into the store is pushed to subscribers of the logs
group. The raw stream and a live consolidated device view are offered.
"""
import json
import logging
from typing import Any

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings

from waypost import STARTUP_TIMESTAMP

from .consolidation import ConsolidationEngine
from .models import LogEntry
from .serializers import LogEntrySerializer, serialize_group
from .types import LogRecord

logger = logging.getLogger(__name__)

LOGS_GROUP = "logs"


class LogStreamConsumer(AsyncWebsocketConsumer):
    """
    WebSocket consumer for the raw insert-notification channel.

    Clients connect to receive every new row as soon as the store
    accepts it.
    """

    def get_client_address(self) -> str:
        """Get formatted client address (IP:port)."""
        headers = dict(self.scope.get('headers', []))
        x_forwarded_for = headers.get(b'x-forwarded-for')
        if x_forwarded_for:
            return x_forwarded_for.decode().split(',')[0].strip()
        client = self.scope.get('client')
        if client:
            return f"{client[0]}:{client[1]}" if len(client) > 1 else str(client[0])
        return 'unknown'

    async def connect(self) -> None:
        """Handle new WebSocket connection."""
        await self.channel_layer.group_add(LOGS_GROUP, self.channel_name)
        await self.accept()

        client_addr = self.get_client_address()
        logger.info(
            "WebSocket client connected from %s", client_addr,
            extra={"channel": self.channel_name, "client_address": client_addr}
        )

        # Clients use this to detect backend restarts
        await self.send(text_data=json.dumps({
            'type': 'welcome',
            'server_startup': STARTUP_TIMESTAMP
        }))

    async def disconnect(self, close_code: int) -> None:
        """Handle WebSocket disconnection."""
        await self.channel_layer.group_discard(LOGS_GROUP, self.channel_name)

        client_addr = self.get_client_address()
        logger.info(
            "WebSocket client disconnected from %s", client_addr,
            extra={"channel": self.channel_name, "client_address": client_addr, "close_code": close_code}
        )

    async def log_entry(self, event: dict[str, Any]) -> None:
        """
        Receive a stored row from the channel layer and send it to the client.

        Args:
            event: Dictionary containing the serialized row
        """
        await self.send(text_data=json.dumps({
            'type': 'log',
            'data': event['data']
        }))


class DeviceGroupConsumer(LogStreamConsumer):
    """
    WebSocket consumer for the live per-device view.

    On connect the client receives all device groups built from the newest
    stored rows; afterwards each pushed row is folded into the same engine
    and the updated group for its device is sent.
    """

    engine: ConsolidationEngine

    @database_sync_to_async
    def _load_initial_rows(self) -> list[dict[str, Any]]:
        rows = LogEntry.objects.order_by('-created_at')[:settings.WAYPOST_FEED_PAGE_SIZE]
        return list(LogEntrySerializer(rows, many=True).data)

    async def connect(self) -> None:
        self.engine = ConsolidationEngine(dedup_distance_km=settings.WAYPOST_DEDUP_DISTANCE_KM)
        await super().connect()

        self.engine.ingest_rows(await self._load_initial_rows())
        await self.send(text_data=json.dumps({
            'type': 'groups',
            'data': [serialize_group(group, include_history=False) for group in self.engine.group_by_device()],
        }))

    async def log_entry(self, event: dict[str, Any]) -> None:
        record = LogRecord.from_row(event['data'])
        if not self.engine.add(record):
            return
        for group in self.engine.group_by_device():
            if group.device_id == record.device_id:
                await self.send(text_data=json.dumps({
                    'type': 'group',
                    'data': serialize_group(group, include_history=False),
                }))
                break
