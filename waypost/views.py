"""
API views for the telemetry store.

This module provides REST API endpoints for receiving log entries from
agents, querying stored history, the consolidated per-device and activity
views, and the capture ingest endpoint.
"""
import logging
import time
from typing import Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db.models import QuerySet
from django.utils import timezone
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from .consolidation import ConsolidationEngine
from .consumers import LOGS_GROUP
from .models import LogEntry
from .serializers import (CaptureSerializer, LogEntrySerializer,
                          serialize_group, serialize_record)
from .storage import EncodingError, write_capture
from .utils import get_client_ip

logger = logging.getLogger(__name__)


def broadcast_log(data: dict[str, Any]) -> None:
    """Push a newly stored row to every subscriber of the logs group."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("WebSocket broadcast skipped: no channel layer configured")
        return
    try:
        async_to_sync(channel_layer.group_send)(
            LOGS_GROUP,
            {
                "type": "log_entry",
                "data": data,
            }
        )
        logger.debug("Broadcast log entry %s", data.get('id'))
    except Exception as e:
        logger.error(
            "WebSocket broadcast failed",
            extra={"log_id": data.get("id"), "error": str(e)},
            exc_info=True
        )


def build_engine(queryset: QuerySet[LogEntry], limit: int) -> ConsolidationEngine:
    """Load the newest ``limit`` rows of ``queryset`` into a fresh engine."""
    engine = ConsolidationEngine(dedup_distance_km=settings.WAYPOST_DEDUP_DISTANCE_KM)
    rows = LogEntrySerializer(queryset.order_by('-created_at')[:limit], many=True).data
    engine.ingest_rows(rows)
    return engine


@method_decorator(csrf_exempt, name='dispatch')
class LogEntryViewSet(mixins.CreateModelMixin,
                      mixins.ListModelMixin,
                      mixins.RetrieveModelMixin,
                      viewsets.GenericViewSet):
    """
    ViewSet for the remote log store.

    Provides endpoints for:
    - POST: Insert a log entry from an agent
    - GET: Query history, newest first, optionally filtered by device
    - GET devices/: Per-device grouped history
    - GET activity/: Deduplicated activity feed
    - GET stats/: Headline counts
    """

    queryset = LogEntry.objects.all()
    serializer_class = LogEntrySerializer
    permission_classes = [AllowAny]

    def get_queryset(self) -> QuerySet[LogEntry]:
        queryset = LogEntry.objects.order_by('-created_at')
        device_id = self.request.query_params.get('device')
        if device_id:
            queryset = queryset.filter(device_id=device_id)
        return queryset

    def _feed_limit(self, request: Request) -> int | Response:
        raw = request.query_params.get('limit')
        if raw is None:
            return settings.WAYPOST_FEED_PAGE_SIZE
        try:
            limit = int(raw)
        except ValueError:
            return Response(
                {'error': f"Expected integer for limit, got '{raw}'"},
                status=status.HTTP_400_BAD_REQUEST
            )
        if limit <= 0:
            return Response(
                {'error': f"Expected positive limit, got {limit}"},
                status=status.HTTP_400_BAD_REQUEST
            )
        return limit

    def create(self, request: Request, *args: Any, **kwargs: Any) -> Response:
        """
        Insert a log entry submitted by an agent.

        An entry whose id is already stored is acknowledged with the stored
        row instead of being inserted twice.

        Args:
            request: HTTP request with the log entry JSON payload

        Returns:
            201 with the stored row, or 200 if the id was already stored
        """
        client_ip = get_client_ip(request.META)
        logger.info("Incoming log entry from: %s", client_ip)

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry_id = serializer.validated_data.get('id')
        if entry_id is not None:
            existing = LogEntry.objects.filter(pk=entry_id).first()
            if existing is not None:
                logger.info("Log entry %s already stored, acknowledging", entry_id)
                return Response(self.get_serializer(existing).data, status=status.HTTP_200_OK)

        serializer.save(created_at=serializer.validated_data.get('created_at') or timezone.now())
        logger.info(
            "Stored log entry %s for device %s",
            serializer.data.get('id'), serializer.data.get('device_id'),
        )
        broadcast_log(dict(serializer.data))
        return Response(serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def devices(self, request: Request) -> Response:
        """
        Per-device grouped history over the newest rows.

        Query parameters:
        - limit: Number of newest rows to consolidate (default: feed page size)
        - history: "0" to omit each group's full history
        """
        limit = self._feed_limit(request)
        if isinstance(limit, Response):
            return limit
        include_history = request.query_params.get('history', '1') != '0'
        groups = build_engine(self.get_queryset(), limit).group_by_device()
        return Response({
            'count': len(groups),
            'results': [serialize_group(group, include_history=include_history) for group in groups],
        })

    @action(detail=False, methods=['get'])
    def activity(self, request: Request) -> Response:
        """
        Deduplicated activity feed over the newest rows, newest first.

        Query parameters:
        - limit: Number of newest rows to consolidate (default: feed page size)
        """
        limit = self._feed_limit(request)
        if isinstance(limit, Response):
            return limit
        engine = build_engine(self.get_queryset(), limit)
        records = engine.deduplicate()
        return Response({
            'count': len(records),
            'considered': len(engine),
            'results': [serialize_record(record) for record in records],
        })

    @action(detail=False, methods=['get'])
    def stats(self, request: Request) -> Response:
        """Headline counts over the newest rows."""
        limit = self._feed_limit(request)
        if isinstance(limit, Response):
            return limit
        return Response(build_engine(self.get_queryset(), limit).stats().to_dict())


@method_decorator(csrf_exempt, name='dispatch')
class CaptureView(APIView):
    """
    Ingest endpoint for capture bundles.

    Writes the decoded image, if any, to the upload directory as
    ``{device_id}_{timestamp}.jpg``.
    """

    permission_classes = [AllowAny]

    def post(self, request: Request) -> Response:
        serializer = CaptureSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        device_id = data['device_id']

        image_data = data.get('image_data')
        if not image_data:
            logger.info("[LOG] Data received from %s", device_id)
            return Response({'success': True})

        timestamp = data.get('timestamp') or int(time.time() * 1000)
        try:
            filename = write_capture(settings.UPLOAD_DIR, device_id, timestamp, image_data)
        except EncodingError as e:
            logger.error("Error processing image from %s: %s", device_id, e)
            return Response({'error': 'Invalid image data'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except OSError as e:
            logger.error("Error saving file for %s: %s", device_id, e)
            return Response({'error': 'Failed to save image'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        logger.info("[SAVED] Image saved to %s", filename)
        return Response({'success': True, 'file': filename})
