"""
Dual-write sync pipeline.

``submit`` turns a snapshot into a LogRecord and returns it at once for
optimistic display. The capture artifact and the log row are written to
the server by two independent background tasks; their outcome is
observed through ``on_status_change`` and ``drain``.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import httpx

from ..types import LogRecord, Snapshot
from ..utils import encode_data_url
from .errors import SyncError

logger = logging.getLogger(__name__)

LOGS_PATH = "/api/logs/"
CAPTURE_PATH = "/api/capture"

DEFAULT_RECENT_LIMIT = 50

StatusCallback = Callable[[LogRecord], Any]


class BackendClient:
    """
    Thin wrapper around the shared HTTP client for the server API.

    The wrapped ``httpx.AsyncClient`` is owned by the caller, which sets
    its ``base_url`` and closes it.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def insert_log(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Insert one log row; returns the stored row."""
        return await self._post(LOGS_PATH, payload)

    async def post_capture(self, bundle: dict[str, Any]) -> dict[str, Any]:
        """Send a capture bundle to the ingest endpoint."""
        return await self._post(CAPTURE_PATH, bundle)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise SyncError(
                f"POST {path} failed: {e}",
                code=type(e).__name__,
                hint="Check WAYPOST_SERVER_URL and network connectivity",
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if not response.is_success:
            hint = (
                "The server rejected the payload"
                if response.is_client_error
                else "Check the server logs"
            )
            raise SyncError(
                f"POST {path} returned HTTP {response.status_code}",
                code=str(response.status_code),
                detail=body,
                hint=hint,
            )
        return body if isinstance(body, dict) else {}


def capture_bundle(record: LogRecord) -> dict[str, Any]:
    """Build the ingest endpoint body for a record carrying an image."""
    if record.image is None:
        raise ValueError(f"Expected an image on record {record.id}, got none")
    return {
        "device_id": record.device_id,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "image_data": encode_data_url(record.image),
        "device_info": record.device_info.to_dict() if record.device_info else None,
        "timestamp": int(record.created_at.timestamp() * 1000),
    }


class SyncPipeline:
    """
    Optimistic log submission with background remote writes.

    Args:
        backend: Server API client
        on_status_change: Called with a record after it becomes SYNCED
        recent_limit: Number of records kept in ``recent``
    """

    def __init__(
        self,
        backend: BackendClient,
        on_status_change: StatusCallback | None = None,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._backend = backend
        self._on_status_change = on_status_change
        self.recent_limit = recent_limit
        self.recent: list[LogRecord] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of writes still in flight."""
        return len(self._tasks)

    def submit(self, snapshot: Snapshot) -> LogRecord:
        """
        Create a LOCAL record for ``snapshot`` and schedule its writes.

        Must be called from a running event loop. Never awaits network I/O
        and never raises for write failures.
        """
        record = LogRecord.from_snapshot(snapshot)
        self.recent.insert(0, record)
        del self.recent[self.recent_limit:]

        if record.image:
            self._spawn(self._write_artifact(record), f"capture-{record.id}")
        self._spawn(self._write_remote(record), f"log-{record.id}")
        return record

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write_artifact(self, record: LogRecord) -> None:
        try:
            result = await self._backend.post_capture(capture_bundle(record))
        except SyncError as e:
            logger.warning(
                "Capture upload failed for %s: %s (code=%s, hint=%s)",
                record.id, e.message, e.code, e.hint,
            )
            return
        except Exception:
            logger.exception("Capture upload failed for %s", record.id)
            return
        logger.debug("Capture for %s stored as %s", record.id, result.get("file"))

    async def _write_remote(self, record: LogRecord) -> None:
        try:
            await self._backend.insert_log(record.to_payload())
        except SyncError as e:
            logger.error(
                "Log sync failed for %s: %s (code=%s, detail=%s, hint=%s)",
                record.id, e.message, e.code, e.detail, e.hint,
            )
            return
        except Exception:
            logger.exception("Log sync failed for %s", record.id)
            return

        if record.mark_synced():
            logger.debug("Log %s synced", record.id)
            if self._on_status_change is not None:
                try:
                    self._on_status_change(record)
                except Exception:
                    logger.exception("Status change handler failed")
