"""
Position resolution for the telemetry agent.

Two independent paths:

- ``resolve_approximate`` walks an ordered chain of public IP-geolocation
  providers and returns the first valid answer, or a fixed fallback
  position when every provider fails. It never raises.
- ``watch_precise`` subscribes to a satellite position feed and forwards
  every fix until cancelled. Permission denial is the only fatal error.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from ..types import FALLBACK_IP, Position, PositionSource, is_finite_number
from .errors import (CoordinateValidationError, LocationPermissionError,
                     NetworkError, ProviderError)
from .gps import FeedWatch, Fix, PositionFeed, WatchOptions

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT = 5.0

# Returned when every approximate provider fails
FALLBACK_LAT = -6.2088
FALLBACK_LNG = 106.8456
FALLBACK_ACCURACY_M = 10000.0

# Accuracy attached to any provider answer
IP_ACCURACY_M = 5000.0


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    One IP-geolocation provider.

    Attributes:
        name: Label used in logs
        url: Endpoint returning JSON for the caller's public IP
        extract: Maps the decoded JSON body to ``(lat, lng, ip)``; may raise
    """

    name: str
    url: str
    extract: Callable[[Any], tuple[Any, Any, str | None]]


def _extract_geojs(data: Any) -> tuple[Any, Any, str | None]:
    # geojs serves coordinates as strings
    return float(data["latitude"]), float(data["longitude"]), data.get("ip")


def _extract_ipapi(data: Any) -> tuple[Any, Any, str | None]:
    return data.get("latitude"), data.get("longitude"), data.get("ip")


def _extract_ipwho(data: Any) -> tuple[Any, Any, str | None]:
    if not data.get("success"):
        raise ProviderError("ipwho.is", str(data.get("message", "lookup unsuccessful")))
    return data.get("latitude"), data.get("longitude"), data.get("ip")


DEFAULT_PROVIDERS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor("geojs.io", "https://get.geojs.io/v1/ip/geo.json", _extract_geojs),
    ProviderDescriptor("ipapi.co", "https://ipapi.co/json/", _extract_ipapi),
    ProviderDescriptor("ipwho.is", "https://ipwho.is/", _extract_ipwho),
)


def fallback_position() -> Position:
    """The fixed position used when no provider answers."""
    return Position(
        lat=FALLBACK_LAT,
        lng=FALLBACK_LNG,
        timestamp=datetime.now(tz=UTC),
        source=PositionSource.IP,
        accuracy_m=FALLBACK_ACCURACY_M,
        ip=FALLBACK_IP,
    )


def position_from_fix(fix: Fix) -> Position:
    """Convert a satellite fix to a GPS Position."""
    return Position(
        lat=fix.latitude,
        lng=fix.longitude,
        timestamp=fix.timestamp,
        source=PositionSource.GPS,
        accuracy_m=fix.accuracy_m,
    )


class PreciseWatch:
    """
    Handle returned by ``LocationResolver.watch_precise``.

    ``cancel`` releases the underlying feed subscription and is idempotent.
    """

    def __init__(self) -> None:
        self._feed_watch: FeedWatch | None = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def _attach(self, feed_watch: FeedWatch) -> None:
        self._feed_watch = feed_watch
        if self._cancelled:
            feed_watch.cancel()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._feed_watch is not None:
            self._feed_watch.cancel()
            self._feed_watch = None


class LocationResolver:
    """
    Resolves the agent's position through IP providers and a GPS feed.

    Args:
        client: Shared HTTP client used for provider lookups
        feed: Satellite feed for precise tracking; None disables it
        providers: Ordered provider chain
        timeout: Per-provider request timeout in seconds
        watch_options: Options passed to the feed subscription
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        feed: PositionFeed | None = None,
        providers: Sequence[ProviderDescriptor] = DEFAULT_PROVIDERS,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        watch_options: WatchOptions | None = None,
    ) -> None:
        self._client = client
        self._feed = feed
        self.providers = tuple(providers)
        self.timeout = timeout
        self.watch_options = watch_options or WatchOptions()

    async def resolve_approximate(self) -> Position:
        """
        Query providers in order and return the first valid position.

        Providers are tried strictly one after another. Any failure
        (transport error, non-2xx status, unparseable body, extractor
        error, non-finite coordinates) moves on to the next provider.

        Returns:
            An IP-sourced Position; the fallback position if all fail
        """
        for provider in self.providers:
            try:
                position = await self._query(provider)
            except (ProviderError, CoordinateValidationError) as e:
                logger.warning("Approximate position provider failed: %s", e)
                continue
            logger.info(
                "Approximate position from %s: (%.4f, %.4f) ip=%s",
                provider.name, position.lat, position.lng, position.ip,
            )
            return position

        logger.warning("All approximate position providers failed, using fallback")
        return fallback_position()

    async def _query(self, provider: ProviderDescriptor) -> Position:
        try:
            response = await self._client.get(provider.url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise NetworkError(provider.name, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise ProviderError(provider.name, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(provider.name, f"invalid JSON: {e}") from e

        try:
            lat, lng, ip = provider.extract(data)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(provider.name, f"unexpected payload: {type(e).__name__}: {e}") from e

        if not (is_finite_number(lat) and is_finite_number(lng)):
            raise CoordinateValidationError(
                f"{provider.name}: non-finite coordinates ({lat!r}, {lng!r})"
            )

        return Position(
            lat=float(lat),
            lng=float(lng),
            timestamp=datetime.now(tz=UTC),
            source=PositionSource.IP,
            accuracy_m=IP_ACCURACY_M,
            ip=str(ip) if ip else None,
        )

    def watch_precise(
        self,
        on_update: Callable[[Position], Any],
        on_fatal_error: Callable[[Exception], Any],
    ) -> PreciseWatch:
        """
        Subscribe to continuous satellite fixes.

        Every fix is forwarded to ``on_update`` as a GPS Position.
        LocationPermissionError cancels the subscription and is reported
        once to ``on_fatal_error``; every other error is logged and the
        subscription continues.

        Must be called from a running event loop.
        """
        watch = PreciseWatch()

        if self._feed is None:
            logger.info("No position feed configured, precise tracking disabled")
            return watch

        def handle_fix(fix: Fix) -> None:
            if not watch.active:
                return
            on_update(position_from_fix(fix))

        def handle_error(error: Exception) -> None:
            if not watch.active:
                return
            if isinstance(error, LocationPermissionError):
                logger.error("Position permission denied: %s", error)
                watch.cancel()
                on_fatal_error(error)
                return
            logger.warning("Position error (continuing): %s", error)

        watch._attach(self._feed.watch(handle_fix, handle_error, self.watch_options))
        return watch
