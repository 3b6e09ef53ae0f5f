"""Async HTTP client for the OSRM route service."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import httpx

from ...config import settings
from ...models.domain import Location, StartPoint
from .cancellation import CancellationToken
from .errors import RoutingCancelledError, RoutingServiceError, RoutingTimeoutError
from .models import RouteLeg, RouteMetrics

# Public OSRM answers 429 when throttling; 5xx are usually transient.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

logger = logging.getLogger(__name__)


class OSRMClient:
    """Road distance/duration for an ordered closed tour (start, stops..., start).

    Each call races the HTTP request against the caller's cancellation token and
    against its own timeout. Whichever fires first wins and the request is
    cancelled and awaited before the call returns.
    """

    name = "osrm"

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=min(10.0, self.timeout)),
            transport=self._transport,
        )

    async def _request_route(self, url: str, params: dict) -> dict:
        async with self._get_client() as client:
            attempt = 0
            while True:
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                except httpx.HTTPStatusError as e:
                    status_code = e.response.status_code
                    attempt += 1
                    if status_code in RETRYABLE_STATUS_CODES and attempt <= self.max_retries:
                        wait_time = self.backoff_seconds * attempt
                        logger.debug(f"OSRM returned {status_code}, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                        await asyncio.sleep(wait_time)
                        continue
                    raise RoutingServiceError(f"OSRM error: {status_code}") from e
                except httpx.TimeoutException as e:
                    raise RoutingTimeoutError(f"OSRM timeout ({int(self.timeout * 1000)} ms)") from e
                except httpx.TransportError as e:
                    attempt += 1
                    if attempt <= self.max_retries:
                        wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                        logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                        await asyncio.sleep(wait_time)
                        continue
                    raise RoutingServiceError(f"Failed to connect to OSRM service at {self.base_url}: {e}") from e
                except ValueError as e:
                    raise RoutingServiceError("OSRM returned a response that is not valid JSON.") from e

                if data.get("code", "Ok") != "Ok":
                    raise RoutingServiceError(f"OSRM route request failed: {data.get('message', data.get('code'))}")
                routes = data.get("routes") or []
                if not routes:
                    raise RoutingServiceError("OSRM: empty routes")
                return routes[0]

    async def fetch_route(
        self,
        coordinates: Sequence[tuple[float, float]],
        *,
        token: CancellationToken | None = None,
        overview: str = "false",
    ) -> dict:
        """Return the first OSRM route for (lat, lon) waypoints in visit order."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")
        if token is not None and token.cancelled:
            raise RoutingCancelledError("Calculation cancelled.")

        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {
            "overview": overview,
            "geometries": "geojson",
            "steps": "false",
        }
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"

        request = asyncio.ensure_future(self._request_route(url, params))
        waiters: set[asyncio.Future] = {request}
        cancel_wait: asyncio.Future | None = None
        if token is not None:
            cancel_wait = asyncio.ensure_future(token.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(waiters, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED)
            if request in done:
                return request.result()
            if cancel_wait is not None and cancel_wait in done:
                raise RoutingCancelledError("Calculation cancelled.")
            logger.warning(f"OSRM route request timed out after {self.timeout:.1f}s ({len(coordinates)} waypoints)")
            raise RoutingTimeoutError(f"OSRM timeout ({int(self.timeout * 1000)} ms)")
        finally:
            pending = [waiter for waiter in waiters if not waiter.done()]
            for waiter in pending:
                waiter.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def route(
        self,
        start: StartPoint,
        stops: Sequence[Location],
        *,
        token: CancellationToken | None = None,
        include_geometry: bool = False,
    ) -> RouteMetrics:
        if not stops:
            raise ValueError("At least one stop is required for an OSRM route.")
        coordinates = build_coordinate_list(start, stops)
        data = await self.fetch_route(
            coordinates,
            token=token,
            overview="full" if include_geometry else "false",
        )
        return route_metrics_from_osrm(data, start, stops, include_geometry=include_geometry)


def build_coordinate_list(start: StartPoint, stops: Sequence[Location]) -> list[tuple[float, float]]:
    """(lat, lon) waypoints for a closed tour: start, stops in order, start."""
    return [
        (start.latitude, start.longitude),
        *((stop.latitude, stop.longitude) for stop in stops),
        (start.latitude, start.longitude),
    ]


def route_metrics_from_osrm(
    data: dict,
    start: StartPoint,
    stops: Sequence[Location],
    *,
    include_geometry: bool = False,
) -> RouteMetrics:
    legs: list[RouteLeg] = []
    for idx, leg in enumerate(data.get("legs") or []):
        from_stop = stops[idx - 1] if 0 < idx <= len(stops) else None
        to_stop = stops[idx] if idx < len(stops) else None
        legs.append(
            RouteLeg(
                from_label=from_stop.label if from_stop else start.label,
                to_label=to_stop.label if to_stop else start.label,
                distance_km=float(leg.get("distance", 0.0)) / 1000.0,
                duration_min=float(leg.get("duration", 0.0)) / 60.0,
                from_id=from_stop.location_id if from_stop else None,
                to_id=to_stop.location_id if to_stop else None,
            )
        )

    geometry = None
    if include_geometry:
        coordinates = (data.get("geometry") or {}).get("coordinates") or []
        # GeoJSON is [lon, lat]
        geometry = [(float(lat), float(lon)) for lon, lat in coordinates]

    return RouteMetrics(
        provider=OSRMClient.name,
        distance_km=float(data.get("distance", 0.0)) / 1000.0,
        duration_min=float(data.get("duration", 0.0)) / 60.0,
        legs=legs,
        geometry=geometry,
    )


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM availability with a minimal two-point route request."""
    base = (base_url or settings.osrm_base_url or "").rstrip("/")
    if not base:
        return False
    try:
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{base}/route/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"overview": "false"}, timeout=5.0)
        response.raise_for_status()
        data = response.json()
        return data.get("code") == "Ok" and bool(data.get("routes"))
    except (httpx.HTTPError, ValueError):
        return False
