"""Straight-line distance provider used for planning estimates and offline runs."""

from __future__ import annotations

from typing import Sequence

from ...config import settings
from ...models.domain import Location, StartPoint
from ..geospatial import minutes_at_speed, road_km
from .cancellation import CancellationToken
from .models import RouteLeg, RouteMetrics


class StraightLineProvider:
    """Haversine distance inflated by a road factor; duration from an average speed.

    Tours are closed: start -> stops -> start. The provider never fails.
    """

    name = "straight_line"

    def __init__(self, road_factor: float | None = None, average_speed_kmh: float | None = None) -> None:
        self.road_factor = road_factor if road_factor is not None else settings.road_factor
        self.average_speed_kmh = average_speed_kmh if average_speed_kmh is not None else settings.average_speed_kmh

    def _leg(self, lat1: float, lon1: float, lat2: float, lon2: float) -> tuple[float, float]:
        distance_km = road_km(lat1, lon1, lat2, lon2, self.road_factor)
        return distance_km, minutes_at_speed(distance_km, self.average_speed_kmh)

    def measure(self, start: StartPoint, stops: Sequence[Location]) -> RouteMetrics:
        legs: list[RouteLeg] = []
        if not stops:
            return RouteMetrics(provider=self.name, distance_km=0.0, duration_min=0.0, legs=legs)

        cur_lat, cur_lon = start.latitude, start.longitude
        from_label, from_id = start.label, None
        for stop in stops:
            distance_km, duration_min = self._leg(cur_lat, cur_lon, stop.latitude, stop.longitude)
            legs.append(
                RouteLeg(
                    from_label=from_label,
                    to_label=stop.label,
                    distance_km=distance_km,
                    duration_min=duration_min,
                    from_id=from_id,
                    to_id=stop.location_id,
                )
            )
            cur_lat, cur_lon = stop.latitude, stop.longitude
            from_label, from_id = stop.label, stop.location_id

        distance_km, duration_min = self._leg(cur_lat, cur_lon, start.latitude, start.longitude)
        legs.append(
            RouteLeg(
                from_label=from_label,
                to_label=start.label,
                distance_km=distance_km,
                duration_min=duration_min,
                from_id=from_id,
            )
        )
        return RouteMetrics(
            provider=self.name,
            distance_km=sum(leg.distance_km for leg in legs),
            duration_min=sum(leg.duration_min for leg in legs),
            legs=legs,
        )

    async def route(
        self,
        start: StartPoint,
        stops: Sequence[Location],
        *,
        token: CancellationToken | None = None,
        include_geometry: bool = False,
    ) -> RouteMetrics:
        metrics = self.measure(start, stops)
        if include_geometry:
            metrics.geometry = [
                (start.latitude, start.longitude),
                *((stop.latitude, stop.longitude) for stop in stops),
                (start.latitude, start.longitude),
            ]
        return metrics
