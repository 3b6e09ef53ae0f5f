"""Visit sequencing for the locations due in one combination."""

from __future__ import annotations

import math
from typing import Sequence

from ...models.domain import Location, StartPoint
from ..geospatial import haversine_km
from .models import OrderMode

ORDER_MODES: tuple[str, ...] = ("use_existing_and_fill", "rebuild_nearest")


def saved_rank(location: Location, week_key: str) -> float | None:
    """Committed rank of ``location`` for ``week_key``, or None when unusable."""
    value = (location.visit_order_by_week or {}).get(week_key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def append_nearest(
    ordered: list[Location],
    remaining: Sequence[Location],
    start: StartPoint,
) -> list[Location]:
    """Greedy nearest-neighbor: repeatedly take the closest unplaced location from the tail.

    Distance ties resolve by ``location_id`` so output does not depend on input order.
    """
    result = list(ordered)
    rest = list(remaining)
    if result:
        cur_lat, cur_lon = result[-1].latitude, result[-1].longitude
    else:
        cur_lat, cur_lon = start.latitude, start.longitude

    while rest:
        best_idx = min(
            range(len(rest)),
            key=lambda i: (haversine_km(cur_lat, cur_lon, rest[i].latitude, rest[i].longitude), rest[i].location_id),
        )
        nxt = rest.pop(best_idx)
        result.append(nxt)
        cur_lat, cur_lon = nxt.latitude, nxt.longitude
    return result


def build_order(
    order_mode: OrderMode,
    start: StartPoint,
    locations: Sequence[Location],
    week_key: str,
) -> list[Location]:
    """Return ``locations`` in visiting order.

    ``use_existing_and_fill`` keeps locations that already have a rank for
    ``week_key`` (ascending rank, ties by id) and appends the rest by nearest
    neighbor from the last ranked location. ``rebuild_nearest`` ignores ranks.
    """
    if order_mode not in ORDER_MODES:
        raise ValueError(f"Unknown order mode '{order_mode}'.")

    if order_mode == "rebuild_nearest":
        return append_nearest([], locations, start)

    ranked: list[Location] = []
    rest: list[Location] = []
    for location in locations:
        (ranked if saved_rank(location, week_key) is not None else rest).append(location)
    ranked.sort(key=lambda location: (saved_rank(location, week_key), location.location_id))
    return append_nearest(ranked, rest, start)
