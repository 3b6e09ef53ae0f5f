"""Expansion of a calculation request into ordered (route, week, weekday) combinations."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Sequence

from ...config import settings
from ...models.domain import Location, StartPoint
from ...schemas.mileage import CalculationRequest
from ..scheduling.cycle import (
    WEEKEND_DAY_CODES,
    day_label,
    display_week,
    is_active,
    normalize_day_code,
    target_iso_week,
    week_key,
)
from .errors import CalculationConfigError
from .models import CalculationPlan, Combination

DEFAULT_WEEK_OFFSETS: tuple[int, ...] = (0, 1, 2, 3)

logger = logging.getLogger(__name__)


def due_locations(locations: Iterable[Location], day_code: str, iso_week: int) -> list[Location]:
    """Locations visited on ``day_code`` whose recurrence is active in ``iso_week``."""
    return [
        location
        for location in locations
        if normalize_day_code(location.visit_day_code) == day_code and is_active(location.frequency_code, iso_week)
    ]


def _resolve_days(request: CalculationRequest) -> list[str]:
    day_codes = list(request.day_codes) if request.day_codes is not None else list(settings.working_days)
    if request.scope == "single":
        if len(day_codes) != 1:
            raise CalculationConfigError("Single calculation requires exactly one weekday (Mon-Fri).")
        if day_codes[0] in WEEKEND_DAY_CODES:
            raise CalculationConfigError("Weekend days are not part of the mileage calculation.")
    weekdays = sorted({code for code in day_codes if code not in WEEKEND_DAY_CODES}, key=int)
    if not weekdays:
        raise CalculationConfigError("Select at least one working weekday (Mon-Fri).")
    return weekdays


def _resolve_offsets(request: CalculationRequest) -> list[int]:
    offsets = list(request.week_offsets) if request.week_offsets is not None else list(DEFAULT_WEEK_OFFSETS)
    if request.scope == "single" and len(offsets) != 1:
        raise CalculationConfigError("Single calculation requires exactly one cycle week.")
    if not offsets:
        raise CalculationConfigError("Select at least one cycle week.")
    return sorted(set(offsets))


def plan_calculation(
    request: CalculationRequest,
    locations: Sequence[Location],
    start_points: Sequence[StartPoint],
    *,
    today: date | None = None,
) -> CalculationPlan:
    """Validate ``request`` and enumerate the combinations that have due locations.

    Raises ``CalculationConfigError`` when nothing can be calculated. Combinations
    are ordered by route (request order), week offset and weekday.
    """
    routes = list(request.routes)
    if not routes:
        raise CalculationConfigError("No route selected for calculation.")
    if request.mode == "section" and len(routes) != 1:
        raise CalculationConfigError("Section calculation works on exactly one route.")

    weekdays = _resolve_days(request)
    offsets = _resolve_offsets(request)

    start_by_route: dict[str, StartPoint] = {}
    for start_point in start_points:
        start_by_route.setdefault(start_point.route, start_point)

    missing = [route for route in routes if route not in start_by_route]
    if request.mode == "section" and missing:
        raise CalculationConfigError(f"No start point found for route '{missing[0]}'.")
    if len(missing) == len(routes):
        raise CalculationConfigError("None of the selected routes has a start point.")
    if missing:
        logger.warning(f"Routes without a start point are excluded from the run: {', '.join(missing)}")

    base_date = request.reference_date or today or date.today()
    combinations: list[Combination] = []
    for route in routes:
        if route in missing:
            continue
        route_locations = [location for location in locations if location.route == route]
        for offset in offsets:
            week = target_iso_week(offset, base_date)
            for day_code in weekdays:
                due = due_locations(route_locations, day_code, week)
                if not due:
                    continue
                combinations.append(
                    Combination(
                        route=route,
                        day_code=day_code,
                        day_label=day_label(day_code),
                        week_offset=offset,
                        iso_week=week,
                        display_week=display_week(week),
                        week_key=week_key(week),
                        locations=due,
                    )
                )

    if not combinations:
        raise CalculationConfigError("No locations are due for the selected days and cycle weeks.")

    return CalculationPlan(
        combinations=combinations,
        start_points={route: start_by_route[route] for route in routes if route in start_by_route},
        missing_start_routes=missing,
    )
