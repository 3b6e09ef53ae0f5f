"""Report shaping, cross-combination aggregation and visit-order persistence."""

from __future__ import annotations

import math
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from ...config import settings
from ...models.domain import Location
from .models import (
    CalculationPlan,
    Combination,
    CombinationReport,
    CombinationSummary,
    MileageReport,
    ReportStop,
    RouteEstimate,
    RouteLeg,
    RouteMetrics,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def round_minutes(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_visit_minutes(raw: Any, default: int | None = None) -> int:
    """Whole visit minutes; absent, non-numeric or non-positive values fall back to the default."""
    fallback = default if default is not None else settings.default_visit_minutes
    if isinstance(raw, bool):
        return fallback
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw if raw is not None else "").strip().replace(",", ".")
        try:
            value = float(text)
        except ValueError:
            return fallback
    if not math.isfinite(value) or value <= 0:
        return fallback
    return round_minutes(value)


def build_stops(ordered: Sequence[Location]) -> list[ReportStop]:
    return [
        ReportStop(
            location_id=location.location_id,
            client_code=location.client_code,
            name=location.name,
            address=location.address,
            latitude=location.latitude,
            longitude=location.longitude,
            visit_minutes=normalize_visit_minutes(location.visit_minutes),
        )
        for location in ordered
    ]


def _rounded_legs(legs: Iterable[RouteLeg]) -> list[RouteLeg]:
    return [
        replace(leg, distance_km=round1(leg.distance_km), duration_min=round_minutes(leg.duration_min))
        for leg in legs
    ]


def build_estimate(metrics: RouteMetrics, stops: Sequence[ReportStop]) -> RouteEstimate:
    drive_minutes = round_minutes(metrics.duration_min)
    service_minutes = sum(stop.visit_minutes for stop in stops)
    return RouteEstimate(
        distance_km=round1(metrics.distance_km),
        drive_minutes=drive_minutes,
        service_minutes=service_minutes,
        total_minutes=drive_minutes + service_minutes,
        legs=_rounded_legs(metrics.legs),
    )


def build_combination_report(
    combination: Combination,
    *,
    order_mode: str,
    provider: str,
    stops: list[ReportStop],
    estimate: RouteEstimate,
    metrics: RouteMetrics | None = None,
    status: str = "ok",
    error_message: str | None = None,
) -> CombinationReport:
    """Normalized result for one combination.

    Without ``metrics`` (skipped or failed) the route contributes no distance or
    drive time, only the service minutes of its stops.
    """
    service_minutes = sum(stop.visit_minutes for stop in stops)
    if metrics is not None:
        distance_km = round1(metrics.distance_km)
        drive_minutes = round_minutes(metrics.duration_min)
        legs = _rounded_legs(metrics.legs)
        geometry = metrics.geometry
    else:
        distance_km, drive_minutes, legs, geometry = 0.0, 0, [], None

    return CombinationReport(
        route=combination.route,
        day_code=combination.day_code,
        day_label=combination.day_label,
        week_offset=combination.week_offset,
        iso_week=combination.iso_week,
        display_week=combination.display_week,
        week_key=combination.week_key,
        order_mode=order_mode,
        provider=provider,
        status=status,
        computed_at=utc_now(),
        stops=stops,
        distance_km=distance_km,
        drive_minutes=drive_minutes,
        service_minutes=service_minutes,
        total_minutes=drive_minutes + service_minutes,
        legs=legs,
        estimate=estimate,
        geometry=geometry,
        error_message=error_message,
    )


def summarize(report: CombinationReport) -> CombinationSummary:
    return CombinationSummary(
        route=report.route,
        day_code=report.day_code,
        day_label=report.day_label,
        iso_week=report.iso_week,
        week_key=report.week_key,
        stop_count=len(report.stops),
        distance_km=report.distance_km,
        total_minutes=report.total_minutes,
        status=report.status,
    )


def aggregate_run(
    *,
    plan: CalculationPlan,
    combinations: list[CombinationReport],
    mode: str,
    scope: str,
    order_mode: str,
    provider: str,
    status: str,
    error_message: str | None = None,
    run_id: str | None = None,
) -> MileageReport:
    """Merge per-combination reports into one run report; the per-combination list is kept as is."""
    drive_minutes = sum(report.drive_minutes for report in combinations)
    service_minutes = sum(report.service_minutes for report in combinations)
    return MileageReport(
        run_id=run_id or uuid.uuid4().hex,
        created_at=utc_now(),
        mode=mode,
        scope=scope,
        order_mode=order_mode,
        provider=provider,
        status=status,
        order_saved=False,
        start_points=list(plan.start_points.values()),
        missing_start_routes=list(plan.missing_start_routes),
        combinations=combinations,
        summaries=[summarize(report) for report in combinations],
        stops=[stop for report in combinations for stop in report.stops],
        distance_km=round1(sum(report.distance_km for report in combinations)),
        drive_minutes=drive_minutes,
        service_minutes=service_minutes,
        total_minutes=drive_minutes + service_minutes,
        error_message=error_message,
    )


def planned_orders(report: MileageReport) -> dict[str, dict[str, int]]:
    """location_id -> {week_key: 1-based position} for every calculated combination."""
    orders: dict[str, dict[str, int]] = {}
    for combination in report.combinations:
        for position, stop in enumerate(combination.stops, start=1):
            orders.setdefault(stop.location_id, {})[combination.week_key] = position
    return orders


def apply_visit_orders(
    locations: Sequence[Location],
    orders: dict[str, dict[str, int]],
) -> tuple[list[Location], int]:
    """Return updated copies of ``locations`` and how many of them changed.

    Ranks are merged per week key; keys that were not calculated keep their value.
    """
    updated: list[Location] = []
    changed = 0
    for location in locations:
        ranks = orders.get(location.location_id)
        if not ranks:
            updated.append(location)
            continue
        merged = {**(location.visit_order_by_week or {}), **ranks}
        updated.append(replace(location, visit_order_by_week=merged))
        changed += 1
    return updated, changed
