"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional

from ...models.domain import Location, StartPoint

OrderMode = Literal["use_existing_and_fill", "rebuild_nearest"]
ProviderName = Literal["osrm", "straight_line"]
CombinationStatus = Literal["ok", "skipped", "error"]
RunStatus = Literal["idle", "running", "completed", "cancelled", "failed"]
CalculationMode = Literal["section", "territory"]
CalculationScope = Literal["single", "full"]


@dataclass(slots=True)
class RouteLeg:
    from_label: str
    to_label: str
    distance_km: float
    duration_min: float
    from_id: Optional[str] = None
    to_id: Optional[str] = None


@dataclass(slots=True)
class RouteMetrics:
    provider: str
    distance_km: float
    duration_min: float
    legs: List[RouteLeg]
    geometry: Optional[List[tuple[float, float]]] = None


@dataclass(slots=True)
class Combination:
    route: str
    day_code: str
    day_label: str
    week_offset: int
    iso_week: int
    display_week: int
    week_key: str
    locations: List[Location]

    @property
    def label(self) -> str:
        return (
            f"{self.route} / {self.day_label} / ISO {self.iso_week} / W{self.week_key} / "
            f"{len(self.locations)} stops"
        )


@dataclass(slots=True)
class ReportStop:
    location_id: str
    client_code: str
    name: str
    address: str
    latitude: float
    longitude: float
    visit_minutes: int


@dataclass(slots=True)
class RouteEstimate:
    distance_km: float
    drive_minutes: int
    service_minutes: int
    total_minutes: int
    legs: List[RouteLeg]


@dataclass(slots=True)
class CombinationReport:
    route: str
    day_code: str
    day_label: str
    week_offset: int
    iso_week: int
    display_week: int
    week_key: str
    order_mode: str
    provider: str
    status: str
    computed_at: str
    stops: List[ReportStop]
    distance_km: float
    drive_minutes: int
    service_minutes: int
    total_minutes: int
    legs: List[RouteLeg]
    estimate: RouteEstimate
    geometry: Optional[List[tuple[float, float]]] = None
    error_message: Optional[str] = None


@dataclass(slots=True)
class CombinationSummary:
    route: str
    day_code: str
    day_label: str
    iso_week: int
    week_key: str
    stop_count: int
    distance_km: float
    total_minutes: int
    status: str


@dataclass(slots=True)
class MileageReport:
    run_id: str
    created_at: str
    mode: str
    scope: str
    order_mode: str
    provider: str
    status: str
    order_saved: bool
    start_points: List[StartPoint]
    missing_start_routes: List[str]
    combinations: List[CombinationReport]
    summaries: List[CombinationSummary]
    stops: List[ReportStop]
    distance_km: float
    drive_minutes: int
    service_minutes: int
    total_minutes: int
    error_message: Optional[str] = None


@dataclass(slots=True)
class CalculationProgress:
    done: int
    total: int
    label: Optional[str] = None


@dataclass(slots=True)
class CalculationPlan:
    """Validated work for one run: ordered combinations plus the start point of each route."""

    combinations: List[Combination]
    start_points: dict[str, StartPoint]
    missing_start_routes: List[str] = field(default_factory=list)
