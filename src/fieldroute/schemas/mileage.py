"""Mileage calculation request/response schemas."""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..services.scheduling.cycle import normalize_day_code


class CalculationRequest(BaseModel):
    """Everything a run needs; independent of any interactive filter state."""

    mode: Literal["section", "territory"] = Field(
        default="section",
        description="section: one route, any provider failure aborts. territory: many routes, failures are isolated.",
    )
    routes: List[str] = Field(default_factory=list, description="Route (territory group) identifiers to calculate.")
    scope: Literal["single", "full"] = Field(
        default="full",
        description="single: exactly one weekday and one week offset. full: every requested combination.",
    )
    day_codes: Optional[List[str]] = Field(
        default=None,
        description="Weekday codes 1..5; defaults to the configured working days.",
    )
    week_offsets: Optional[List[int]] = Field(
        default=None,
        description="Cycle-week offsets from the reference date (0 = this week .. 3); defaults to all four.",
    )
    order_mode: Literal["use_existing_and_fill", "rebuild_nearest"] = "use_existing_and_fill"
    provider: Literal["osrm", "straight_line"] = "osrm"
    include_geometry: bool = Field(
        default=False,
        description="Request route geometry; honoured only when the run has a single combination.",
    )
    max_stops_per_combination: Optional[int] = Field(default=None, ge=1)
    reference_date: Optional[date] = Field(default=None, description="Date treated as 'today' (defaults to the current date).")

    @field_validator("routes", mode="after")
    @classmethod
    def _strip_routes(cls, value: List[str]) -> List[str]:
        cleaned: list[str] = []
        for route in value:
            normalized = route.strip()
            if normalized and normalized not in cleaned:
                cleaned.append(normalized)
        return cleaned

    @field_validator("day_codes", mode="before")
    @classmethod
    def _normalize_days(cls, value: object) -> object:
        if value is None:
            return None
        if not isinstance(value, (list, tuple, set)):
            value = [value]
        codes: list[str] = []
        for raw in value:
            code = normalize_day_code(raw)
            if not code:
                raise ValueError(f"Unknown day code '{raw}'.")
            if code not in codes:
                codes.append(code)
        return codes

    @field_validator("week_offsets", mode="after")
    @classmethod
    def _check_offsets(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return None
        offsets: list[int] = []
        for offset in value:
            if offset < 0 or offset > 3:
                raise ValueError("Week offsets must be between 0 and 3.")
            if offset not in offsets:
                offsets.append(offset)
        return offsets


class CommitRequest(BaseModel):
    persist_order: bool = Field(default=False, description="Write the computed visit order into the locations.")
    persist_outputs: bool = Field(default=True, description="Store summary.json and combinations.csv for the run.")


class StartPointModel(BaseModel):
    start_id: str
    route: str
    address: str
    latitude: float
    longitude: float


class RouteLegModel(BaseModel):
    from_label: str
    to_label: str
    distance_km: float
    duration_min: float
    from_id: Optional[str] = None
    to_id: Optional[str] = None


class ReportStopModel(BaseModel):
    location_id: str
    client_code: str
    name: str
    address: str
    latitude: float
    longitude: float
    visit_minutes: int


class RouteEstimateModel(BaseModel):
    distance_km: float
    drive_minutes: int
    service_minutes: int
    total_minutes: int
    legs: List[RouteLegModel]


class CombinationReportModel(BaseModel):
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
    stops: List[ReportStopModel]
    distance_km: float
    drive_minutes: int
    service_minutes: int
    total_minutes: int
    legs: List[RouteLegModel]
    estimate: RouteEstimateModel
    geometry: Optional[List[tuple[float, float]]] = None
    error_message: Optional[str] = None


class CombinationSummaryModel(BaseModel):
    route: str
    day_code: str
    day_label: str
    iso_week: int
    week_key: str
    stop_count: int
    distance_km: float
    total_minutes: int
    status: str


class MileageReportModel(BaseModel):
    run_id: str
    created_at: str
    mode: str
    scope: str
    order_mode: str
    provider: str
    status: str
    order_saved: bool
    start_points: List[StartPointModel]
    missing_start_routes: List[str]
    combinations: List[CombinationReportModel]
    summaries: List[CombinationSummaryModel]
    stops: List[ReportStopModel]
    distance_km: float
    drive_minutes: int
    service_minutes: int
    total_minutes: int
    error_message: Optional[str] = None


class ProgressModel(BaseModel):
    done: int
    total: int
    label: Optional[str] = None


class RunStatusResponse(BaseModel):
    run_id: str
    state: str
    progress: Optional[ProgressModel] = None
    report: Optional[MileageReportModel] = None
    error: Optional[str] = None


class CommitResponse(BaseModel):
    run_id: str
    order_saved: bool
    updated_locations: int
    output_dir: Optional[str] = None
