"""Domain models for visit locations and route start points."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(slots=True)
class Location:
    """A visit site assigned to a route, a weekday and a recurrence code."""

    location_id: str
    client_code: str
    name: str
    address: str
    route: str
    latitude: float
    longitude: float
    visit_day_code: str
    frequency_code: str
    visit_minutes: Optional[float | int | str] = None
    visit_order_by_week: dict[str, float] = field(default_factory=dict)
    branch: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.client_code or self.location_id


@dataclass(slots=True)
class StartPoint:
    """Where every tour of a route begins and ends."""

    start_id: str
    route: str
    address: str
    latitude: float
    longitude: float

    @property
    def label(self) -> str:
        return f"Start: {self.address or self.route}"
