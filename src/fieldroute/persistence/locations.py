"""Location and start point storage behind a read-all / replace-all contract."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from pathlib import Path
from typing import Any, Protocol, Sequence

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import Location, StartPoint
from .filesystem import FileStorage

logger = logging.getLogger(__name__)


class LocationRepository(Protocol):
    def read_all(self) -> list[Location]:
        ...

    def replace_all(self, locations: Sequence[Location]) -> None:
        ...

    def read_start_points(self) -> list[StartPoint]:
        ...


def _visit_orders(value: Any) -> dict[str, float]:
    if not isinstance(value, dict):
        return {}
    orders: dict[str, float] = {}
    for key, rank in value.items():
        if isinstance(rank, bool) or not isinstance(rank, (int, float)) or not math.isfinite(rank):
            continue
        orders[str(key)] = rank
    return orders


def location_from_record(record: dict[str, Any]) -> Location:
    return Location(
        location_id=str(record["location_id"]),
        client_code=str(record.get("client_code") or ""),
        name=str(record.get("name") or ""),
        address=str(record.get("address") or ""),
        route=str(record.get("route") or ""),
        latitude=float(record["latitude"]),
        longitude=float(record["longitude"]),
        visit_day_code=str(record.get("visit_day_code") or ""),
        frequency_code=str(record.get("frequency_code") or ""),
        visit_minutes=record.get("visit_minutes"),
        visit_order_by_week=_visit_orders(record.get("visit_order_by_week")),
        branch=record.get("branch"),
    )


def start_point_from_record(record: dict[str, Any]) -> StartPoint:
    return StartPoint(
        start_id=str(record.get("start_id") or record["route"]),
        route=str(record["route"]),
        address=str(record.get("address") or ""),
        latitude=float(record["latitude"]),
        longitude=float(record["longitude"]),
    )


class FileLocationRepository:
    """JSON document ``{"locations": [...], "start_points": [...]}`` under the data root."""

    def __init__(self, path: Path | None = None, storage: FileStorage | None = None) -> None:
        self.storage = storage or FileStorage()
        self.path = path or self.storage.root / settings.locations_file

    def _load(self) -> dict[str, Any]:
        data = self.storage.read_json(self.path, default=None)
        if data is None:
            return {"locations": [], "start_points": []}
        if not isinstance(data, dict):
            raise ValueError(f"Locations file '{self.path}' must contain a JSON object.")
        return data

    def read_all(self) -> list[Location]:
        return [location_from_record(record) for record in self._load().get("locations", [])]

    def read_start_points(self) -> list[StartPoint]:
        return [start_point_from_record(record) for record in self._load().get("start_points", [])]

    def replace_all(self, locations: Sequence[Location]) -> None:
        data = self._load()
        data["locations"] = [asdict(location) for location in locations]
        self.storage.write_json(self.path, data)
        logger.info(f"Stored {len(locations)} locations in {self.path}")

    def replace_start_points(self, start_points: Sequence[StartPoint]) -> None:
        data = self._load()
        data["start_points"] = [asdict(start_point) for start_point in start_points]
        self.storage.write_json(self.path, data)


class SupabaseLocationRepository:
    """Locations and start points kept in two Supabase tables keyed by id."""

    batch_size = 100

    def __init__(self, client: Any) -> None:
        self.client = client
        self.locations_table = settings.supabase_locations_table
        self.start_points_table = settings.supabase_start_points_table

    def _select_all(self, table: str) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            response = (
                self.client.table(table)
                .select("*")
                .range(offset, offset + self.batch_size - 1)
                .execute()
            )
            batch = response.data or []
            rows.extend(batch)
            if len(batch) < self.batch_size:
                break
            offset += self.batch_size
        return rows

    def read_all(self) -> list[Location]:
        return [location_from_record(row) for row in self._select_all(self.locations_table)]

    def read_start_points(self) -> list[StartPoint]:
        return [start_point_from_record(row) for row in self._select_all(self.start_points_table)]

    def replace_all(self, locations: Sequence[Location]) -> None:
        records = [asdict(location) for location in locations]
        keep_ids = {record["location_id"] for record in records}
        existing_ids = {row["location_id"] for row in self._select_all(self.locations_table)}
        stale_ids = sorted(existing_ids - keep_ids)

        try:
            for i in range(0, len(stale_ids), self.batch_size):
                batch_ids = stale_ids[i : i + self.batch_size]
                self.client.table(self.locations_table).delete().in_("location_id", batch_ids).execute()
            for i in range(0, len(records), self.batch_size):
                batch = records[i : i + self.batch_size]
                self.client.table(self.locations_table).upsert(batch, on_conflict="location_id").execute()
        except Exception as e:
            logger.error(f"Failed to replace locations in database: {e}")
            raise
        logger.info(f"Stored {len(records)} locations in database ({len(stale_ids)} removed)")


def get_location_repository() -> LocationRepository:
    """Supabase when configured, otherwise the JSON file under the data root."""
    client = get_supabase_client()
    if client is not None:
        return SupabaseLocationRepository(client)
    return FileLocationRepository()
