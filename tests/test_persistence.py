from pathlib import Path
from types import SimpleNamespace

import pytest

from fieldroute.models.domain import Location, StartPoint
from fieldroute.persistence import locations as locations_module
from fieldroute.persistence.filesystem import FileStorage
from fieldroute.persistence.locations import (
    FileLocationRepository,
    SupabaseLocationRepository,
    get_location_repository,
    location_from_record,
)


def _location(location_id: str, ranks: dict | None = None) -> Location:
    return Location(
        location_id=location_id,
        client_code=f"C-{location_id}",
        name=f"Shop {location_id}",
        address="Main street",
        route="R1",
        latitude=24.7,
        longitude=46.7,
        visit_day_code="1",
        frequency_code="2,1",
        visit_minutes=20,
        visit_order_by_week=ranks or {},
    )


class FakeTable:
    def __init__(self, db: "FakeSupabase", name: str) -> None:
        self.db = db
        self.name = name
        self.action = None
        self.payload = None
        self.bounds = None
        self.ids = None

    def select(self, columns: str) -> "FakeTable":
        self.action = "select"
        return self

    def range(self, start: int, end: int) -> "FakeTable":
        self.bounds = (start, end)
        return self

    def delete(self) -> "FakeTable":
        self.action = "delete"
        return self

    def in_(self, column: str, values: list) -> "FakeTable":
        self.ids = set(values)
        return self

    def upsert(self, rows: list, on_conflict: str | None = None) -> "FakeTable":
        self.action = "upsert"
        self.payload = rows
        return self

    def execute(self) -> SimpleNamespace:
        rows = self.db.tables.setdefault(self.name, [])
        self.db.log.append((self.name, self.action))
        if self.action == "select":
            start, end = self.bounds
            return SimpleNamespace(data=rows[start : end + 1])
        if self.action == "delete":
            self.db.tables[self.name] = [row for row in rows if row["location_id"] not in self.ids]
            return SimpleNamespace(data=[])
        by_id = {row["location_id"]: row for row in rows}
        for row in self.payload:
            by_id[row["location_id"]] = row
        self.db.tables[self.name] = list(by_id.values())
        return SimpleNamespace(data=self.payload)


class FakeSupabase:
    def __init__(self, tables: dict) -> None:
        self.tables = tables
        self.log: list[tuple[str, str]] = []

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)


def test_file_storage_creates_run_directory(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.make_run_directory(prefix="mileage_test")

    assert run_dir.exists()
    assert run_dir.is_dir()
    assert run_dir.parent == tmp_path / "outputs"


def test_file_storage_writes_json_and_csv(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.make_run_directory(prefix="mileage_test")

    summary_path = run_dir / "summary.json"
    combinations_path = run_dir / "combinations.csv"

    storage.write_json(summary_path, {"hello": "world"})
    storage.write_csv(combinations_path, "a,b\n1,2\n")

    assert summary_path.read_text(encoding="utf-8") == '{\n  "hello": "world"\n}'
    assert combinations_path.read_text(encoding="utf-8") == "a,b\n1,2\n"
    assert storage.read_json(summary_path) == {"hello": "world"}
    assert storage.read_json(run_dir / "missing.json", default=[]) == []


def test_file_repository_round_trip(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    repository = FileLocationRepository(storage=storage)
    start = StartPoint(start_id="S1", route="R1", address="Depot", latitude=24.6, longitude=46.6)

    assert repository.read_all() == []
    repository.replace_start_points([start])
    repository.replace_all([_location("A", {"1": 2}), _location("B")])

    locations = repository.read_all()
    assert [location.location_id for location in locations] == ["A", "B"]
    assert locations[0].visit_order_by_week == {"1": 2}
    assert locations[0].visit_minutes == 20
    assert repository.read_start_points() == [start]
    assert repository.path == tmp_path / "locations.json"


def test_file_repository_rejects_non_object_document(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    storage.write_json(tmp_path / "locations.json", [1, 2])

    with pytest.raises(ValueError):
        FileLocationRepository(storage=storage).read_all()


def test_location_record_drops_unusable_ranks() -> None:
    location = location_from_record(
        {
            "location_id": 17,
            "latitude": "24.7",
            "longitude": 46.7,
            "visit_order_by_week": {
                "1": 3,
                "2": "x",
                3: 2.0,
                "4": True,
                "5": float("nan"),
                "6": float("-inf"),
                "7": 2.5,
            },
        }
    )

    assert location.location_id == "17"
    assert location.latitude == 24.7
    assert location.visit_order_by_week == {"1": 3, "3": 2.0, "7": 2.5}
    assert location.frequency_code == ""


def test_supabase_repository_pages_through_rows() -> None:
    rows = [
        {"location_id": f"L{idx:03d}", "route": "R1", "latitude": 24.7, "longitude": 46.7, "visit_day_code": "1"}
        for idx in range(150)
    ]
    client = FakeSupabase({"locations": rows, "start_points": [{"route": "R1", "latitude": 24.6, "longitude": 46.6}]})
    repository = SupabaseLocationRepository(client)

    locations = repository.read_all()
    start_points = repository.read_start_points()

    assert len(locations) == 150
    assert client.log.count(("locations", "select")) == 2
    assert start_points[0].start_id == "R1"


def test_supabase_repository_replaces_rows() -> None:
    client = FakeSupabase(
        {
            "locations": [
                {"location_id": "A", "route": "R1", "latitude": 24.7, "longitude": 46.7},
                {"location_id": "Z", "route": "R1", "latitude": 24.7, "longitude": 46.7},
            ]
        }
    )
    repository = SupabaseLocationRepository(client)

    repository.replace_all([_location("A", {"2": 1}), _location("B")])

    stored = {row["location_id"]: row for row in client.tables["locations"]}
    assert set(stored) == {"A", "B"}
    assert stored["A"]["visit_order_by_week"] == {"2": 1}
    assert ("locations", "delete") in client.log


def test_get_location_repository_prefers_supabase(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(locations_module.settings, "data_root", tmp_path)
    client = FakeSupabase({})
    monkeypatch.setattr(locations_module, "get_supabase_client", lambda: client)
    assert isinstance(get_location_repository(), SupabaseLocationRepository)

    monkeypatch.setattr(locations_module, "get_supabase_client", lambda: None)
    assert isinstance(get_location_repository(), FileLocationRepository)


def test_file_repository_reads_non_finite_ranks_as_missing(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    record = {"location_id": "A", "route": "R1", "latitude": 24.7, "longitude": 46.7}
    storage.write_json(
        tmp_path / "locations.json",
        {"locations": [{**record, "visit_order_by_week": {"1": float("nan"), "2": float("inf"), "3": 1}}]},
    )

    locations = FileLocationRepository(storage=storage).read_all()

    assert locations[0].visit_order_by_week == {"3": 1}
