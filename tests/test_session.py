import asyncio
from datetime import date

import httpx
import pytest

from fieldroute.models.domain import Location, StartPoint
from fieldroute.schemas.mileage import CalculationRequest
from fieldroute.services.routing.errors import (
    CalculationConfigError,
    RoutingServiceError,
    RoutingTimeoutError,
    SessionBusyError,
    SessionStateError,
)
from fieldroute.services.routing.models import RouteLeg, RouteMetrics
from fieldroute.services.routing.osrm_client import OSRMClient
from fieldroute.services.routing.session import CalculationSession

MONDAY_WEEK_10 = date(2026, 3, 2)


def _location(location_id: str, lat: float, lon: float, route: str = "R1", **extra) -> Location:
    values = dict(
        location_id=location_id,
        client_code=f"C-{location_id}",
        name=f"Shop {location_id}",
        address="",
        route=route,
        latitude=lat,
        longitude=lon,
        visit_day_code="1",
        frequency_code="4",
    )
    values.update(extra)
    return Location(**values)


def _start(route: str = "R1") -> StartPoint:
    return StartPoint(start_id=f"S-{route}", route=route, address=f"{route} depot", latitude=0.0, longitude=0.0)


def _request(**overrides) -> CalculationRequest:
    values = dict(mode="section", routes=["R1"], day_codes=["1"], reference_date=MONDAY_WEEK_10)
    values.update(overrides)
    return CalculationRequest(**values)


class FakeProvider:
    """Each stop adds 2.04 km and 3.4 minutes; optionally fails for selected routes or calls."""

    name = "osrm"

    def __init__(self, fail_routes=(), fail_on_call=None, error=None, delay=0.0):
        self.calls: list[list[str]] = []
        self.geometry_flags: list[bool] = []
        self.fail_routes = set(fail_routes)
        self.fail_on_call = fail_on_call
        self.error = error or RoutingServiceError("OSRM error: 500")
        self.delay = delay

    async def route(self, start, stops, *, token=None, include_geometry=False):
        self.calls.append([stop.location_id for stop in stops])
        self.geometry_flags.append(include_geometry)
        if self.delay:
            await asyncio.sleep(self.delay)
        if start.route in self.fail_routes or len(self.calls) == self.fail_on_call:
            raise self.error
        legs = [RouteLeg(from_label="x", to_label="y", distance_km=2.04, duration_min=3.4) for _ in stops]
        return RouteMetrics(
            provider=self.name,
            distance_km=2.04 * len(stops),
            duration_min=3.4 * len(stops),
            legs=legs,
        )


class MemoryRepository:
    def __init__(self, locations):
        self.locations = list(locations)
        self.replaced = 0

    def read_all(self):
        return list(self.locations)

    def replace_all(self, locations):
        self.replaced += 1
        self.locations = list(locations)


def _osrm_handler(state: dict):
    async def handler(request: httpx.Request) -> httpx.Response:
        state["calls"] += 1
        if state["calls"] > 1:
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise
        waypoints = request.url.path.rsplit("/", 1)[-1].split(";")
        legs = [{"distance": 500.0, "duration": 60.0} for _ in range(len(waypoints) - 1)]
        return httpx.Response(
            200,
            json={"code": "Ok", "routes": [{"distance": 500.0 * len(legs), "duration": 60.0 * len(legs), "legs": legs}]},
        )

    return handler


@pytest.mark.asyncio
async def test_completed_run_keeps_totals_consistent():
    locations = [_location("A", 0.0, 0.03), _location("B", 0.0, 0.01), _location("C", 0.0, 0.02, visit_minutes="20")]
    events = []
    session = CalculationSession(provider=FakeProvider(), on_progress=events.append)

    report = await session.run(_request(), locations, [_start()])

    assert session.state == "completed"
    assert report.status == "completed"
    assert report.order_saved is False
    assert len(report.combinations) == 4
    for combination in report.combinations:
        assert combination.status == "ok"
        assert combination.total_minutes == combination.drive_minutes + combination.service_minutes
        assert combination.service_minutes == 50
        assert combination.distance_km == 6.1
        assert combination.drive_minutes == 10
        assert combination.estimate.total_minutes == combination.estimate.drive_minutes + 50
    assert report.total_minutes == report.drive_minutes + report.service_minutes
    assert report.distance_km == pytest.approx(24.4)
    assert len(report.stops) == 12
    assert [s.status for s in report.summaries] == ["ok"] * 4
    assert all(not location.visit_order_by_week for location in locations)

    done = [event.done for event in events]
    assert done == sorted(done)
    assert all(event.total == 4 and 0 <= event.done <= 4 for event in events)
    assert done[0] == 0 and done[-1] == 4


@pytest.mark.asyncio
async def test_three_location_scenario_uses_nearest_neighbor():
    locations = [_location("A", 0.0, 0.03), _location("B", 0.0, 0.01), _location("C", 0.0, 0.02)]
    provider = FakeProvider()
    session = CalculationSession(provider=provider)

    report = await session.run(_request(scope="single", week_offsets=[0]), locations, [_start()])

    assert len(report.combinations) == 1
    combination = report.combinations[0]
    assert combination.iso_week == 10
    assert combination.week_key == "2"
    assert [stop.location_id for stop in combination.stops] == ["B", "C", "A"]
    assert provider.calls == [["B", "C", "A"]]


@pytest.mark.asyncio
async def test_oversized_combination_is_skipped_without_provider_call():
    locations = [_location(f"L{idx:02d}", 0.0, 0.001 * idx) for idx in range(40)]
    provider = FakeProvider()
    session = CalculationSession(provider=provider)

    report = await session.run(_request(scope="single", week_offsets=[0]), locations, [_start()])

    combination = report.combinations[0]
    assert provider.calls == []
    assert combination.status == "skipped"
    assert "(>25)" in combination.error_message
    assert combination.distance_km == 0.0
    assert combination.service_minutes == 40 * 15
    assert combination.total_minutes == combination.service_minutes
    assert combination.estimate.distance_km > 0
    assert report.status == "completed"


@pytest.mark.asyncio
async def test_request_ceiling_overrides_default():
    locations = [_location(f"L{idx}", 0.0, 0.01 * idx) for idx in range(1, 4)]
    session = CalculationSession(provider=FakeProvider())

    report = await session.run(
        _request(scope="single", week_offsets=[0], max_stops_per_combination=2), locations, [_start()]
    )

    assert report.combinations[0].status == "skipped"


@pytest.mark.asyncio
async def test_territory_isolates_provider_failures():
    locations = [_location("A", 0.0, 0.01), _location("B", 0.0, 0.02, route="R2")]
    provider = FakeProvider(fail_routes={"R1"})
    session = CalculationSession(provider=provider)

    report = await session.run(
        _request(mode="territory", routes=["R1", "R2"], week_offsets=[0]), locations, [_start("R1"), _start("R2")]
    )

    assert session.state == "completed"
    assert [(c.route, c.status) for c in report.combinations] == [("R1", "error"), ("R2", "ok")]
    failed = report.combinations[0]
    assert failed.error_message == "OSRM error: 500"
    assert failed.distance_km == 0.0
    assert failed.total_minutes == failed.service_minutes == 15


@pytest.mark.asyncio
async def test_section_aborts_on_first_provider_failure():
    locations = [_location("A", 0.0, 0.01)]
    provider = FakeProvider(fail_on_call=2, error=RoutingTimeoutError("OSRM timeout (20000 ms)"))
    session = CalculationSession(provider=provider)

    report = await session.run(_request(), locations, [_start()])

    assert session.state == "failed"
    assert report.status == "failed"
    assert len(provider.calls) == 2
    assert len(report.combinations) == 1
    assert "ISO 11" in report.error_message
    assert "OSRM timeout" in report.error_message
    assert str(session.error) == report.error_message


@pytest.mark.asyncio
async def test_cancel_mid_flight_keeps_partial_results():
    locations = [_location("A", 0.0, 0.01), _location("B", 0.0, 0.02)]
    repository = MemoryRepository(locations)
    state = {"calls": 0, "cancelled": False}
    client = OSRMClient(
        base_url="http://osrm.test",
        timeout=5.0,
        max_retries=0,
        transport=httpx.MockTransport(_osrm_handler(state)),
    )

    session = CalculationSession(provider=client)

    def on_progress(progress):
        if progress.done == 1:
            asyncio.get_running_loop().call_later(0.05, session.cancel)

    session.on_progress = on_progress
    report = await asyncio.wait_for(session.run(_request(), locations, [_start()]), timeout=3)

    assert session.state == "cancelled"
    assert report.status == "cancelled"
    assert state["cancelled"] is True
    assert len(report.combinations) == 1
    assert report.combinations[0].distance_km == 1.5
    assert report.order_saved is False
    with pytest.raises(SessionStateError):
        session.commit(repository, persist_order=True)
    assert repository.replaced == 0
    assert all(not location.visit_order_by_week for location in repository.locations)


@pytest.mark.asyncio
async def test_cancel_before_run_produces_no_results():
    provider = FakeProvider()
    session = CalculationSession(provider=provider)
    session.cancel()

    report = await session.run(_request(), [_location("A", 0.0, 0.01)], [_start()])

    assert session.state == "cancelled"
    assert report.combinations == []
    assert provider.calls == []


@pytest.mark.asyncio
async def test_commit_persists_positions_per_week_key():
    locations = [
        _location("A", 0.0, 0.03, visit_order_by_week={"9": 7}),
        _location("B", 0.0, 0.01),
        _location("C", 0.0, 0.02),
        _location("D", 0.0, 0.04, visit_day_code="2"),
    ]
    repository = MemoryRepository(locations)
    session = CalculationSession(provider=FakeProvider())
    await session.run(_request(week_offsets=[0, 1]), locations, [_start()])

    updated = session.commit(repository, persist_order=True)

    assert updated == 3
    assert session.report.order_saved is True
    by_id = {location.location_id: location for location in repository.locations}
    assert by_id["B"].visit_order_by_week == {"2": 1, "3": 1}
    assert by_id["C"].visit_order_by_week == {"2": 2, "3": 2}
    assert by_id["A"].visit_order_by_week == {"9": 7, "2": 3, "3": 3}
    assert by_id["D"] is locations[3]
    assert locations[0].visit_order_by_week == {"9": 7}


@pytest.mark.asyncio
async def test_rejecting_the_order_leaves_locations_untouched():
    locations = [_location("A", 0.0, 0.01)]
    repository = MemoryRepository(locations)
    session = CalculationSession(provider=FakeProvider())
    await session.run(_request(), locations, [_start()])

    assert session.commit(repository, persist_order=False) == 0
    assert repository.replaced == 0
    assert session.report.order_saved is False


@pytest.mark.asyncio
async def test_saved_order_is_reused_by_the_next_run():
    locations = [_location("A", 0.0, 0.03), _location("B", 0.0, 0.01), _location("C", 0.0, 0.02)]
    repository = MemoryRepository(locations)
    first = CalculationSession(provider=FakeProvider())
    await first.run(_request(order_mode="rebuild_nearest", week_offsets=[0]), locations, [_start()])
    first.commit(repository, persist_order=True)

    second = CalculationSession(provider=FakeProvider())
    report = await second.run(_request(week_offsets=[0]), repository.read_all(), [_start()])

    assert [s.location_id for s in report.combinations[0].stops] == ["B", "C", "A"]


@pytest.mark.asyncio
async def test_geometry_is_only_requested_for_a_single_combination():
    locations = [_location("A", 0.0, 0.01)]

    many = FakeProvider()
    await CalculationSession(provider=many).run(_request(include_geometry=True), locations, [_start()])
    single = FakeProvider()
    await CalculationSession(provider=single).run(
        _request(scope="single", week_offsets=[0], include_geometry=True), locations, [_start()]
    )

    assert many.geometry_flags == [False] * 4
    assert single.geometry_flags == [True]


@pytest.mark.asyncio
async def test_straight_line_provider_is_used_on_request():
    session = CalculationSession()

    report = await session.run(_request(provider="straight_line", week_offsets=[0]), [_location("A", 0.0, 0.01)], [_start()])

    combination = report.combinations[0]
    assert combination.provider == "straight_line"
    assert combination.distance_km == combination.estimate.distance_km


@pytest.mark.asyncio
async def test_config_error_leaves_session_idle():
    session = CalculationSession(provider=FakeProvider())

    with pytest.raises(CalculationConfigError):
        await session.run(_request(), [_location("A", 0.0, 0.01)], [_start("R9")])

    assert session.state == "idle"


@pytest.mark.asyncio
async def test_session_rejects_concurrent_and_repeated_runs():
    locations = [_location("A", 0.0, 0.01)]
    session = CalculationSession(provider=FakeProvider(delay=0.2))

    task = asyncio.create_task(session.run(_request(week_offsets=[0]), locations, [_start()]))
    await asyncio.sleep(0.05)
    with pytest.raises(SessionBusyError):
        await session.run(_request(week_offsets=[0]), locations, [_start()])
    await task

    with pytest.raises(SessionStateError):
        await session.run(_request(week_offsets=[0]), locations, [_start()])


def test_commit_without_a_run_is_rejected():
    with pytest.raises(SessionStateError):
        CalculationSession(provider=FakeProvider()).commit(MemoryRepository([]), persist_order=True)


@pytest.mark.asyncio
async def test_prepare_then_execute_in_the_background():
    session = CalculationSession(provider=FakeProvider(delay=0.05))

    with pytest.raises(SessionStateError):
        await session.execute()

    plan = session.prepare(_request(week_offsets=[0, 1]), [_location("A", 0.0, 0.01)], [_start()])

    assert session.state == "running"
    assert session.progress.done == 0 and session.progress.total == len(plan.combinations) == 2

    task = asyncio.create_task(session.execute())
    await asyncio.sleep(0.01)
    session.cancel()
    report = await task

    assert session.state == "cancelled"
    assert len(report.combinations) <= 1
