"""Mileage calculation orchestration for the API layer."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict
from datetime import date
from typing import Optional

from ...persistence.filesystem import FileStorage
from ...persistence.locations import LocationRepository, get_location_repository
from ...schemas.mileage import (
    CalculationRequest,
    CommitRequest,
    CommitResponse,
    MileageReportModel,
    ProgressModel,
    RunStatusResponse,
)
from ..outputs.mileage_formatter import mileage_report_to_csv, mileage_report_to_json
from .errors import SessionBusyError
from .models import MileageReport
from .session import CalculationSession, DistanceProvider

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Sessions owned by one application instance, with the task running each of them.

    A route may have only one running session; a second request for it is rejected.
    """

    def __init__(self, max_sessions: int = 100) -> None:
        self.max_sessions = max_sessions
        self._sessions: dict[str, CalculationSession] = {}
        self._route_owner: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def _busy_route(self, routes: list[str]) -> Optional[str]:
        for route in routes:
            owner = self._sessions.get(self._route_owner.get(route, ""))
            if owner is not None and owner.state == "running":
                return route
        return None

    def _prune(self) -> None:
        finished = [sid for sid, session in self._sessions.items() if session.state != "running"]
        while len(self._sessions) >= self.max_sessions and finished:
            self._sessions.pop(finished.pop(0), None)

    def create(self, request: CalculationRequest, provider: DistanceProvider | None = None) -> CalculationSession:
        busy = self._busy_route(request.routes)
        if busy is not None:
            raise SessionBusyError(f"A calculation is already running for route '{busy}'.")
        self._prune()
        session = CalculationSession(provider=provider)
        self._sessions[session.session_id] = session
        for route in request.routes:
            self._route_owner[route] = session.session_id
        return session

    def discard(self, run_id: str) -> None:
        self._sessions.pop(run_id, None)

    def get(self, run_id: str) -> Optional[CalculationSession]:
        return self._sessions.get(run_id)

    def track(self, session: CalculationSession, task: asyncio.Task) -> None:
        self._tasks[session.session_id] = task
        task.add_done_callback(lambda done, run_id=session.session_id: self._task_done(run_id, done))

    def _task_done(self, run_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Mileage run {run_id} ended with an error: {task.exception()}")

    async def wait(self, run_id: str) -> None:
        """Block until the run's task has finished; returns at once when nothing is running."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait({task})


def report_to_model(report: MileageReport) -> MileageReportModel:
    return MileageReportModel.model_validate(asdict(report))


def session_status(session: CalculationSession) -> RunStatusResponse:
    progress = session.progress
    return RunStatusResponse(
        run_id=session.session_id,
        state=session.state,
        progress=ProgressModel(done=progress.done, total=progress.total, label=progress.label) if progress else None,
        report=report_to_model(session.report) if session.report else None,
        error=str(session.error) if session.error else None,
    )


async def start_calculation(
    request: CalculationRequest,
    registry: SessionRegistry,
    *,
    repository: LocationRepository | None = None,
    provider: DistanceProvider | None = None,
    today: date | None = None,
) -> CalculationSession:
    """Validate the request and start its run in the background.

    Configuration errors are raised here; the returned session is already
    ``running`` and can be polled or cancelled through the registry.
    """
    repository = repository or await asyncio.to_thread(get_location_repository)
    locations = await asyncio.to_thread(repository.read_all)
    start_points = await asyncio.to_thread(repository.read_start_points)
    logger.info(f"Loaded {len(locations)} locations and {len(start_points)} start points for mileage run")

    session = registry.create(request, provider=provider)
    try:
        session.prepare(request, locations, start_points, today=today)
    except Exception:
        registry.discard(session.session_id)
        raise
    registry.track(session, asyncio.create_task(session.execute()))
    return session


def _output_prefix(report: MileageReport) -> str:
    if report.mode == "section" and report.start_points:
        name = report.start_points[0].route
    else:
        name = report.mode
    return "mileage_" + (re.sub(r"[^\w-]+", "_", name).strip("_") or "run")


def commit_run(
    session: CalculationSession,
    payload: CommitRequest,
    *,
    repository: LocationRepository | None = None,
) -> CommitResponse:
    """Accept or reject the session's visit order and optionally store the run outputs."""
    if payload.persist_order:
        repository = repository or get_location_repository()
    updated = session.commit(repository, persist_order=payload.persist_order)

    report = session.report
    output_dir = None
    if payload.persist_outputs and report is not None:
        storage = FileStorage()
        run_dir = storage.make_run_directory(prefix=_output_prefix(report))
        storage.write_json(run_dir / "summary.json", mileage_report_to_json(report))
        storage.write_csv(run_dir / "combinations.csv", mileage_report_to_csv(report))
        output_dir = str(run_dir)

    return CommitResponse(
        run_id=session.session_id,
        order_saved=bool(report and report.order_saved),
        updated_locations=updated,
        output_dir=output_dir,
    )
