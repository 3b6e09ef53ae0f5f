"""Calculation session: one mileage run from request to (optionally) committed visit order."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date
from typing import Callable, Optional, Protocol, Sequence

from ...config import settings
from ...models.domain import Location, StartPoint
from ...schemas.mileage import CalculationRequest
from .aggregator import (
    aggregate_run,
    apply_visit_orders,
    build_combination_report,
    build_estimate,
    build_stops,
    planned_orders,
)
from .cancellation import CancellationToken
from .errors import (
    CalculationFailedError,
    RoutingCancelledError,
    RoutingProviderError,
    SessionBusyError,
    SessionStateError,
)
from .models import CalculationPlan, CalculationProgress, CombinationReport, MileageReport, RouteMetrics
from .ordering import build_order
from .osrm_client import OSRMClient
from .planner import plan_calculation
from .straight_line import StraightLineProvider

ProgressCallback = Callable[[CalculationProgress], None]

logger = logging.getLogger(__name__)


class DistanceProvider(Protocol):
    name: str

    async def route(
        self,
        start: StartPoint,
        stops: Sequence[Location],
        *,
        token: CancellationToken | None = None,
        include_geometry: bool = False,
    ) -> RouteMetrics:
        ...


class LocationStore(Protocol):
    def read_all(self) -> list[Location]:
        ...

    def replace_all(self, locations: Sequence[Location]) -> None:
        ...


class CalculationSession:
    """Runs the combinations of one request strictly one after another.

    State moves ``idle -> running -> completed | cancelled | failed``. A session
    runs once; ``cancel()`` may be called at any time and is honoured between
    combinations and inside the pending road request.
    """

    def __init__(
        self,
        *,
        provider: Optional[DistanceProvider] = None,
        estimator: Optional[StraightLineProvider] = None,
        on_progress: Optional[ProgressCallback] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.estimator = estimator or StraightLineProvider()
        self.on_progress = on_progress
        self.state: str = "idle"
        self.progress: CalculationProgress | None = None
        self.report: MileageReport | None = None
        self.error: Exception | None = None
        self.request: CalculationRequest | None = None
        self._provider = provider
        self._active_provider: DistanceProvider | None = None
        self._plan: CalculationPlan | None = None
        self._token = CancellationToken()

    @property
    def cancel_requested(self) -> bool:
        return self._token.cancelled

    def cancel(self) -> None:
        if not self._token.cancelled:
            logger.info(f"Mileage run {self.session_id}: cancellation requested")
        self._token.cancel()

    def _provider_for(self, request: CalculationRequest) -> DistanceProvider:
        if self._provider is not None:
            return self._provider
        if request.provider == "straight_line":
            return self.estimator
        return OSRMClient()

    def _emit(self, done: int, total: int, label: str | None = None) -> None:
        self.progress = CalculationProgress(done=done, total=total, label=label)
        if self.on_progress is not None:
            self.on_progress(self.progress)

    def prepare(
        self,
        request: CalculationRequest,
        locations: Sequence[Location],
        start_points: Sequence[StartPoint],
        *,
        today: date | None = None,
    ) -> CalculationPlan:
        """Validate the request and move the session to ``running``.

        Raises ``CalculationConfigError`` and leaves the session idle when there
        is nothing to calculate.
        """
        if self.state == "running":
            raise SessionBusyError("A calculation is already running in this session.")
        if self.state != "idle":
            raise SessionStateError("This session has already run; start a new session for another calculation.")

        plan = plan_calculation(request, locations, start_points, today=today)
        self._active_provider = self._provider_for(request)
        self._plan = plan
        self.request = request
        self.state = "running"
        self._emit(0, len(plan.combinations))
        return plan

    async def run(
        self,
        request: CalculationRequest,
        locations: Sequence[Location],
        start_points: Sequence[StartPoint],
        *,
        today: date | None = None,
    ) -> MileageReport:
        self.prepare(request, locations, start_points, today=today)
        return await self.execute()

    async def execute(self) -> MileageReport:
        """Calculate the prepared combinations one after another."""
        plan, self._plan = self._plan, None
        request, provider = self.request, self._active_provider
        if plan is None or request is None or provider is None or self.state != "running":
            raise SessionStateError("Prepare the session before executing it.")

        ceiling = request.max_stops_per_combination or settings.max_stops_per_combination
        total = len(plan.combinations)
        want_geometry = request.include_geometry and total == 1
        isolate_failures = request.mode == "territory"
        results: list[CombinationReport] = []
        status = "completed"
        error_message: str | None = None

        logger.info(
            f"Mileage run {self.session_id} started: {total} combinations, mode={request.mode}, "
            f"provider={provider.name}, order_mode={request.order_mode}"
        )

        try:
            for idx, combination in enumerate(plan.combinations):
                if self._token.cancelled:
                    status = "cancelled"
                    break

                label = combination.label
                self._emit(idx, total, label)

                start = plan.start_points[combination.route]
                ordered = build_order(request.order_mode, start, combination.locations, combination.week_key)
                stops = build_stops(ordered)
                estimate = build_estimate(self.estimator.measure(start, ordered), stops)
                common = dict(order_mode=request.order_mode, provider=provider.name, stops=stops, estimate=estimate)

                if len(ordered) > ceiling:
                    logger.warning(f"Skipping {label}: {len(ordered)} stops exceed the limit of {ceiling}")
                    results.append(
                        build_combination_report(
                            combination,
                            status="skipped",
                            error_message=f"Too many stops for road calculation (>{ceiling}).",
                            **common,
                        )
                    )
                    self._emit(idx + 1, total, label)
                    continue

                try:
                    metrics = await provider.route(start, ordered, token=self._token, include_geometry=want_geometry)
                except RoutingCancelledError:
                    status = "cancelled"
                    break
                except RoutingProviderError as exc:
                    if not isolate_failures:
                        failure = CalculationFailedError(label, str(exc))
                        logger.warning(f"Mileage run {self.session_id} aborted: {failure}")
                        self.error = failure
                        status = "failed"
                        error_message = str(failure)
                        break
                    logger.warning(f"Road calculation failed for {label}: {exc}")
                    results.append(build_combination_report(combination, status="error", error_message=str(exc), **common))
                else:
                    results.append(build_combination_report(combination, metrics=metrics, **common))

                self._emit(idx + 1, total, label)
        except asyncio.CancelledError:
            self.state = "cancelled"
            raise
        except Exception as exc:
            logger.exception(f"Mileage run {self.session_id} crashed: {exc}")
            self.state = "failed"
            self.error = exc
            raise

        self.report = aggregate_run(
            plan=plan,
            combinations=results,
            mode=request.mode,
            scope=request.scope,
            order_mode=request.order_mode,
            provider=provider.name,
            status=status,
            error_message=error_message,
            run_id=self.session_id,
        )
        self.state = status
        logger.info(
            f"Mileage run {self.session_id} {status}: {len(results)}/{total} combinations, "
            f"{self.report.distance_km} km, {self.report.total_minutes} min"
        )
        return self.report

    def commit(self, repository: LocationStore | None, *, persist_order: bool) -> int:
        """Accept or reject the computed order; returns the number of locations updated.

        Rejecting keeps the report with ``order_saved`` false and touches no location.
        """
        if self.report is None or self.state == "running":
            raise SessionStateError("There is no finished calculation to commit.")
        if not persist_order:
            return 0
        if self.state != "completed":
            raise SessionStateError(f"Only completed runs can save their visit order (run is {self.state}).")
        if repository is None:
            raise ValueError("A location repository is required to save the visit order.")

        locations = repository.read_all()
        updated, changed = apply_visit_orders(locations, planned_orders(self.report))
        repository.replace_all(updated)
        self.report.order_saved = True
        logger.info(f"Mileage run {self.session_id}: visit order saved for {changed} locations")
        return changed
