"""Mileage calculation endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response, status

from ...schemas.mileage import CalculationRequest, CommitRequest, CommitResponse, RunStatusResponse
from ...services.routing import service as mileage_service
from ...services.routing.errors import (
    CalculationConfigError,
    CalculationFailedError,
    SessionBusyError,
    SessionStateError,
)
from ...services.routing.service import SessionRegistry
from ...services.routing.session import CalculationSession

router = APIRouter(prefix="/mileage", tags=["mileage"])


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.mileage_sessions


def _get_session(request: Request, run_id: str) -> CalculationSession:
    session = _registry(request).get(run_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run '{run_id}' not found")
    return session


@router.post("/calculate", response_model=RunStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def calculate(
    payload: CalculationRequest,
    request: Request,
    response: Response,
    wait: bool = False,
) -> RunStatusResponse:
    """Start a run; with ``wait=true`` answer only once it has finished."""
    registry = _registry(request)
    try:
        session = await mileage_service.start_calculation(payload, registry)
    except CalculationConfigError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SessionBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error calculating mileage: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to calculate mileage: {str(exc)}",
        ) from exc

    if not wait:
        return mileage_service.session_status(session)

    await registry.wait(session.session_id)
    if session.state == "failed":
        code = (
            status.HTTP_502_BAD_GATEWAY
            if isinstance(session.error, CalculationFailedError)
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(status_code=code, detail={"run_id": session.session_id, "message": str(session.error)})
    response.status_code = status.HTTP_200_OK
    return mileage_service.session_status(session)


@router.get("/runs/{run_id}", response_model=RunStatusResponse, status_code=status.HTTP_200_OK)
async def get_run(run_id: str, request: Request) -> RunStatusResponse:
    return mileage_service.session_status(_get_session(request, run_id))


@router.post("/runs/{run_id}/cancel", response_model=RunStatusResponse, status_code=status.HTTP_200_OK)
async def cancel_run(run_id: str, request: Request) -> RunStatusResponse:
    session = _get_session(request, run_id)
    session.cancel()
    return mileage_service.session_status(session)


@router.post("/runs/{run_id}/commit", response_model=CommitResponse, status_code=status.HTTP_200_OK)
def commit(run_id: str, payload: CommitRequest, request: Request) -> CommitResponse:
    session = _get_session(request, run_id)
    try:
        return mileage_service.commit_run(session, payload)
    except SessionStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error committing mileage run {run_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to commit mileage run: {str(exc)}",
        ) from exc
