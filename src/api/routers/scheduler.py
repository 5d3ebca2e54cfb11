"""
Scheduler router for scheduler control APIs.

Endpoints under /scheduler/* for start, stop, and status operations.
The scheduler does not start on server boot; an explicit start is required.
"""

from fastapi import APIRouter, HTTPException

from src.engine.entities import utcnow

from ..schemas.scheduler import (
    SchedulerActionResponse,
    SchedulerStatusResponse,
    SchedulerStopRequest,
)
from .._engine_state import get_engine_service


router = APIRouter()


@router.post("/start", response_model=SchedulerActionResponse)
async def start_scheduler():
    """
    Start the scheduler polling loop.

    Idempotent: If the scheduler is already running, returns success with message.
    """
    service = get_engine_service()

    if service.is_running:
        return SchedulerActionResponse(success=True, message="Scheduler is already running")

    try:
        service.start(blocking=False)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to start scheduler: {str(e)}")

    return SchedulerActionResponse(success=True, message="Scheduler started successfully")


@router.post("/stop", response_model=SchedulerActionResponse)
async def stop_scheduler(request: SchedulerStopRequest = SchedulerStopRequest()):
    """
    Stop the scheduler polling loop gracefully.

    Waits for a running job to complete (no preemption).
    """
    service = get_engine_service()

    if not service.is_running:
        return SchedulerActionResponse(success=True, message="Scheduler is already stopped")

    try:
        service.stop(timeout=request.timeout)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to stop scheduler: {str(e)}")

    return SchedulerActionResponse(success=True, message="Scheduler stopped successfully")


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status():
    service = get_engine_service()
    current = service.scheduler.current_job

    return SchedulerStatusResponse(
        scheduler_running=service.is_running,
        state=service.scheduler.state.value,
        current_job_id=current.job_id if current is not None else None,
        job_count=len(service.catalog.list_jobs()),
        due_job_count=len(service.catalog.list_due_jobs(utcnow())),
    )
