"""
Scheduler control schemas.
"""

from typing import Optional

from pydantic import BaseModel, Field


class SchedulerStopRequest(BaseModel):
    """Request to stop the scheduler."""

    timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for a running job")


class SchedulerActionResponse(BaseModel):
    """Response from start/stop."""

    success: bool
    message: str


class SchedulerStatusResponse(BaseModel):
    """Scheduler status."""

    scheduler_running: bool
    state: str
    current_job_id: Optional[int] = None
    job_count: int
    due_job_count: int
