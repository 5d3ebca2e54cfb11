"""
Job API schemas.

Intervals are exchanged as strings ("5 minutes", "1 day", "PT1H") and
returned in the same PostgreSQL-like text form.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class JobCreateRequest(BaseModel):
    """Request to create a job."""

    proc_schema: str = Field(..., min_length=1, description="Schema of the job routine")
    proc_name: str = Field(..., min_length=1, description="Name of the job routine")
    schedule_interval: str = Field(..., description="Interval between runs, e.g. '1 day'")
    config: Optional[dict] = Field(default=None, description="Routine configuration")
    initial_start: Optional[datetime] = Field(default=None, description="First scheduled start")
    scheduled: bool = Field(default=True, description="Whether the scheduler runs the job")
    owner: str = Field(default="default", description="Job owner")


class JobAlterRequest(BaseModel):
    """Request to alter a job. Omitted fields are left unchanged."""

    schedule_interval: Optional[str] = None
    max_runtime: Optional[str] = None
    max_retries: Optional[int] = Field(default=None, ge=-1)
    retry_period: Optional[str] = None
    scheduled: Optional[bool] = None
    config: Optional[dict] = None
    next_start: Optional[datetime] = None
    if_exists: bool = False


class JobResponse(BaseModel):
    """Response representing a job."""

    job_id: int
    application_name: str
    proc_schema: str
    proc_name: str
    schedule_interval: str
    max_runtime: str
    max_retries: int
    retry_period: str
    scheduled: bool
    config: Optional[dict] = None
    owner: str


class JobAlterResponse(BaseModel):
    """Job fields after an alter, plus the next scheduled start."""

    job_id: int
    schedule_interval: str
    max_runtime: str
    max_retries: int
    retry_period: str
    scheduled: bool
    config: Optional[dict] = None
    next_start: Optional[datetime] = None


class JobListResponse(BaseModel):
    """Response for job list endpoint."""

    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Total number of jobs")


class JobStatsResponse(BaseModel):
    """Run statistics of a job."""

    job_id: int
    last_start: Optional[datetime] = None
    last_finish: Optional[datetime] = None
    next_start: Optional[datetime] = None
    last_successful_finish: Optional[datetime] = None
    last_run_success: bool = True
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0


class JobRunResponse(BaseModel):
    """Response from a manual job run."""

    job_id: int
    success: bool
    message: Optional[str] = None


class JobDeleteResponse(BaseModel):
    """Response from job deletion."""

    job_id: int
    success: bool
    message: Optional[str] = None
