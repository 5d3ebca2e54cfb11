"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    JobCreateRequest,
    JobAlterRequest,
    JobResponse,
    JobAlterResponse,
    JobListResponse,
    JobStatsResponse,
    JobRunResponse,
    JobDeleteResponse,
)
from .scheduler import (
    SchedulerStopRequest,
    SchedulerActionResponse,
    SchedulerStatusResponse,
)

__all__ = [
    "JobCreateRequest",
    "JobAlterRequest",
    "JobResponse",
    "JobAlterResponse",
    "JobListResponse",
    "JobStatsResponse",
    "JobRunResponse",
    "JobDeleteResponse",
    "SchedulerStopRequest",
    "SchedulerActionResponse",
    "SchedulerStatusResponse",
]
