"""
Jobs router for policy job management.

- POST /jobs - Create job (config of built-in policies is validated)
- GET /jobs - List jobs
- GET /jobs/{job_id} - Get job details
- PATCH /jobs/{job_id} - Alter schedule fields and config
- DELETE /jobs/{job_id} - Delete job with its stats
- POST /jobs/{job_id}/run - Execute job now
- GET /jobs/{job_id}/stats - Run statistics

Error mapping:
- JobNotFoundError -> 404
- ConfigError (incl. missing hypertables, indexes, routines) -> 400
- UnsupportedActionError, InvalidJobFieldError -> 400
"""

from fastapi import APIRouter, HTTPException

from src.engine.entities import Job
from src.engine.errors import (
    ConfigError,
    InvalidJobFieldError,
    JobNotFoundError,
    UnsupportedActionError,
)

from ..schemas.jobs import (
    JobAlterRequest,
    JobAlterResponse,
    JobCreateRequest,
    JobDeleteResponse,
    JobListResponse,
    JobResponse,
    JobRunResponse,
    JobStatsResponse,
)
from .._engine_state import get_engine_service


router = APIRouter()


def _job_to_response(job: Job) -> JobResponse:
    """Convert engine Job entity to API response."""
    return JobResponse(
        job_id=job.job_id,
        application_name=job.application_name,
        proc_schema=job.proc_schema,
        proc_name=job.proc_name,
        schedule_interval=str(job.schedule_interval),
        max_runtime=str(job.max_runtime),
        max_retries=job.max_retries,
        retry_period=str(job.retry_period),
        scheduled=job.scheduled,
        config=job.config,
        owner=job.owner,
    )


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ConfigError, UnsupportedActionError, InvalidJobFieldError)):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(request: JobCreateRequest):
    """
    Create a job for a registered routine.

    Built-in policies live in the "_policy_internal" schema; their config
    is validated before the job is stored.
    """
    service = get_engine_service()

    try:
        job = service.jobs.add_job(
            proc_schema=request.proc_schema,
            proc_name=request.proc_name,
            schedule_interval=request.schedule_interval,
            config=request.config,
            initial_start=request.initial_start,
            scheduled=request.scheduled,
            owner=request.owner,
        )
    except Exception as e:
        raise _http_error(e)

    return _job_to_response(job)


@router.get("", response_model=JobListResponse)
async def list_jobs():
    """List all jobs ordered by id."""
    service = get_engine_service()
    jobs = service.catalog.list_jobs()
    return JobListResponse(jobs=[_job_to_response(job) for job in jobs], total=len(jobs))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: int):
    service = get_engine_service()

    try:
        job = service.catalog.get_job(job_id)
    except Exception as e:
        raise _http_error(e)

    return _job_to_response(job)


@router.patch("/{job_id}", response_model=JobAlterResponse)
async def alter_job(job_id: int, request: JobAlterRequest):
    """
    Alter a job.

    A changed schedule interval moves next_start to last_finish + interval.
    With if_exists=true a missing job is not an error (404 is still
    returned since there is nothing to show).
    """
    service = get_engine_service()

    try:
        result = service.jobs.alter_job(
            job_id,
            schedule_interval=request.schedule_interval,
            max_runtime=request.max_runtime,
            max_retries=request.max_retries,
            retry_period=request.retry_period,
            scheduled=request.scheduled,
            config=request.config,
            next_start=request.next_start,
            if_exists=request.if_exists,
        )
    except Exception as e:
        raise _http_error(e)

    if result is None:
        raise HTTPException(status_code=404, detail=f"job {job_id} not found, skipping")

    return JobAlterResponse(
        job_id=result.job_id,
        schedule_interval=str(result.schedule_interval),
        max_runtime=str(result.max_runtime),
        max_retries=result.max_retries,
        retry_period=str(result.retry_period),
        scheduled=result.scheduled,
        config=result.config,
        next_start=result.next_start,
    )


@router.delete("/{job_id}", response_model=JobDeleteResponse)
async def delete_job(job_id: int):
    service = get_engine_service()

    try:
        service.jobs.delete_job(job_id)
    except Exception as e:
        raise _http_error(e)

    return JobDeleteResponse(job_id=job_id, success=True, message="Job deleted")


@router.post("/{job_id}/run", response_model=JobRunResponse)
def run_job(job_id: int):
    """
    Execute a job now, outside its schedule.

    Declared sync so the maintenance action runs in the threadpool instead
    of blocking the event loop.

    Configuration and unsupported-routine errors are returned as 400;
    run statistics are not recorded for manual runs.
    """
    service = get_engine_service()

    try:
        success = service.jobs.run_job(job_id)
    except Exception as e:
        raise _http_error(e)

    return JobRunResponse(job_id=job_id, success=success, message="Job executed")


@router.get("/{job_id}/stats", response_model=JobStatsResponse)
async def get_job_stats(job_id: int):
    """Run statistics; all empty if the job never ran."""
    service = get_engine_service()

    try:
        service.catalog.get_job(job_id)
    except Exception as e:
        raise _http_error(e)

    stat = service.catalog.get_run_stat(job_id)
    if stat is None:
        return JobStatsResponse(job_id=job_id)

    return JobStatsResponse(
        job_id=stat.job_id,
        last_start=stat.last_start,
        last_finish=stat.last_finish,
        next_start=stat.next_start,
        last_successful_finish=stat.last_successful_finish,
        last_run_success=stat.last_run_success,
        total_runs=stat.total_runs,
        total_successes=stat.total_successes,
        total_failures=stat.total_failures,
        consecutive_failures=stat.consecutive_failures,
    )
