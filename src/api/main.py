"""
FastAPI application entry point.

Control plane for hypertable policy jobs: job management, manual runs and
the background scheduler. Optional API key authentication.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI

from src import __version__
from src.infra.logging_config import setup_logging
from src.infra.settings import get_settings
from .routers import jobs, scheduler
from ._engine_state import init_engine_service, shutdown_engine_service
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup creates the engine service (scheduler NOT started).
    Shutdown stops the scheduler if it is running.
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_engine_service(settings.db_path, poll_interval=settings.poll_interval)

    yield

    shutdown_engine_service()

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Policy job management - add, alter, delete and run reorder, retention, compression and refresh jobs",
    },
    {
        "name": "scheduler",
        "description": "Background scheduler control - start, stop and status",
    },
]

app = FastAPI(
    title="Hypertable Policy Jobs API",
    lifespan=lifespan,
    description="""
## Hypertable Policy Jobs API

Manage policy jobs that maintain time-partitioned hypertables.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require
an `X-API-Key` header matching the `API_KEY` environment variable.

### Built-in policies
Routines in the `_policy_internal` schema:
- **policy_reorder**: `{"hypertable_id": 1, "index_name": "conditions_time_idx"}`
- **policy_retention**: `{"hypertable_id": 1, "drop_after": "30 days"}`
- **policy_compression**: `{"hypertable_id": 1, "compress_after": "7 days"}`
- **policy_refresh_continuous_aggregate**: `{"mat_hypertable_id": 2, "start_offset": "10 days", "end_offset": "1 day"}`

### Usage
```bash
# Start server
uvicorn src.api.main:app --host 127.0.0.1 --port 8000

# Add a retention job
curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"proc_schema": "_policy_internal", "proc_name": "policy_retention",
       "schedule_interval": "1 day", "config": {"hypertable_id": 1, "drop_after": "30 days"}}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)

# Health check - NO authentication (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


# Include routers WITH authentication dependency (when enabled)
auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency
)
app.include_router(
    scheduler.router, prefix="/scheduler", tags=["scheduler"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
