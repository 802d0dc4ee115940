"""
FastAPI application entry point.

Control surface for the Flowpilot scheduler: job creation, per-job commands
and dispatcher control. Every request is forwarded over the message channel
to the orchestrator context; the API never touches the job store directly.
"""

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI

load_dotenv()

from .. import __version__  # noqa: E402
from ..config import API_AUTH_ENABLED  # noqa: E402
from ._scheduler_state import init_scheduler_service, shutdown_scheduler_service  # noqa: E402
from .dependencies.auth import verify_api_key  # noqa: E402
from .routers import jobs, scheduler  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup recovers jobs left in flight by a previous run and registers the
    orchestrator; dispatching begins with POST /scheduler/start-all.
    app.state.scheduler_options, when set, is passed to the scheduler.
    """
    await init_scheduler_service(**getattr(app.state, "scheduler_options", {}))

    yield

    await shutdown_scheduler_service()


# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Job lifecycle - create production jobs, query them, cancel, retry or dispatch one now",
    },
    {
        "name": "scheduler",
        "description": "Dispatcher control - start-all, pause, resume and live status",
    },
]

app = FastAPI(
    title="Flowpilot API",
    lifespan=lifespan,
    description="""
## Flowpilot API

Schedules video production jobs on a web generator and distributes the
results to upload targets through browser automation.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require an
`X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
# Start server
python -m flowpilot

# Queue a job and start dispatching
curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"spec": {"instructions": "A cat surfing at sunset"}, "targets": ["tiktok"]}'
curl -X POST http://localhost:8000/scheduler/start-all
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

app.include_router(jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency)
app.include_router(scheduler.router, prefix="/scheduler", tags=["scheduler"], dependencies=auth_dependency)
