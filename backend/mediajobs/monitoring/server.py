"""
Job API endpoints.

HTTP face of the submission surface: submit, list, status, cancel,
plus health and metrics. Intended for trusted LAN access.

The JobManager is read from request.app.state.job_manager, so the same
router can be mounted on any FastAPI app.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ..commands.errors import ValidationError
from ..commands.models import SourceKind
from ..execution.binaries import verify_binaries
from ..jobs.errors import JobNotFoundError, ManagerShutdownError, QueueFullError
from ..jobs.manager import JobManager
from ..jobs.models import Job
from .models import (
    CancelResponse,
    HealthResponse,
    JobListResponse,
    JobView,
    MetricsResponse,
    SubmitResponse,
    ValidationErrorResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8085


def _manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def _reject_pipes(job: Job) -> None:
    """Pipes need in-process stream objects; a JSON body cannot carry them."""
    for index, spec in enumerate(job.inputs):
        if spec.kind == SourceKind.PIPE:
            raise ValidationError(f"inputs[{index}].kind", "pipe inputs are not available over HTTP")
    for index, spec in enumerate(job.outputs):
        if spec.kind == SourceKind.PIPE:
            raise ValidationError(f"outputs[{index}].kind", "pipe outputs are not available over HTTP")


def create_router() -> APIRouter:
    router = APIRouter(tags=["jobs"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Liveness plus a rough load indicator."""
        manager = _manager(request)
        return HealthResponse(
            status="ok",
            accepting_jobs=not manager.is_closed,
            active_jobs=manager.active_count(),
            queued_jobs=len(manager.queued_ids()),
        )

    @router.post("/jobs", status_code=202, response_model=SubmitResponse)
    async def submit_job(job: Job, request: Request):
        """
        Submit a job.

        Returns 202 with the job id; the job runs asynchronously.

        Raises:
            422: Command validation failed (body names the field)
            429: Queue is full
            503: Manager is shutting down
        """
        manager = _manager(request)
        try:
            _reject_pipes(job)
            job_id = manager.submit(job)
        except ValidationError as e:
            body = ValidationErrorResponse(**e.to_dict())
            return JSONResponse(status_code=422, content=body.model_dump())
        except QueueFullError as e:
            raise HTTPException(status_code=429, detail=str(e))
        except ManagerShutdownError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return SubmitResponse(job_id=job_id)

    @router.get("/jobs", response_model=JobListResponse)
    async def list_jobs(request: Request):
        """All known jobs, oldest first."""
        jobs = [JobView.from_snapshot(s) for s in _manager(request).list_jobs()]
        return JobListResponse(jobs=jobs, total=len(jobs))

    @router.get("/jobs/{job_id}", response_model=JobView)
    async def get_job(job_id: str, request: Request):
        """
        Raises:
            404: If the job ID does not exist
        """
        try:
            snapshot = _manager(request).status(job_id)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return JobView.from_snapshot(snapshot)

    @router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
    async def cancel_job(job_id: str, request: Request):
        """False for unknown or already-finished jobs."""
        return CancelResponse(job_id=job_id, cancelled=_manager(request).cancel(job_id))

    @router.get("/metrics", response_model=MetricsResponse)
    async def metrics(request: Request):
        sink = _manager(request).metrics
        snapshot = getattr(sink, "snapshot", None)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Metrics sink does not expose a snapshot")
        return MetricsResponse(**snapshot())

    return router


def create_app(manager: JobManager) -> FastAPI:
    """
    Build the API application around an existing manager.

    The app shuts the manager down when the server stops.

    Raises:
        ConfigurationError: settings.verify_binaries is on and ffmpeg or
            ffprobe is missing or too old
    """
    if manager.settings.verify_binaries:
        verify_binaries(manager.settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        manager.shutdown()

    app = FastAPI(
        title="mediajobs",
        description="Submit, observe and cancel media processing jobs.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.job_manager = manager
    app.include_router(create_router())

    return app


def run_server(
    manager: JobManager,
    host: Optional[str] = None,
    port: int = DEFAULT_PORT,
) -> None:
    """
    Run the job API with uvicorn. Blocks until the server stops.
    """
    import uvicorn

    host = host or DEFAULT_HOST
    app = create_app(manager)

    logger.info(f"[API] Binding to {host}:{port}")
    if host == "0.0.0.0":
        logger.warning("[API] LAN exposure is enabled. No authentication is configured.")

    uvicorn.run(app, host=host, port=port)
