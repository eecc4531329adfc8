"""
Request/response models for the job API.

Responses are plain views of JobSnapshot; the in-process exception
object never leaves the server.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..execution.diagnostics import JobStats
from ..execution.progress import Progress
from ..jobs.models import JobSnapshot, JobStatus


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    model_config = ConfigDict(extra="forbid")

    status: str = "ok"
    accepting_jobs: bool = True
    active_jobs: int = 0
    queued_jobs: int = 0


class SubmitResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str


class CancelResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str
    cancelled: bool


class ValidationErrorResponse(BaseModel):
    """422 body for a job that failed command validation."""

    model_config = ConfigDict(extra="forbid")

    field: str
    reason: str
    issues: List[Dict[str, str]] = []


class JobView(BaseModel):
    """JSON view of one job."""

    model_config = ConfigDict(extra="forbid")

    id: str
    status: JobStatus
    argv: List[str]
    preset: Optional[str] = None
    priority: int = 0

    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    progress: Optional[Progress] = None
    pid: Optional[int] = None

    error: Optional[str] = None
    error_type: Optional[str] = None
    failure_type: Optional[str] = None
    exit_code: Optional[int] = None
    stats: Optional[JobStats] = None

    @classmethod
    def from_snapshot(cls, snapshot: JobSnapshot) -> "JobView":
        return cls(**snapshot.model_dump())


class JobListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jobs: List[JobView]
    total: int


class MetricsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    counters: Dict[str, float]
    gauges: Dict[str, float]
    histograms: Dict[str, Dict[str, Any]]
