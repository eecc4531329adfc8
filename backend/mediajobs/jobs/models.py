"""
Job data models.

Job is what a caller submits: immutable once constructed.
JobRecord is the manager's private, mutable bookkeeping for one job.
JobSnapshot is the read-only copy handed to everyone else.

State transitions are validated externally (see state.py).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..commands.models import Command, InputSpec, OutputSpec
from ..execution.channel import BoundedChannel
from ..execution.diagnostics import JobStats
from ..execution.progress import Progress
from ..resources.governor import ResourceEstimate

if TYPE_CHECKING:
    from ..execution.executor import ExecutionHandle


class JobStatus(str, Enum):
    """
    Job-level status.

    See state.py for the legal transitions.
    """

    PENDING = "pending"  # Submitted, waiting for a slot and budget
    RUNNING = "running"  # Admitted; process spawning or alive
    COMPLETED = "completed"  # Exit 0 (and outputs verified)
    FAILED = "failed"  # Spawn failure, non-zero exit, resource kill, ...
    TIMED_OUT = "timed_out"  # Wall-clock budget exceeded
    CANCELLED = "cancelled"  # Cancelled by caller or shutdown


class Job(BaseModel):
    """
    A unit of work: inputs in argv order, outputs, options.

    Immutable once submitted.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    inputs: Tuple[InputSpec, ...] = ()
    outputs: Tuple[OutputSpec, ...] = ()
    global_options: Dict[str, Optional[str]] = Field(default_factory=dict)
    preset: Optional[str] = None

    # None falls back to EngineSettings.default_timeout_seconds
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # Only consulted by PriorityJobQueue; higher runs first
    priority: int = 0

    overwrite: bool = True

    # None falls back to EngineSettings default job estimate
    resources: Optional[ResourceEstimate] = None


@dataclass
class JobRecord:
    """
    Manager-owned state for one job.

    Only JobManager mutates this, always under its lock.
    """

    job: Job
    command: Command
    estimate: ResourceEstimate
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING

    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    queued_at: float = 0.0  # monotonic, for queue-wait timing

    progress: Optional[Progress] = None
    pid: Optional[int] = None
    error: Optional[Exception] = None
    stats: Optional[JobStats] = None

    cancel_requested: bool = False
    cancel_reason: str = "Cancelled by user"
    cancel_grace: Optional[float] = None

    handle: Optional["ExecutionHandle"] = None
    progress_channel: BoundedChannel[Progress] = field(default_factory=BoundedChannel)

    def snapshot(self) -> "JobSnapshot":
        error = self.error
        return JobSnapshot(
            id=self.id,
            status=self.status,
            argv=list(self.command.argv),
            preset=self.job.preset,
            priority=self.job.priority,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            progress=self.progress,
            pid=self.pid,
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
            failure_type=getattr(error, "failure_type", None),
            exit_code=getattr(error, "exit_code", None),
            stats=self.stats,
            exception=error,
        )


class JobSnapshot(BaseModel):
    """Read-only copy of a JobRecord at one instant."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

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

    # The terminal error object itself, for in-process callers
    exception: Optional[Exception] = Field(default=None, exclude=True, repr=False)

    @property
    def is_terminal(self) -> bool:
        from .state import is_job_terminal

        return is_job_terminal(self.status)
