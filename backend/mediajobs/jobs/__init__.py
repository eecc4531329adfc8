"""
Job orchestration.

JobManager is the only entry point callers need: submit, cancel, status,
progress_stream, shutdown. It is an explicit instance, never a global.
"""

from .errors import (
    JobError,
    JobNotFoundError,
    InvalidStateTransitionError,
    QueueFullError,
    ManagerShutdownError,
)
from .models import JobStatus, Job, JobRecord, JobSnapshot
from .state import (
    TERMINAL_JOB_STATES,
    is_job_terminal,
    can_transition_job,
    validate_job_transition,
)
from .queue import (
    JobQueue,
    FifoJobQueue,
    PriorityJobQueue,
    DeferBackoff,
    NoBackoff,
    ExponentialBackoff,
)
from .manager import JobManager

__all__ = [
    # Errors
    "JobError",
    "JobNotFoundError",
    "InvalidStateTransitionError",
    "QueueFullError",
    "ManagerShutdownError",
    # Models
    "JobStatus",
    "Job",
    "JobRecord",
    "JobSnapshot",
    # State
    "TERMINAL_JOB_STATES",
    "is_job_terminal",
    "can_transition_job",
    "validate_job_transition",
    # Queue
    "JobQueue",
    "FifoJobQueue",
    "PriorityJobQueue",
    "DeferBackoff",
    "NoBackoff",
    "ExponentialBackoff",
    # Manager
    "JobManager",
]
