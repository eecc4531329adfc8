"""
Job-specific error types.

All errors inherit from JobError for easy catching.
These are the only errors JobManager raises synchronously; everything
that goes wrong while a job runs is stored on its record instead.
"""


class JobError(Exception):
    """Base exception for all job-related failures."""
    pass


class JobNotFoundError(JobError):
    """Raised when a job id is not known to the manager."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateTransitionError(JobError):
    """Raised when attempting an illegal state transition."""

    def __init__(self, entity_type: str, current_state: str, target_state: str):
        self.entity_type = entity_type
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid {entity_type} state transition: "
            f"{current_state} -> {target_state}"
        )


class QueueFullError(JobError):
    """Raised by submit() when the pending queue is at capacity. Never blocks."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Job queue is full (capacity {capacity})")


class ManagerShutdownError(JobError):
    """Raised by submit() after shutdown() was called."""

    def __init__(self):
        super().__init__("Job manager is shut down and no longer accepts jobs")
