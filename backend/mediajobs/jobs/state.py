"""
State transition validation for jobs.

Job lifecycle:
    PENDING -> RUNNING -> COMPLETED | FAILED | TIMED_OUT | CANCELLED
    PENDING -> CANCELLED

INVARIANT: Terminal job states are immutable. Once a job enters a
terminal state, no state transition is allowed and status never
regresses.
"""

from typing import FrozenSet, Set, Tuple

from .errors import InvalidStateTransitionError
from .models import JobStatus


# ============================================================================
# TERMINAL STATE INVARIANT
# ============================================================================
TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.TIMED_OUT,
    JobStatus.CANCELLED,
})


def is_job_terminal(status: JobStatus) -> bool:
    """
    Check if a job status is terminal (immutable).

    Args:
        status: The job status to check

    Returns:
        True if the status is terminal, False otherwise
    """
    return status in TERMINAL_JOB_STATES


# Legal job state transitions
_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    # Admission
    (JobStatus.PENDING, JobStatus.RUNNING),

    # Cancelled while still queued: never spawned
    (JobStatus.PENDING, JobStatus.CANCELLED),

    # Terminal outcomes of a running process
    (JobStatus.RUNNING, JobStatus.COMPLETED),
    (JobStatus.RUNNING, JobStatus.FAILED),
    (JobStatus.RUNNING, JobStatus.TIMED_OUT),
    (JobStatus.RUNNING, JobStatus.CANCELLED),
}


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.

    INVARIANT: Terminal states cannot transition to any other state.
    """
    if is_job_terminal(from_status):
        return False

    # Allow staying in same state (idempotent operations)
    if from_status == to_status:
        return True

    return (from_status, to_status) in _JOB_TRANSITIONS


def validate_job_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Validate a job state transition, raising an exception if illegal.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(from_status, to_status):
        raise InvalidStateTransitionError("job", from_status.value, to_status.value)
