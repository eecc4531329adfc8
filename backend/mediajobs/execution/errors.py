"""
Execution-specific errors.

These are never raised across the executor/manager boundary. The worker
driving a job stores them on the JobRecord as the job's terminal error;
callers read them through JobManager.status().
"""

from typing import List, Optional


class ExecutionError(Exception):
    """Base exception for all runtime job failures."""

    pass


class ProcessSpawnError(ExecutionError):
    """The executable is missing or could not be started. Fatal."""

    def __init__(self, executable: str, reason: str):
        self.executable = executable
        self.reason = reason
        super().__init__(f"Failed to start '{executable}': {reason}")


class InputNotFoundError(ExecutionError):
    """A file input did not exist when the job was about to spawn."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Input file not found: {path}")


class ProcessExitError(ExecutionError):
    """
    The process exited unsuccessfully.

    `exit_code` is the raw status (negative when killed by a signal the
    executor did not send). `diagnostic_tail` holds the last stderr lines.
    `failure_type` is a coarse classification of the tail, see
    diagnostics.classify_failure().
    """

    def __init__(
        self,
        exit_code: int,
        diagnostic_tail: Optional[List[str]] = None,
        signal_name: Optional[str] = None,
        failure_type: str = "unknown",
    ):
        self.exit_code = exit_code
        self.diagnostic_tail = list(diagnostic_tail or [])
        self.signal_name = signal_name
        self.failure_type = failure_type

        if signal_name:
            message = f"Process terminated by {signal_name}"
        else:
            message = f"Process exited with code {exit_code}"
        if self.diagnostic_tail:
            message += f": {self.diagnostic_tail[-1]}"
        super().__init__(message)


class JobTimeoutError(ExecutionError):
    """Wall-clock budget (measured from spawn) was exceeded; the process was killed."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Process exceeded timeout of {timeout_seconds:g}s")


class ResourceExceededError(ExecutionError):
    """A hard per-process memory or CPU ceiling was hit; the process was killed."""

    def __init__(self, resource: str, observed: float, limit: float):
        self.resource = resource
        self.observed = observed
        self.limit = limit
        super().__init__(
            f"Process exceeded {resource} ceiling: {observed:.1f} > {limit:.1f}"
        )


class JobCancelledError(ExecutionError):
    """The job was cancelled explicitly (or by manager shutdown)."""

    def __init__(self, reason: str = "Cancelled by user"):
        self.reason = reason
        super().__init__(reason)


class OutputVerificationError(ExecutionError):
    """The process exited 0 but a declared output file is missing."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Output file was not created: {path}")
