"""
Process execution.

One OS process per job: spawn, stream diagnostics, enforce timeout and
resource ceilings, reap. Nothing in this package knows about queues.
"""

from .errors import (
    ExecutionError,
    ProcessSpawnError,
    InputNotFoundError,
    ProcessExitError,
    JobTimeoutError,
    ResourceExceededError,
    JobCancelledError,
    OutputVerificationError,
)
from .channel import BoundedChannel, ChannelClosed, ChannelTimeout
from .process import (
    Signal,
    ResourceUsage,
    ProcessHandle,
    ProcessBackend,
    PopenProcessBackend,
)
from .progress import Progress, ProgressTracker, format_eta
from .diagnostics import FailureType, JobStats, classify_failure, parse_stats
from .executor import OutcomeKind, ExecutionOutcome, ExecutionHandle, ProcessExecutor
from .binaries import MIN_FFMPEG_VERSION, BinaryInfo, verify_binary, verify_binaries

__all__ = [
    # Errors
    "ExecutionError",
    "ProcessSpawnError",
    "InputNotFoundError",
    "ProcessExitError",
    "JobTimeoutError",
    "ResourceExceededError",
    "JobCancelledError",
    "OutputVerificationError",
    # Channel
    "BoundedChannel",
    "ChannelClosed",
    "ChannelTimeout",
    # Process capability
    "Signal",
    "ResourceUsage",
    "ProcessHandle",
    "ProcessBackend",
    "PopenProcessBackend",
    # Progress
    "Progress",
    "ProgressTracker",
    "format_eta",
    # Diagnostics
    "FailureType",
    "JobStats",
    "classify_failure",
    "parse_stats",
    # Executor
    "OutcomeKind",
    "ExecutionOutcome",
    "ExecutionHandle",
    "ProcessExecutor",
    # Binaries
    "MIN_FFMPEG_VERSION",
    "BinaryInfo",
    "verify_binary",
    "verify_binaries",
]
