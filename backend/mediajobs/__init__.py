"""
mediajobs: job orchestration and process execution for media tools.

Concurrent scheduling of external processes under resource budgets,
streaming progress, timeout/cancellation, and guaranteed cleanup.
"""

from .config import ConfigurationError, EngineSettings
from .commands import (
    ValidationError,
    InputSpec,
    OutputSpec,
    SourceKind,
    Command,
    CommandBuilder,
)
from .execution import Progress, ProcessExecutor
from .jobs import (
    Job,
    JobManager,
    JobSnapshot,
    JobStatus,
    QueueFullError,
    JobNotFoundError,
    ManagerShutdownError,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "EngineSettings",
    "ValidationError",
    "InputSpec",
    "OutputSpec",
    "SourceKind",
    "Command",
    "CommandBuilder",
    "Progress",
    "ProcessExecutor",
    "Job",
    "JobManager",
    "JobSnapshot",
    "JobStatus",
    "QueueFullError",
    "JobNotFoundError",
    "ManagerShutdownError",
]
