"""
Engine configuration.

EngineSettings is the single object that configures a JobManager and its
collaborators (CommandBuilder, ProcessExecutor, ResourceGovernor,
TempFileManager, FFProbe).

Rules:
- Settings are immutable once constructed
- Every invalid value is reported, not just the first one
- No hidden environment inference: environment overrides are read only
  through EngineSettings.from_env()
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


ENV_PREFIX = "MEDIAJOBS_"

# Lower bound for the per-process memory ceiling (MB)
MIN_PROCESS_MEMORY_MB = 256


class ConfigurationError(Exception):
    """Raised when EngineSettings contains one or more invalid values."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid engine configuration: " + "; ".join(problems))


class BinaryNotFoundError(ConfigurationError):
    """A configured binary is missing or does not answer `-version`."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__([f"{path}: {reason}"])


class UnsupportedVersionError(ConfigurationError):
    """A configured binary is older than the minimum supported version."""

    def __init__(self, path: str, version: str, minimum: str):
        self.path = path
        self.version = version
        self.minimum = minimum
        super().__init__([f"{path}: version {version} is older than required {minimum}"])


def _default_cpu_budget() -> float:
    return 100.0 * (os.cpu_count() or 1)


class EngineSettings(BaseModel):
    """
    Engine-wide settings.

    Defaults mirror a single-host transcoding box: four concurrent
    processes, one hour timeout, five second grace period.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Binaries
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    # Run `-version` checks before serving or running jobs
    verify_binaries: bool = False

    # Admission
    max_concurrent: int = 4
    queue_capacity: int = 64

    # Timing (seconds)
    default_timeout_seconds: Optional[float] = 3600.0
    grace_period_seconds: float = 5.0
    kill_wait_seconds: float = 2.0
    poll_interval_seconds: float = 0.1
    probe_timeout_seconds: float = 30.0

    # Scratch storage
    temp_root: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))

    # Aggregate budget (ResourceGovernor)
    memory_budget_mb: float = 8192.0
    cpu_budget_percent: float = Field(default_factory=_default_cpu_budget)
    default_job_memory_mb: float = 512.0
    default_job_cpu_percent: float = 100.0

    # Per-process hard ceilings (ProcessExecutor), None disables
    max_memory_mb: Optional[float] = 2048.0
    max_cpu_percent: Optional[float] = None

    # Command building
    cpu_threads: int = 0  # 0 = let the program decide

    # Progress / diagnostics
    progress_buffer_size: int = 256
    diagnostic_tail_lines: int = 50

    # Post-run checks
    verify_outputs: bool = True

    @model_validator(mode="after")
    def _check_values(self) -> "EngineSettings":
        problems: List[str] = []

        if not self.ffmpeg_path.strip():
            problems.append("ffmpeg_path must not be empty")
        if not self.ffprobe_path.strip():
            problems.append("ffprobe_path must not be empty")
        if self.max_concurrent < 1:
            problems.append("max_concurrent must be >= 1")
        if self.queue_capacity < 0:
            problems.append("queue_capacity must be >= 0")
        if self.default_timeout_seconds is not None and self.default_timeout_seconds < 1.0:
            problems.append("default_timeout_seconds must be >= 1.0")
        if self.grace_period_seconds < 0:
            problems.append("grace_period_seconds must be >= 0")
        if self.kill_wait_seconds < 0:
            problems.append("kill_wait_seconds must be >= 0")
        if self.poll_interval_seconds <= 0:
            problems.append("poll_interval_seconds must be > 0")
        if self.probe_timeout_seconds <= 0:
            problems.append("probe_timeout_seconds must be > 0")
        if self.memory_budget_mb <= 0:
            problems.append("memory_budget_mb must be > 0")
        if self.cpu_budget_percent <= 0:
            problems.append("cpu_budget_percent must be > 0")
        if self.default_job_memory_mb <= 0:
            problems.append("default_job_memory_mb must be > 0")
        if self.default_job_cpu_percent <= 0:
            problems.append("default_job_cpu_percent must be > 0")
        if self.max_memory_mb is not None and self.max_memory_mb < MIN_PROCESS_MEMORY_MB:
            problems.append(f"max_memory_mb must be >= {MIN_PROCESS_MEMORY_MB}")
        if self.max_cpu_percent is not None and self.max_cpu_percent <= 0:
            problems.append("max_cpu_percent must be > 0")
        if self.cpu_threads < 0:
            problems.append("cpu_threads must be >= 0")
        if self.progress_buffer_size < 1:
            problems.append("progress_buffer_size must be >= 1")
        if self.diagnostic_tail_lines < 1:
            problems.append("diagnostic_tail_lines must be >= 1")

        if problems:
            raise ConfigurationError(problems)
        return self

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
        **overrides: Any,
    ) -> "EngineSettings":
        """
        Build settings from environment variables.

        MEDIAJOBS_MAX_CONCURRENT=2 sets max_concurrent, and so on.
        The strings "" and "none" clear optional fields.
        Explicit keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for name in cls.model_fields:
            raw = environ.get(prefix + name.upper())
            if raw is None:
                continue
            values[name] = None if raw.strip().lower() in ("", "none") else raw

        values.update(overrides)
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError([
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]) from e
