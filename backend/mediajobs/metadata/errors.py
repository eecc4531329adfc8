"""
Probe error types.

Raised by FFProbe.probe(). FFProbe.probe_duration() never raises; it
logs these and returns None so a failed probe never fails a job.
"""


class MetadataError(Exception):
    """Base exception for all probe failures."""
    pass


class ProbeFailedError(MetadataError):
    """Raised when ffprobe ran but produced no usable result."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Failed to probe {location}: {reason}")


class ProbeNotFoundError(MetadataError):
    """Raised when the ffprobe binary cannot be started."""

    def __init__(self, executable: str):
        self.executable = executable
        super().__init__(
            f"{executable} not found. Install ffmpeg or set ffprobe_path."
        )
