"""
Media probing.

The job manager needs one number from here: the total duration used to
turn elapsed time into a percentage.
"""

from .errors import MetadataError, ProbeFailedError, ProbeNotFoundError
from .models import StreamType, StreamInfo, MediaInfo
from .probe import FFProbe, parse_probe_output

__all__ = [
    # Errors
    "MetadataError",
    "ProbeFailedError",
    "ProbeNotFoundError",
    # Models
    "StreamType",
    "StreamInfo",
    "MediaInfo",
    # Probe
    "FFProbe",
    "parse_probe_output",
]
