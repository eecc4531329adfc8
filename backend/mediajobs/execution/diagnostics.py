"""
Diagnostic tail analysis.

Heuristic, observational only: nothing here changes how a job runs.

- classify_failure(): coarse failure type from the last stderr lines
- parse_stats(): final encode statistics from the last stats line
"""

import re
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict


# =============================================================================
# Failure Classification
# =============================================================================

class FailureType(str, Enum):
    """Why a process exited non-zero, as far as its diagnostics tell."""

    INPUT_MISSING = "input_missing"
    PERMISSION_DENIED = "permission_denied"
    UNSUPPORTED_CODEC = "unsupported_codec"
    INVALID_DATA = "invalid_data"
    ENCODER_FAILED = "encoder_failed"
    OUTPUT_WRITE_FAILED = "output_write_failed"
    UNKNOWN = "unknown"


# Checked in order; more specific patterns first
_FAILURE_PATTERNS = [
    (FailureType.INPUT_MISSING, ["no such file or directory", "file not found", "does not exist"]),
    (FailureType.PERMISSION_DENIED, ["permission denied", "operation not permitted"]),
    (FailureType.UNSUPPORTED_CODEC, [
        "unknown encoder",
        "unknown decoder",
        "encoder not found",
        "decoder not found",
        "unsupported codec",
        "not supported",
        "unknown format",
    ]),
    (FailureType.INVALID_DATA, [
        "invalid data found",
        "moov atom not found",
        "corrupt",
        "error while decoding",
    ]),
    (FailureType.ENCODER_FAILED, [
        "error while opening encoder",
        "error initializing output stream",
        "error while encoding",
        "conversion failed",
    ]),
    (FailureType.OUTPUT_WRITE_FAILED, [
        "no space left on device",
        "disk full",
        "error writing",
        "could not write header",
        "broken pipe",
    ]),
]


def classify_failure(tail: Iterable[str]) -> FailureType:
    """
    Classify a failed run from its diagnostic tail.

    Args:
        tail: Last stderr lines, oldest first

    Returns:
        FailureType, UNKNOWN when nothing matches
    """
    text = "\n".join(tail).lower()
    if not text:
        return FailureType.UNKNOWN

    for failure_type, patterns in _FAILURE_PATTERNS:
        if any(pattern in text for pattern in patterns):
            return failure_type

    return FailureType.UNKNOWN


# =============================================================================
# Final Statistics
# =============================================================================

class JobStats(BaseModel):
    """Statistics from the last stats line of a successful run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    frames: Optional[int] = None
    average_fps: Optional[float] = None
    output_size_bytes: Optional[int] = None
    bitrate_kbps: Optional[float] = None
    speed: Optional[float] = None


_STATS_FRAME = re.compile(r'frame=\s*(\d+)')
_STATS_FPS = re.compile(r'fps=\s*(\d+(?:\.\d+)?)')
_STATS_SIZE = re.compile(r'size=\s*(\d+)\s*(?:kB|KiB)')
_STATS_BITRATE = re.compile(r'bitrate=\s*(\d+(?:\.\d+)?)\s*kbits/s')
_STATS_SPEED = re.compile(r'speed=\s*(\d+(?:\.\d+)?)x')


def _last(pattern: re.Pattern, lines: List[str]) -> Optional[str]:
    for line in reversed(lines):
        matches = pattern.findall(line)
        if matches:
            return matches[-1]
    return None


def parse_stats(tail: Iterable[str]) -> Optional[JobStats]:
    """
    Extract final statistics from the diagnostic tail.

    Returns:
        JobStats, or None when the tail holds no statistics at all
    """
    lines = list(tail)

    frames = _last(_STATS_FRAME, lines)
    fps = _last(_STATS_FPS, lines)
    size = _last(_STATS_SIZE, lines)
    bitrate = _last(_STATS_BITRATE, lines)
    speed = _last(_STATS_SPEED, lines)

    if not any((frames, fps, size, bitrate, speed)):
        return None

    return JobStats(
        frames=int(frames) if frames else None,
        average_fps=float(fps) if fps else None,
        output_size_bytes=int(size) * 1024 if size else None,
        bitrate_kbps=float(bitrate) if bitrate else None,
        speed=float(speed) if speed else None,
    )
