"""
Binary verification for ffmpeg and ffprobe.

Opt-in (EngineSettings.verify_binaries): runs `<binary> -version` as argv
and checks the reported release against MIN_FFMPEG_VERSION. Failures are
configuration errors, raised once at startup instead of failing every job.

Builds that report no dotted release (git snapshots such as
"N-112233-gabcdef") are accepted with a warning.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from ..config import BinaryNotFoundError, UnsupportedVersionError

if TYPE_CHECKING:
    from ..config import EngineSettings

logger = logging.getLogger(__name__)

MIN_FFMPEG_VERSION = "4.0.0"
VERSION_CHECK_TIMEOUT = 5.0

# "ffmpeg version 6.1.1-3ubuntu5 Copyright ...", "ffprobe version n5.1 ..."
_VERSION_PATTERN = re.compile(r"version\s+n?(\d+\.\d+(?:\.\d+)?)", re.IGNORECASE)


@dataclass(frozen=True)
class BinaryInfo:
    path: str
    version: Optional[str]


def parse_version(output: str) -> Optional[str]:
    match = _VERSION_PATTERN.search(output or "")
    return match.group(1) if match else None


def compare_versions(a: str, b: str) -> int:
    """Negative if a < b, zero if equal, positive if a > b. Missing parts count as 0."""
    a_parts = [int(part) for part in a.split(".")]
    b_parts = [int(part) for part in b.split(".")]
    for index in range(max(len(a_parts), len(b_parts))):
        a_value = a_parts[index] if index < len(a_parts) else 0
        b_value = b_parts[index] if index < len(b_parts) else 0
        if a_value != b_value:
            return a_value - b_value
    return 0


def verify_binary(
    path: str,
    minimum: str = MIN_FFMPEG_VERSION,
    timeout: float = VERSION_CHECK_TIMEOUT,
) -> BinaryInfo:
    """
    Check that `path` runs and is at least `minimum`.

    Raises:
        BinaryNotFoundError: Missing, not executable, hung or exited non-zero
        UnsupportedVersionError: Reported version is below `minimum`
    """
    try:
        result = subprocess.run(
            [path, "-version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise BinaryNotFoundError(path, f"-version timed out after {timeout:g}s") from e
    except OSError as e:
        raise BinaryNotFoundError(path, str(e)) from e

    if result.returncode != 0:
        raise BinaryNotFoundError(path, f"-version exited with code {result.returncode}")

    version = parse_version(result.stdout)
    if version is None:
        logger.warning(f"[Binaries] Could not read a version from {path}, accepting it")
    elif compare_versions(version, minimum) < 0:
        raise UnsupportedVersionError(path, version, minimum)

    logger.info(f"[Binaries] {path} version {version or 'unknown'}")
    return BinaryInfo(path=path, version=version)


def verify_binaries(settings: "EngineSettings") -> List[BinaryInfo]:
    """Verify the configured ffmpeg and ffprobe."""
    return [
        verify_binary(settings.ffmpeg_path),
        verify_binary(settings.ffprobe_path),
    ]
