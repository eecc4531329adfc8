"""
ffprobe-backed probe collaborator.

Supplies the total duration the progress tracker needs for percentages.
Called once per job, from the job's worker thread, before spawn.

Read-only and non-destructive. Runs ffprobe as an argv list with a
timeout; never through a shell.
"""

import json
import logging
import subprocess
import time
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from ..commands.models import InputSpec, SourceKind
from .errors import MetadataError, ProbeFailedError, ProbeNotFoundError
from .models import MediaInfo, StreamInfo, StreamType

if TYPE_CHECKING:
    from ..config import EngineSettings
    from ..observability.metrics import MetricsSink

logger = logging.getLogger(__name__)


def _parse_rational(value: Optional[str]) -> Optional[float]:
    """Parse '30000/1001' style rates. None for 0/0 and garbage."""
    if not value:
        return None
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            if float(den) == 0:
                return None
            rate = float(num) / float(den)
        else:
            rate = float(value)
    except ValueError:
        return None
    return rate if rate > 0 else None


def _float(value: Any) -> Optional[float]:
    if value in (None, "", "N/A"):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any) -> Optional[int]:
    number = _float(value)
    return int(number) if number is not None else None


def _stream_type(codec_type: Optional[str]) -> StreamType:
    try:
        return StreamType(codec_type)
    except ValueError:
        return StreamType.OTHER


def parse_probe_output(location: str, data: Dict[str, Any]) -> MediaInfo:
    """Turn ffprobe's -show_format -show_streams JSON into a MediaInfo."""
    format_info = data.get("format") or {}

    streams = []
    for position, raw in enumerate(data.get("streams") or []):
        streams.append(StreamInfo(
            index=_int(raw.get("index")) if raw.get("index") is not None else position,
            type=_stream_type(raw.get("codec_type")),
            codec=raw.get("codec_name"),
            duration_seconds=_float(raw.get("duration")),
            bitrate=_int(raw.get("bit_rate")),
            width=_int(raw.get("width")),
            height=_int(raw.get("height")),
            frame_rate=_parse_rational(raw.get("r_frame_rate")) or _parse_rational(raw.get("avg_frame_rate")),
            pixel_format=raw.get("pix_fmt"),
            sample_rate=_int(raw.get("sample_rate")),
            channels=_int(raw.get("channels")),
        ))

    duration = _float(format_info.get("duration"))
    if duration is None:
        stream_durations = [s.duration_seconds for s in streams if s.duration_seconds]
        duration = max(stream_durations) if stream_durations else None

    return MediaInfo(
        location=location,
        format_name=format_info.get("format_name"),
        duration_seconds=duration,
        size_bytes=_int(format_info.get("size")),
        bitrate=_int(format_info.get("bit_rate")),
        streams=streams,
    )


class FFProbe:
    """
    Usage:
        prober = FFProbe.from_settings(settings)
        info = prober.probe("/media/in.mov")
        seconds = prober.probe_duration(job.inputs[0])  # None on any failure
    """

    def __init__(
        self,
        executable: str = "ffprobe",
        timeout: float = 30.0,
        metrics: Optional["MetricsSink"] = None,
    ):
        self.executable = executable
        self.timeout = timeout
        self.metrics = metrics

    @classmethod
    def from_settings(
        cls, settings: "EngineSettings", metrics: Optional["MetricsSink"] = None
    ) -> "FFProbe":
        return cls(settings.ffprobe_path, settings.probe_timeout_seconds, metrics)

    def probe(self, source: Union[InputSpec, str]) -> MediaInfo:
        """
        Probe a file path, URL, or file/URL InputSpec.

        Raises:
            ProbeNotFoundError: If ffprobe cannot be started
            ProbeFailedError: If ffprobe fails, times out, or prints unusable JSON
        """
        location = source.location if isinstance(source, InputSpec) else source
        if not location:
            raise ProbeFailedError("<pipe>", "Piped inputs cannot be probed")

        cmd = [
            self.executable,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            location,
        ]

        started = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ProbeNotFoundError(self.executable) from e
        except subprocess.TimeoutExpired as e:
            raise ProbeFailedError(location, f"timed out after {self.timeout:g}s") from e
        except OSError as e:
            raise ProbeFailedError(location, str(e)) from e
        finally:
            if self.metrics is not None:
                self.metrics.histogram("probe.duration_seconds", time.monotonic() - started)

        if result.returncode != 0:
            raise ProbeFailedError(location, f"ffprobe exited with code {result.returncode}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeFailedError(location, f"Failed to parse ffprobe output: {e}") from e
        if not isinstance(data, dict):
            raise ProbeFailedError(location, "ffprobe output is not a JSON object")

        return parse_probe_output(location, data)

    def probe_duration(self, source: Union[InputSpec, str]) -> Optional[float]:
        """Total duration in seconds, or None if it cannot be determined."""
        if isinstance(source, InputSpec) and source.kind == SourceKind.PIPE:
            return None

        try:
            return self.probe(source).duration_seconds
        except MetadataError as e:
            logger.warning(f"[Probe] {e}")
            if self.metrics is not None:
                self.metrics.increment("probe.errors")
            return None
