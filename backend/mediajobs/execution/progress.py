"""
Progress parsing.

Turns the program's diagnostic stream into Progress values.

Two formats are understood:

    Classic stats line (stderr, '\\r' separated):
        frame=   24 fps= 12 q=28.0 size=     256kB time=00:00:01.00 bitrate=1234.5kbits/s speed=1.5x

    Block format (-progress pipe:2), one key per line, closed by progress=:
        frame=24
        fps=12.00
        out_time_us=1000000
        bitrate=1234.5kbits/s
        total_size=262144
        speed=1.5x
        progress=continue

Rules:
- Malformed lines are skipped silently (parse_line returns None)
- N/A values are treated as missing
- Time never goes backwards: an event older than the last one is dropped
- Percent is against an externally supplied total duration; when none was
  supplied the first "Duration: HH:MM:SS.xx" banner line fills it in
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from .channel import BoundedChannel


# time=00:00:01.00, time=01:23:45.678
TIME_PATTERN = re.compile(r'\btime=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)')

FRAME_PATTERN = re.compile(r'\bframe=\s*(\d+)')

FPS_PATTERN = re.compile(r'\bfps=\s*(\d+(?:\.\d+)?)')

# size=  256kB (older builds) or size=  256KiB (newer builds), Lsize= on the final line
SIZE_PATTERN = re.compile(r'size=\s*(\d+(?:\.\d+)?)\s*(?:kB|KiB)')

BITRATE_PATTERN = re.compile(r'\bbitrate=\s*(\d+(?:\.\d+)?)\s*kbits/s')

SPEED_PATTERN = re.compile(r'\bspeed=\s*(\d+(?:\.\d+)?(?:e[+-]?\d+)?)x')

DURATION_PATTERN = re.compile(r'Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)')

# One key=value per line; ffmpeg pads some values with a leading space
BLOCK_LINE_PATTERN = re.compile(r'^\s*([a-z_]+)=\s*(\S*)\s*$')

BLOCK_KEYS = frozenset({
    "frame",
    "fps",
    "bitrate",
    "total_size",
    "out_time_us",
    "out_time_ms",
    "out_time",
    "speed",
    "progress",
})


@dataclass(frozen=True)
class Progress:
    """One progress event. Only the latest per job is kept on the record."""

    time_seconds: float
    percent: Optional[float] = None
    frame: Optional[int] = None
    fps: Optional[float] = None
    speed: Optional[float] = None
    bitrate_kbps: Optional[float] = None
    size_bytes: Optional[int] = None
    eta_seconds: Optional[float] = None


def parse_timestamp(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def _float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "N/A":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "N/A":
        return None
    try:
        return int(value)
    except ValueError:
        return None


class ProgressTracker:
    """
    Stateful parser for one job's diagnostic stream.

    Usage:
        tracker = ProgressTracker(total_duration=120.0)
        for line in handle.diagnostics:
            progress = tracker.parse_line(line)
            if progress:
                publish(progress)
    """

    def __init__(self, total_duration: Optional[float] = None):
        self.total_duration = total_duration if total_duration and total_duration > 0 else None
        self.last: Optional[Progress] = None
        self._block: Dict[str, str] = {}

    def parse_line(self, line: str) -> Optional[Progress]:
        """
        Parse a single diagnostic line.

        Returns:
            A new Progress if the line completed a progress event, None otherwise
        """
        if not line:
            return None

        block_match = BLOCK_LINE_PATTERN.match(line)
        if block_match and block_match.group(1) in BLOCK_KEYS:
            return self._parse_block_line(block_match.group(1), block_match.group(2))

        if self.total_duration is None:
            duration_match = DURATION_PATTERN.search(line)
            if duration_match:
                duration = parse_timestamp(*duration_match.groups())
                if duration > 0:
                    self.total_duration = duration
                return None

        time_match = TIME_PATTERN.search(line)
        if not time_match:
            return None

        frame_match = FRAME_PATTERN.search(line)
        fps_match = FPS_PATTERN.search(line)
        size_match = SIZE_PATTERN.search(line)
        bitrate_match = BITRATE_PATTERN.search(line)
        speed_match = SPEED_PATTERN.search(line)

        size_kb = _float(size_match.group(1)) if size_match else None

        return self._emit(
            time_seconds=parse_timestamp(*time_match.groups()),
            frame=_int(frame_match.group(1)) if frame_match else None,
            fps=_float(fps_match.group(1)) if fps_match else None,
            speed=_float(speed_match.group(1)) if speed_match else None,
            bitrate_kbps=_float(bitrate_match.group(1)) if bitrate_match else None,
            size_bytes=int(size_kb * 1024) if size_kb is not None else None,
        )

    def _parse_block_line(self, key: str, value: str) -> Optional[Progress]:
        if key != "progress":
            self._block[key] = value
            return None

        block, self._block = self._block, {}

        time_seconds = self._block_time(block)
        if time_seconds is None:
            return None

        bitrate = block.get("bitrate", "")
        speed = block.get("speed", "")

        return self._emit(
            time_seconds=time_seconds,
            frame=_int(block.get("frame")),
            fps=_float(block.get("fps")),
            speed=_float(speed[:-1]) if speed.endswith("x") else None,
            bitrate_kbps=_float(bitrate[:-len("kbits/s")]) if bitrate.endswith("kbits/s") else None,
            size_bytes=_int(block.get("total_size")),
        )

    @staticmethod
    def _block_time(block: Dict[str, str]) -> Optional[float]:
        # out_time_ms is microseconds too (long-standing naming quirk)
        for key in ("out_time_us", "out_time_ms"):
            micros = _int(block.get(key))
            if micros is not None and micros >= 0:
                return micros / 1_000_000

        match = re.match(r'^(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$', block.get("out_time", ""))
        if match:
            return parse_timestamp(*match.groups())
        return None

    def _emit(
        self,
        time_seconds: float,
        frame: Optional[int],
        fps: Optional[float],
        speed: Optional[float],
        bitrate_kbps: Optional[float],
        size_bytes: Optional[int],
    ) -> Optional[Progress]:
        if self.last is not None and time_seconds < self.last.time_seconds:
            return None

        percent = None
        eta = None
        if self.total_duration:
            percent = min(100.0, time_seconds / self.total_duration * 100.0)
            if speed and speed > 0:
                eta = max(0.0, (self.total_duration - time_seconds) / speed)

        progress = Progress(
            time_seconds=time_seconds,
            percent=percent,
            frame=frame,
            fps=fps,
            speed=speed,
            bitrate_kbps=bitrate_kbps,
            size_bytes=size_bytes,
            eta_seconds=eta,
        )
        self.last = progress
        return progress

    def consume(
        self,
        lines: Iterable[str],
        channel: Optional[BoundedChannel[Progress]] = None,
        on_progress: Optional[Callable[[Progress], None]] = None,
    ) -> Optional[Progress]:
        """
        Parse a whole stream, pushing each Progress into `channel`.

        Returns the last Progress seen. Does not close the channel.
        """
        for line in lines:
            progress = self.parse_line(line)
            if progress is None:
                continue
            if channel is not None:
                channel.put(progress)
            if on_progress is not None:
                on_progress(progress)
        return self.last


def format_eta(eta_seconds: Optional[float]) -> str:
    """
    Format ETA for display.

    Args:
        eta_seconds: Estimated seconds remaining

    Returns:
        Human-readable ETA string
    """
    if eta_seconds is None:
        return "Estimating..."

    if eta_seconds < 60:
        return f"{int(eta_seconds)}s remaining"

    if eta_seconds < 3600:
        minutes = int(eta_seconds / 60)
        seconds = int(eta_seconds % 60)
        return f"{minutes}m {seconds}s remaining"

    hours = int(eta_seconds / 3600)
    minutes = int((eta_seconds % 3600) / 60)
    return f"{hours}h {minutes}m remaining"
