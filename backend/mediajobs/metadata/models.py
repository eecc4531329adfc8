"""
Probe result models.

Missing values are None, never guessed.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StreamType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    SUBTITLE = "subtitle"
    DATA = "data"
    OTHER = "other"


class StreamInfo(BaseModel):
    """One stream as reported by ffprobe."""

    model_config = ConfigDict(extra="forbid")

    index: int
    type: StreamType
    codec: Optional[str] = None
    duration_seconds: Optional[float] = None
    bitrate: Optional[int] = None

    # Video
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    pixel_format: Optional[str] = None

    # Audio
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


class MediaInfo(BaseModel):
    """Container-level probe result."""

    model_config = ConfigDict(extra="forbid")

    location: str
    format_name: Optional[str] = None
    duration_seconds: Optional[float] = None
    size_bytes: Optional[int] = None
    bitrate: Optional[int] = None
    streams: List[StreamInfo] = Field(default_factory=list)

    @property
    def video_streams(self) -> List[StreamInfo]:
        return [s for s in self.streams if s.type == StreamType.VIDEO]

    @property
    def audio_streams(self) -> List[StreamInfo]:
        return [s for s in self.streams if s.type == StreamType.AUDIO]
