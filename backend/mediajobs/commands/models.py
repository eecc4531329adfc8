"""
Typed input/output specs and the Command they resolve to.

InputSpec / OutputSpec describe WHAT a job reads and writes.
Command is the validated, fully-resolved argv the executor runs.

All models use Pydantic, reject unknown fields and are frozen once built.
Structural typing happens here; semantic checks (positive numbers,
allow-listed codecs, even dimensions) happen in CommandBuilder.build().
"""

import shlex
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(str, Enum):
    """Where an input is read from or an output is written to."""

    FILE = "file"  # Local path passed in argv
    URL = "url"  # Network location passed in argv
    PIPE = "pipe"  # pipe:0 / pipe:1, bytes travel over stdin/stdout


class StreamMode(str, Enum):
    """
    How a child's stdin or stdout is wired.

    NULL: /dev/null (the program reads/writes files named in argv)
    FILE: the stream is redirected from/to a file path
    INHERIT: the parent's own stdin/stdout handle is shared
    PIPE: an OS pipe connected to a caller-supplied stream
    """

    NULL = "null"
    FILE = "file"
    INHERIT = "inherit"
    PIPE = "pipe"


class InputSpec(BaseModel):
    """One input of a job, in argv order."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    kind: SourceKind = SourceKind.FILE
    path: Optional[str] = None
    url: Optional[str] = None

    # Binary readable object for PIPE inputs (fed to the child's stdin)
    stream: Optional[Any] = Field(default=None, exclude=True, repr=False)

    format: Optional[str] = None
    seek_seconds: Optional[float] = None
    duration_seconds: Optional[float] = None
    options: Dict[str, str] = Field(default_factory=dict)

    @property
    def location(self) -> Optional[str]:
        """Path or URL, whichever applies to this input."""
        if self.kind == SourceKind.FILE:
            return self.path
        if self.kind == SourceKind.URL:
            return self.url
        return None


class OutputSpec(BaseModel):
    """One output of a job."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    kind: SourceKind = SourceKind.FILE
    path: Optional[str] = None
    url: Optional[str] = None

    # Binary writable object for PIPE outputs (drained from the child's stdout)
    stream: Optional[Any] = Field(default=None, exclude=True, repr=False)

    format: Optional[str] = None

    # Video
    video_codec: Optional[str] = None
    video_bitrate: Optional[Union[int, str]] = None
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    crf: Optional[int] = None
    encoder_preset: Optional[str] = None
    pixel_format: Optional[str] = None
    no_video: bool = False

    # Audio
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[Union[int, str]] = None
    sample_rate: Optional[int] = None
    audio_channels: Optional[int] = None
    no_audio: bool = False

    duration_seconds: Optional[float] = None
    options: Dict[str, str] = Field(default_factory=dict)


class Redirect(BaseModel):
    """Declared wiring for one of the child's standard streams."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    mode: StreamMode = StreamMode.NULL
    path: Optional[str] = None
    stream: Optional[Any] = Field(default=None, exclude=True, repr=False)


class Command(BaseModel):
    """
    A validated invocation.

    Never rendered into a shell string for execution: the executor
    receives `argv` as a list. `display()` exists for logs only.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    executable: str
    args: Tuple[str, ...] = ()
    stdin: Redirect = Field(default_factory=Redirect)
    stdout: Redirect = Field(default_factory=Redirect)

    # Local paths the worker checks before spawn / after exit
    input_files: Tuple[str, ...] = ()
    output_files: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]

    def display(self) -> str:
        """Quoted, human-readable form of argv for audit logs."""
        return " ".join(shlex.quote(part) for part in self.argv)
