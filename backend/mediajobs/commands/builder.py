"""
CommandBuilder: typed specs in, validated argv out.

Design rules:
- build() validates everything before returning; nothing is half-built
- Errors are collected per field, the first one is reported as the
  ValidationError's field/reason
- Output is always an argv list, never a shell string, so paths with
  spaces, quotes or `;` need no escaping
- Input files are NOT checked for existence here; that happens in the
  worker right before spawn, so the builder stays pure and synchronous
"""

import re
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from .codecs import (
    COPY,
    ENCODER_PRESETS,
    FORMATS,
    PIXEL_FORMATS,
    URL_SCHEMES,
    audio_codec,
    parse_bitrate,
    video_codec,
)
from .errors import ValidationError
from .models import (
    Command,
    InputSpec,
    OutputSpec,
    Redirect,
    SourceKind,
    StreamMode,
)
from .presets import merge_with_preset

if TYPE_CHECKING:
    from ..config import EngineSettings
    from ..jobs.models import Job


_OPTION_NAME = re.compile(r"^-?[A-Za-z][A-Za-z0-9_:.\-]*$")

# Options the builder owns; callers use add_input()/overwrite() instead
_RESERVED_OPTIONS = frozenset({"-i", "-y", "-n"})

# Free-form options carrying a codec; the value is the implied stream type,
# None means it comes from the stream specifier (-c:v, -codec:a)
_CODEC_OPTIONS = {"c": None, "codec": None, "vcodec": "v", "acodec": "a"}

_LISTED_OPTIONS = {
    "f": FORMATS,
    "pix_fmt": PIXEL_FORMATS,
    "preset": ENCODER_PRESETS,
}


class CommandBuilder:
    """
    Assembles a Command from input/output/option specs.

    Usage:
        command = (
            CommandBuilder("ffmpeg")
            .add_input(InputSpec(path="/in.mov"))
            .add_output(OutputSpec(path="/out.mp4", video_codec="libx264"))
            .build()
        )
    """

    def __init__(self, executable: str = "ffmpeg"):
        self.executable = executable
        self._inputs: List[InputSpec] = []
        self._outputs: List[OutputSpec] = []
        self._global_options: Dict[str, Optional[str]] = {}
        self._overwrite = True
        self._threads = 0

    @classmethod
    def for_job(cls, job: "Job", settings: "EngineSettings") -> "CommandBuilder":
        """
        Prepare a builder from a submitted Job.

        The job's preset (if any) is merged into every output first.

        Raises:
            UnknownPresetError: If the job names an unregistered preset
        """
        builder = cls(settings.ffmpeg_path)
        for spec in job.inputs:
            builder.add_input(spec)
        for spec in job.outputs:
            if job.preset:
                spec = merge_with_preset(job.preset, spec)
            builder.add_output(spec)
        builder.set_global_options(job.global_options)
        builder.overwrite(job.overwrite)
        if settings.cpu_threads > 0:
            builder.set_threads(settings.cpu_threads)
        return builder

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def add_input(self, spec: InputSpec) -> "CommandBuilder":
        self._inputs.append(spec)
        return self

    def add_output(self, spec: OutputSpec) -> "CommandBuilder":
        self._outputs.append(spec)
        return self

    def set_global_options(self, options: Mapping[str, Optional[str]]) -> "CommandBuilder":
        """Add global options; a None value means a bare flag."""
        for name, value in options.items():
            self.set_global_option(name, value)
        return self

    def set_global_option(self, name: str, value: Optional[str] = None) -> "CommandBuilder":
        self._global_options[name] = value
        return self

    def set_threads(self, threads: int) -> "CommandBuilder":
        self._threads = threads
        return self

    def overwrite(self, enabled: bool = True) -> "CommandBuilder":
        self._overwrite = enabled
        return self

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> Command:
        """
        Validate and produce the Command.

        Raises:
            ValidationError: On the first (and any further) invalid field
        """
        issues: List[Tuple[str, str]] = []

        if not self.executable or not self.executable.strip():
            issues.append(("executable", "must not be empty"))
        if not self._inputs:
            issues.append(("inputs", "at least one input is required"))
        if not self._outputs:
            issues.append(("outputs", "at least one output is required"))
        if self._threads < 0:
            issues.append(("threads", "must not be negative"))

        for name, value in self._global_options.items():
            _check_option(f"global_options.{name}", name, value, issues)

        stdin = Redirect()
        stdout = Redirect()
        pipe_inputs = 0
        pipe_outputs = 0

        for index, spec in enumerate(self._inputs):
            field = f"inputs[{index}]"
            _check_input(field, spec, issues)
            if spec.kind == SourceKind.PIPE:
                pipe_inputs += 1
                if pipe_inputs > 1:
                    issues.append((f"{field}.kind", "only one pipe input is supported"))
                else:
                    stdin = _redirect_for(field, spec.path, spec.stream, issues)

        input_paths = {spec.path for spec in self._inputs if spec.kind == SourceKind.FILE}

        for index, spec in enumerate(self._outputs):
            field = f"outputs[{index}]"
            _check_output(field, spec, issues)
            if spec.kind == SourceKind.FILE and spec.path and spec.path in input_paths:
                issues.append((f"{field}.path", "output path would overwrite an input"))
            if spec.kind == SourceKind.PIPE:
                pipe_outputs += 1
                if pipe_outputs > 1:
                    issues.append((f"{field}.kind", "only one pipe output is supported"))
                else:
                    stdout = _redirect_for(field, spec.path, spec.stream, issues)

        if issues:
            field, reason = issues[0]
            raise ValidationError(field, reason, issues)

        return Command(
            executable=self.executable,
            args=tuple(self._render_args(stdin)),
            stdin=stdin,
            stdout=stdout,
            input_files=tuple(
                spec.path for spec in self._inputs if spec.kind == SourceKind.FILE
            ),
            output_files=tuple(
                spec.path for spec in self._outputs if spec.kind == SourceKind.FILE
            ),
        )

    def _render_args(self, stdin: Redirect) -> List[str]:
        args: List[str] = ["-hide_banner", "-y" if self._overwrite else "-n"]

        if stdin.mode == StreamMode.NULL:
            args.append("-nostdin")
        if self._threads > 0:
            args.extend(["-threads", str(self._threads)])

        for name, value in self._global_options.items():
            args.extend(_option_args(name, value))

        for spec in self._inputs:
            for name, value in spec.options.items():
                args.extend(_option_args(name, value))
            if spec.format:
                args.extend(["-f", spec.format])
            if spec.seek_seconds is not None:
                args.extend(["-ss", _seconds(spec.seek_seconds)])
            if spec.duration_seconds is not None:
                args.extend(["-t", _seconds(spec.duration_seconds)])
            args.extend(["-i", spec.location or "pipe:0"])

        for spec in self._outputs:
            args.extend(_output_args(spec))
            if spec.kind == SourceKind.FILE:
                args.append(spec.path)
            elif spec.kind == SourceKind.URL:
                args.append(spec.url)
            else:
                args.append("pipe:1")

        return args


# ----------------------------------------------------------------------
# Validation helpers
# ----------------------------------------------------------------------

def _check_option(field: str, name: str, value: Optional[str], issues: list) -> None:
    if not isinstance(name, str) or not _OPTION_NAME.match(name):
        issues.append((field, "invalid option name"))
        return
    option = _normalize_option(name)
    if option in _RESERVED_OPTIONS:
        issues.append((field, f"option {option} is managed by the builder"))
    if value is not None and (not isinstance(value, str) or "\x00" in value):
        issues.append((field, "option value must be a string without NUL bytes"))
        return
    _check_listed_option(field, option, value, issues)


def _check_listed_option(field: str, option: str, value: Optional[str], issues: list) -> None:
    """Codec, format, pixel format and preset options go through the allow-lists."""
    base, _, specifier = option[1:].partition(":")
    stream = specifier.split(":")[0] if specifier else None

    if base in _CODEC_OPTIONS:
        allowed = _codec_allowed(_CODEC_OPTIONS[base] or stream, value)
    elif base in _LISTED_OPTIONS:
        allowed = value in _LISTED_OPTIONS[base]
    else:
        return

    if value is None:
        issues.append((field, f"option {option} requires a value"))
    elif not allowed:
        issues.append((field, f"'{value}' is not allowed for {option}"))


def _codec_allowed(stream: Optional[str], value: Optional[str]) -> bool:
    if value is None:
        return False
    if value == COPY:
        return True
    if stream == "v":
        return video_codec(value) is not None
    if stream == "a":
        return audio_codec(value) is not None
    return video_codec(value) is not None or audio_codec(value) is not None


def _check_location(field: str, kind: SourceKind, path, url, issues: list) -> None:
    if kind == SourceKind.FILE:
        if not path or not path.strip():
            issues.append((f"{field}.path", "a path is required for file specs"))
        elif "\x00" in path:
            issues.append((f"{field}.path", "path must not contain NUL bytes"))
    elif kind == SourceKind.URL:
        if not url:
            issues.append((f"{field}.url", "a url is required for url specs"))
        else:
            scheme = urlparse(url).scheme.lower()
            if scheme not in URL_SCHEMES:
                issues.append((f"{field}.url", f"url scheme '{scheme}' is not allowed"))


def _check_input(field: str, spec: InputSpec, issues: list) -> None:
    _check_location(field, spec.kind, spec.path, spec.url, issues)

    if spec.format is not None and spec.format not in FORMATS:
        issues.append((f"{field}.format", f"format '{spec.format}' is not allowed"))
    if spec.seek_seconds is not None and spec.seek_seconds < 0:
        issues.append((f"{field}.seek_seconds", "must not be negative"))
    if spec.duration_seconds is not None and spec.duration_seconds <= 0:
        issues.append((f"{field}.duration_seconds", "must be positive"))
    for name, value in spec.options.items():
        _check_option(f"{field}.options.{name}", name, value, issues)


def _check_output(field: str, spec: OutputSpec, issues: list) -> None:
    _check_location(field, spec.kind, spec.path, spec.url, issues)

    if spec.format is not None and spec.format not in FORMATS:
        issues.append((f"{field}.format", f"format '{spec.format}' is not allowed"))
    if spec.kind == SourceKind.PIPE and spec.format is None:
        issues.append((f"{field}.format", "a format is required for pipe outputs"))
    if spec.no_video and spec.no_audio:
        issues.append((f"{field}.no_audio", "an output cannot drop both video and audio"))

    _check_video(field, spec, issues)
    _check_audio(field, spec, issues)

    if spec.duration_seconds is not None and spec.duration_seconds <= 0:
        issues.append((f"{field}.duration_seconds", "must be positive"))
    for name, value in spec.options.items():
        _check_option(f"{field}.options.{name}", name, value, issues)


def _check_video(field: str, spec: OutputSpec, issues: list) -> None:
    codec = None
    if spec.video_codec is not None:
        if spec.no_video:
            issues.append((f"{field}.video_codec", "conflicts with no_video"))
        elif spec.video_codec != COPY:
            codec = video_codec(spec.video_codec)
            if codec is None:
                issues.append((f"{field}.video_codec", f"codec '{spec.video_codec}' is not allowed"))

    if spec.video_bitrate is not None:
        _check_bitrate(f"{field}.video_bitrate", spec.video_bitrate, issues)
        if codec is not None and not codec.supports_bitrate:
            issues.append((f"{field}.video_bitrate", f"not supported by {codec.codec_id}"))

    for name in ("width", "height"):
        value = getattr(spec, name)
        if value is None:
            continue
        if value <= 0:
            issues.append((f"{field}.{name}", "must be positive"))
        elif codec is not None and codec.even_dimensions and value % 2:
            issues.append((f"{field}.{name}", f"must be even for {codec.codec_id}"))
    if (spec.width or spec.height) and spec.video_codec == COPY:
        issues.append((f"{field}.width", "cannot scale when the video stream is copied"))

    if spec.crf is not None:
        if codec is None or codec.crf_range is None:
            issues.append((f"{field}.crf", "crf requires a codec with crf rate control"))
        else:
            low, high = codec.crf_range
            if not low <= spec.crf <= high:
                issues.append((f"{field}.crf", f"must be between {low} and {high}"))
        if spec.video_bitrate is not None:
            issues.append((f"{field}.crf", "crf and video_bitrate are mutually exclusive"))

    if spec.encoder_preset is not None and spec.encoder_preset not in ENCODER_PRESETS:
        issues.append((f"{field}.encoder_preset", f"preset '{spec.encoder_preset}' is not allowed"))
    if spec.pixel_format is not None and spec.pixel_format not in PIXEL_FORMATS:
        issues.append((f"{field}.pixel_format", f"pixel format '{spec.pixel_format}' is not allowed"))
    if spec.frame_rate is not None and spec.frame_rate <= 0:
        issues.append((f"{field}.frame_rate", "must be positive"))


def _check_audio(field: str, spec: OutputSpec, issues: list) -> None:
    codec = None
    if spec.audio_codec is not None:
        if spec.no_audio:
            issues.append((f"{field}.audio_codec", "conflicts with no_audio"))
        elif spec.audio_codec != COPY:
            codec = audio_codec(spec.audio_codec)
            if codec is None:
                issues.append((f"{field}.audio_codec", f"codec '{spec.audio_codec}' is not allowed"))

    if spec.audio_bitrate is not None:
        _check_bitrate(f"{field}.audio_bitrate", spec.audio_bitrate, issues)
        if codec is not None and not codec.supports_bitrate:
            issues.append((f"{field}.audio_bitrate", f"not supported by {codec.codec_id}"))
    if spec.sample_rate is not None and spec.sample_rate <= 0:
        issues.append((f"{field}.sample_rate", "must be positive"))
    if spec.audio_channels is not None and spec.audio_channels <= 0:
        issues.append((f"{field}.audio_channels", "must be positive"))


def _check_bitrate(field: str, value, issues: list) -> None:
    bits = parse_bitrate(value)
    if bits is None:
        issues.append((field, f"malformed bitrate '{value}'"))
    elif bits <= 0:
        issues.append((field, "must be positive"))


def _redirect_for(field: str, path, stream, issues: list) -> Redirect:
    """Map a pipe spec to its stdin/stdout wiring."""
    if path and stream is not None:
        issues.append((f"{field}.stream", "set either path or stream for a pipe, not both"))
        return Redirect()
    if path:
        return Redirect(mode=StreamMode.FILE, path=path)
    if stream is not None:
        return Redirect(mode=StreamMode.PIPE, stream=stream)
    return Redirect(mode=StreamMode.INHERIT)


# ----------------------------------------------------------------------
# Rendering helpers
# ----------------------------------------------------------------------

def _normalize_option(name: str) -> str:
    return name if name.startswith("-") else f"-{name}"


def _option_args(name: str, value: Optional[str]) -> List[str]:
    if value is None:
        return [_normalize_option(name)]
    return [_normalize_option(name), value]


def _seconds(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".") if value % 1 else str(int(value))


def _output_args(spec: OutputSpec) -> List[str]:
    args: List[str] = []

    if spec.no_video:
        args.append("-vn")
    else:
        if spec.video_codec:
            args.extend(["-c:v", spec.video_codec])
        if spec.pixel_format:
            args.extend(["-pix_fmt", spec.pixel_format])
        if spec.video_bitrate is not None:
            args.extend(["-b:v", str(spec.video_bitrate)])
        if spec.crf is not None:
            args.extend(["-crf", str(spec.crf)])
        if spec.encoder_preset:
            args.extend(["-preset", spec.encoder_preset])
        if spec.width or spec.height:
            width = spec.width or -2
            height = spec.height or -2
            args.extend(["-vf", f"scale={width}:{height}"])
        if spec.frame_rate is not None:
            args.extend(["-r", f"{spec.frame_rate:g}"])

    if spec.no_audio:
        args.append("-an")
    else:
        if spec.audio_codec:
            args.extend(["-c:a", spec.audio_codec])
        if spec.audio_bitrate is not None:
            args.extend(["-b:a", str(spec.audio_bitrate)])
        if spec.sample_rate is not None:
            args.extend(["-ar", str(spec.sample_rate)])
        if spec.audio_channels is not None:
            args.extend(["-ac", str(spec.audio_channels)])

    if spec.duration_seconds is not None:
        args.extend(["-t", _seconds(spec.duration_seconds)])
    for name, value in spec.options.items():
        args.extend(_option_args(name, value))
    if spec.format:
        args.extend(["-f", spec.format])
    return args
