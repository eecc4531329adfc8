"""
Codec and format allow-lists.

This is the only place codec identifiers are declared. CommandBuilder
rejects any codec, container format or URL scheme not listed here; values
are never passed through unchecked.

Each video codec declares whether its usual pixel formats (4:2:0 / 4:2:2
chroma subsampling) force even frame dimensions and its CRF range.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple, Union


@dataclass(frozen=True)
class CodecSpec:
    """Capabilities of one encoder the builder may emit."""

    codec_id: str
    kind: str  # "video" or "audio"
    even_dimensions: bool = False
    crf_range: Optional[Tuple[int, int]] = None
    supports_bitrate: bool = True


COPY = "copy"

VIDEO_CODECS: Dict[str, CodecSpec] = {
    spec.codec_id: spec
    for spec in (
        # Delivery
        CodecSpec("libx264", "video", even_dimensions=True, crf_range=(0, 51)),
        CodecSpec("libx265", "video", even_dimensions=True, crf_range=(0, 51)),
        CodecSpec("h264_nvenc", "video", even_dimensions=True),
        CodecSpec("hevc_nvenc", "video", even_dimensions=True),
        CodecSpec("h264_videotoolbox", "video", even_dimensions=True),
        CodecSpec("hevc_videotoolbox", "video", even_dimensions=True),
        CodecSpec("h264_vaapi", "video", even_dimensions=True),
        CodecSpec("libvpx", "video", crf_range=(4, 63)),
        CodecSpec("libvpx-vp9", "video", crf_range=(0, 63)),
        CodecSpec("libaom-av1", "video", crf_range=(0, 63)),
        CodecSpec("libsvtav1", "video", even_dimensions=True, crf_range=(0, 63)),
        CodecSpec("mpeg4", "video"),
        CodecSpec("libtheora", "video"),
        # Intermediate
        CodecSpec("prores_ks", "video", even_dimensions=True, supports_bitrate=False),
        CodecSpec("dnxhd", "video", even_dimensions=True),
        # Stills
        CodecSpec("mjpeg", "video", supports_bitrate=False),
        CodecSpec("png", "video", supports_bitrate=False),
        CodecSpec("gif", "video", supports_bitrate=False),
    )
}

AUDIO_CODECS: Dict[str, CodecSpec] = {
    spec.codec_id: spec
    for spec in (
        CodecSpec("aac", "audio"),
        CodecSpec("libmp3lame", "audio"),
        CodecSpec("libopus", "audio"),
        CodecSpec("libvorbis", "audio"),
        CodecSpec("ac3", "audio"),
        CodecSpec("flac", "audio", supports_bitrate=False),
        CodecSpec("alac", "audio", supports_bitrate=False),
        CodecSpec("pcm_s16le", "audio", supports_bitrate=False),
        CodecSpec("pcm_s24le", "audio", supports_bitrate=False),
    )
}

FORMATS: FrozenSet[str] = frozenset({
    "mp4", "mov", "matroska", "mkv", "webm", "mxf", "avi", "flv",
    "mpegts", "hls", "dash", "mp3", "wav", "flac", "ogg", "adts",
    "image2", "image2pipe", "gif", "s16le", "rawvideo", "null",
})

URL_SCHEMES: FrozenSet[str] = frozenset({
    "http", "https", "rtmp", "rtmps", "rtsp", "srt", "udp", "tcp",
})

PIXEL_FORMATS: FrozenSet[str] = frozenset({
    "yuv420p", "yuv422p", "yuv444p", "yuv420p10le", "yuv422p10le",
    "yuv444p10le", "nv12", "rgb24", "rgba", "gray",
})

ENCODER_PRESETS: FrozenSet[str] = frozenset({
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow", "placebo",
})

# "128k", "5M", "1.5M", "800000"
_BITRATE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)([kKmM]?)$")
_MULTIPLIERS = {"": 1, "k": 1_000, "m": 1_000_000}


def parse_bitrate(value: Union[int, str]) -> Optional[int]:
    """
    Parse a bitrate to bits per second.

    Returns None when the value is malformed; zero and negative values
    are returned as-is so the caller can report them as non-positive.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _BITRATE_PATTERN.match(str(value).strip())
    if not match:
        return None
    number, suffix = match.groups()
    return int(float(number) * _MULTIPLIERS[suffix.lower()])


def video_codec(codec_id: str) -> Optional[CodecSpec]:
    return VIDEO_CODECS.get(codec_id)


def audio_codec(codec_id: str) -> Optional[CodecSpec]:
    return AUDIO_CODECS.get(codec_id)
