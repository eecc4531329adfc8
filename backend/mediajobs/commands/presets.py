"""
Named output presets.

A preset is a set of OutputSpec defaults. Merging never overrides a
field the caller set explicitly on the OutputSpec; it only fills gaps.
Preset values still go through CommandBuilder validation afterwards.
"""

from typing import Any, Dict, List

from .errors import UnknownPresetError
from .models import OutputSpec


PRESETS: Dict[str, Dict[str, Any]] = {
    "web-hd": {
        "video_codec": "libx264",
        "audio_codec": "aac",
        "width": 1280,
        "height": 720,
        "crf": 23,
        "encoder_preset": "medium",
        "pixel_format": "yuv420p",
        "audio_bitrate": "128k",
    },
    "web-sd": {
        "video_codec": "libx264",
        "audio_codec": "aac",
        "width": 854,
        "height": 480,
        "crf": 26,
        "encoder_preset": "fast",
        "pixel_format": "yuv420p",
        "audio_bitrate": "96k",
    },
    "mobile": {
        "video_codec": "libx264",
        "audio_codec": "aac",
        "width": 640,
        "height": 360,
        "video_bitrate": "800k",
        "encoder_preset": "fast",
        "pixel_format": "yuv420p",
        "audio_bitrate": "64k",
    },
    "archive": {
        "video_codec": "libx265",
        "audio_codec": "flac",
        "crf": 18,
        "encoder_preset": "slow",
    },
    "audio-only": {
        "no_video": True,
        "audio_codec": "aac",
        "audio_bitrate": "192k",
    },
    "fast": {"video_codec": "libx264", "encoder_preset": "veryfast"},
    "medium": {"video_codec": "libx264", "encoder_preset": "medium"},
    "slow": {"video_codec": "libx264", "encoder_preset": "slow"},
}


def list_presets() -> List[str]:
    return sorted(PRESETS)


def merge_with_preset(preset: str, output: OutputSpec) -> OutputSpec:
    """
    Fill unset OutputSpec fields from a named preset.

    Raises:
        UnknownPresetError: If the preset name is not registered
    """
    defaults = PRESETS.get(preset)
    if defaults is None:
        raise UnknownPresetError(preset)

    explicit = set(output.model_fields_set)
    # Rate control is one decision: an explicit bitrate displaces preset crf and vice versa
    if "video_bitrate" in explicit:
        explicit.add("crf")
    if "crf" in explicit:
        explicit.add("video_bitrate")

    update = {key: value for key, value in defaults.items() if key not in explicit}
    return output.model_copy(update=update)
