"""
Tests for CommandBuilder and output presets.

Validation must happen entirely at build time and report the offending
field. Built commands are argv lists; nothing is ever shell-quoted.
"""

import io

import pytest

from mediajobs.commands import (
    CommandBuilder,
    InputSpec,
    OutputSpec,
    SourceKind,
    StreamMode,
    UnknownPresetError,
    ValidationError,
    list_presets,
    merge_with_preset,
)
from mediajobs.config import EngineSettings
from mediajobs.jobs.models import Job


def build(*outputs, inputs=None, **kwargs):
    builder = CommandBuilder("ffmpeg")
    for spec in inputs or [InputSpec(path="/media/in.mov")]:
        builder.add_input(spec)
    for spec in outputs:
        builder.add_output(spec)
    for name, value in kwargs.items():
        builder.set_global_option(name, value)
    return builder.build()


def field_errors(excinfo):
    return [field for field, _ in excinfo.value.issues]


# =============================================================================
# Argv rendering
# =============================================================================

class TestArgvRendering:
    """Valid specs turn into the expected argv."""

    def test_simple_transcode(self):
        command = build(OutputSpec(path="/media/out.mp4", video_codec="libx264", audio_codec="aac"))

        assert command.argv == [
            "ffmpeg", "-hide_banner", "-y", "-nostdin",
            "-i", "/media/in.mov",
            "-c:v", "libx264", "-c:a", "aac",
            "/media/out.mp4",
        ]
        assert command.input_files == ("/media/in.mov",)
        assert command.output_files == ("/media/out.mp4",)

    def test_paths_with_spaces_and_shell_characters_stay_single_arguments(self):
        weird = "/media/my clip; rm -rf ~ $(whoami).mov"
        command = build(OutputSpec(path="/media/out file.mp4"), inputs=[InputSpec(path=weird)])

        assert weird in command.argv
        assert "/media/out file.mp4" in command.argv
        assert command.argv[-1] == "/media/out file.mp4"

    def test_display_quotes_for_logs(self):
        command = build(OutputSpec(path="/media/out file.mp4"))
        assert "'/media/out file.mp4'" in command.display()

    def test_no_overwrite_uses_n_flag(self):
        command = (
            CommandBuilder()
            .add_input(InputSpec(path="/a.mov"))
            .add_output(OutputSpec(path="/b.mp4"))
            .overwrite(False)
            .build()
        )
        assert "-n" in command.args
        assert "-y" not in command.args

    def test_input_seek_and_duration_precede_input(self):
        command = build(
            OutputSpec(path="/out.mp4"),
            inputs=[InputSpec(path="/in.mov", seek_seconds=1.5, duration_seconds=10)],
        )
        args = list(command.args)
        index = args.index("-i")
        assert args[index - 4:index] == ["-ss", "1.5", "-t", "10"]

    def test_scale_keeps_aspect_with_one_dimension(self):
        command = build(OutputSpec(path="/out.mp4", video_codec="libx264", width=1280))
        assert "scale=1280:-2" in command.args

    def test_global_options_and_threads(self):
        command = (
            CommandBuilder()
            .add_input(InputSpec(path="/in.mov"))
            .add_output(OutputSpec(path="/out.mp4"))
            .set_global_option("loglevel", "info")
            .set_threads(4)
            .build()
        )
        args = list(command.args)
        assert args[args.index("-threads") + 1] == "4"
        assert args[args.index("-loglevel") + 1] == "info"

    def test_url_input_is_passed_through(self):
        command = build(
            OutputSpec(path="/out.mp4"),
            inputs=[InputSpec(kind=SourceKind.URL, url="https://cdn.example.com/a.m3u8")],
        )
        assert "https://cdn.example.com/a.m3u8" in command.argv
        assert command.input_files == ()

    def test_multiple_inputs_keep_order(self):
        command = build(
            OutputSpec(path="/out.mp4"),
            inputs=[InputSpec(path="/video.mov"), InputSpec(path="/audio.wav")],
        )
        args = list(command.args)
        positions = [i for i, arg in enumerate(args) if arg == "-i"]
        assert [args[i + 1] for i in positions] == ["/video.mov", "/audio.wav"]


# =============================================================================
# Pipes
# =============================================================================

class TestPipeWiring:
    def test_pipe_input_from_stream(self):
        stream = io.BytesIO(b"data")
        command = build(
            OutputSpec(path="/out.mp4"),
            inputs=[InputSpec(kind=SourceKind.PIPE, stream=stream, format="mpegts")],
        )
        assert command.stdin.mode == StreamMode.PIPE
        assert command.stdin.stream is stream
        assert "pipe:0" in command.args
        assert "-nostdin" not in command.args

    def test_pipe_output_requires_format(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(kind=SourceKind.PIPE, stream=io.BytesIO()))
        assert "outputs[0].format" in field_errors(excinfo)

    def test_pipe_output_to_file(self):
        command = build(OutputSpec(kind=SourceKind.PIPE, path="/tmp/out.ts", format="mpegts"))
        assert command.stdout.mode == StreamMode.FILE
        assert command.stdout.path == "/tmp/out.ts"
        assert command.argv[-1] == "pipe:1"

    def test_only_one_pipe_input(self):
        with pytest.raises(ValidationError) as excinfo:
            build(
                OutputSpec(path="/out.mp4"),
                inputs=[
                    InputSpec(kind=SourceKind.PIPE, stream=io.BytesIO()),
                    InputSpec(kind=SourceKind.PIPE, stream=io.BytesIO()),
                ],
            )
        assert "inputs[1].kind" in field_errors(excinfo)


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Every invalid field is reported; the first one names the error."""

    def test_missing_inputs_and_outputs(self):
        with pytest.raises(ValidationError) as excinfo:
            CommandBuilder().build()
        assert excinfo.value.field == "inputs"
        assert field_errors(excinfo) == ["inputs", "outputs"]

    def test_unknown_video_codec(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", video_codec="h266_magic"))
        assert excinfo.value.field == "outputs[0].video_codec"

    def test_unknown_audio_codec(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", audio_codec="mystery"))
        assert excinfo.value.field == "outputs[0].audio_codec"

    def test_odd_dimensions_rejected_for_x264(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", video_codec="libx264", width=1281, height=721))
        assert field_errors(excinfo) == ["outputs[0].width", "outputs[0].height"]

    def test_odd_dimensions_allowed_for_vp9(self):
        command = build(OutputSpec(path="/out.webm", video_codec="libvpx-vp9", width=641))
        assert "scale=641:-2" in command.args

    def test_non_positive_values(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", width=0, frame_rate=-1, sample_rate=0))
        fields = field_errors(excinfo)
        assert "outputs[0].width" in fields
        assert "outputs[0].frame_rate" in fields
        assert "outputs[0].sample_rate" in fields

    def test_malformed_bitrate(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", video_bitrate="fast"))
        assert excinfo.value.field == "outputs[0].video_bitrate"

    def test_crf_out_of_range(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", video_codec="libx264", crf=60))
        assert excinfo.value.field == "outputs[0].crf"

    def test_crf_and_bitrate_are_exclusive(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", video_codec="libx264", crf=23, video_bitrate="2M"))
        assert "outputs[0].crf" in field_errors(excinfo)

    def test_disallowed_url_scheme(self):
        with pytest.raises(ValidationError) as excinfo:
            build(
                OutputSpec(path="/out.mp4"),
                inputs=[InputSpec(kind=SourceKind.URL, url="file:///etc/passwd")],
            )
        assert excinfo.value.field == "inputs[0].url"

    def test_reserved_option_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4"), i="/other.mov")
        assert excinfo.value.field == "global_options.i"

    @pytest.mark.parametrize("name, value", [
        ("c:v", "evil_codec"),
        ("c:v:0", "aac"),
        ("codec:a", "libx264"),
        ("-c", "bogus"),
        ("vcodec", "bogus"),
        ("acodec", "bogus"),
        ("f", "not_a_format"),
        ("pix_fmt", "yuv999p"),
        ("preset", "ludicrous"),
        ("preset:v", "ludicrous"),
    ])
    def test_free_form_codec_and_format_options_use_allow_lists(self, name, value):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", options={name: value}))
        assert excinfo.value.field == f"outputs[0].options.{name}"

    def test_input_format_option_uses_allow_list(self):
        with pytest.raises(ValidationError) as excinfo:
            build(
                OutputSpec(path="/out.mp4"),
                inputs=[InputSpec(path="/in.mov", options={"f": "not_a_format"})],
            )
        assert excinfo.value.field == "inputs[0].options.f"

    def test_global_codec_option_uses_allow_list(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4"), acodec="bogus")
        assert excinfo.value.field == "global_options.acodec"

    def test_listed_option_requires_a_value(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4"), vcodec=None)
        assert excinfo.value.field == "global_options.vcodec"
        assert "requires a value" in excinfo.value.reason

    def test_allowed_free_form_codec_options_pass(self):
        command = build(OutputSpec(
            path="/out.mp4",
            options={"c:v": "libx265", "c:a": "copy", "vcodec": "libx264", "pix_fmt": "yuv420p",
                     "profile:v": "high"},
        ))
        args = list(command.args)
        assert args[args.index("-c:v") + 1] == "libx265"
        assert args[args.index("-profile:v") + 1] == "high"

    def test_output_cannot_overwrite_input(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/media/in.mov"))
        assert excinfo.value.field == "outputs[0].path"

    def test_dropping_both_streams_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            build(OutputSpec(path="/out.mp4", no_video=True, no_audio=True))
        assert excinfo.value.field == "outputs[0].no_audio"

    def test_error_serializes_all_issues(self):
        with pytest.raises(ValidationError) as excinfo:
            CommandBuilder().build()
        body = excinfo.value.to_dict()
        assert body["field"] == "inputs"
        assert len(body["issues"]) == 2


# =============================================================================
# Presets
# =============================================================================

class TestPresets:
    def test_registry_is_sorted(self):
        names = list_presets()
        assert names == sorted(names)
        assert "web-hd" in names

    def test_preset_fills_gaps_only(self):
        merged = merge_with_preset("web-hd", OutputSpec(path="/out.mp4", crf=20))
        assert merged.crf == 20
        assert merged.video_codec == "libx264"
        assert merged.width == 1280

    def test_explicit_bitrate_displaces_preset_crf(self):
        merged = merge_with_preset("web-hd", OutputSpec(path="/out.mp4", video_bitrate="3M"))
        assert merged.crf is None
        assert merged.video_bitrate == "3M"

    def test_unknown_preset(self):
        with pytest.raises(UnknownPresetError) as excinfo:
            merge_with_preset("ultra-mega", OutputSpec(path="/out.mp4"))
        assert excinfo.value.field == "preset"

    def test_every_preset_builds(self):
        for name in list_presets():
            spec = merge_with_preset(name, OutputSpec(path="/out.mkv"))
            build(spec)

    def test_for_job_applies_preset_and_settings(self):
        job = Job(
            inputs=(InputSpec(path="/in.mov"),),
            outputs=(OutputSpec(path="/out.mp4"),),
            preset="mobile",
            overwrite=False,
        )
        settings = EngineSettings(ffmpeg_path="/opt/ffmpeg/bin/ffmpeg", cpu_threads=2)

        command = CommandBuilder.for_job(job, settings).build()

        assert command.executable == "/opt/ffmpeg/bin/ffmpeg"
        assert "-n" in command.args
        assert "800k" in command.args
        args = list(command.args)
        assert args[args.index("-threads") + 1] == "2"
