"""
Tests for ffmpeg/ffprobe binary verification.

subprocess.run is replaced except where a missing path is the point.
"""

import subprocess

import pytest

from mediajobs.config import BinaryNotFoundError, ConfigurationError, EngineSettings, UnsupportedVersionError
from mediajobs.execution.binaries import (
    MIN_FFMPEG_VERSION,
    compare_versions,
    parse_version,
    verify_binaries,
    verify_binary,
)


FFMPEG_6 = (
    "ffmpeg version 6.1.1-3ubuntu5 Copyright (c) 2000-2023 the FFmpeg developers\n"
    "built with gcc 13 (Ubuntu 13.2.0-23ubuntu3)\n"
)


def fake_run(stdout="", returncode=0, raises=None, calls=None):
    def _run(cmd, **kwargs):
        if calls is not None:
            calls.append((cmd, kwargs))
        if raises is not None:
            raise raises
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    return _run


# =============================================================================
# Version parsing
# =============================================================================

class TestVersions:
    def test_parse_release_version(self):
        assert parse_version(FFMPEG_6) == "6.1.1"

    def test_parse_tagged_build(self):
        assert parse_version("ffprobe version n5.1 Copyright") == "5.1"

    def test_parse_git_snapshot_has_no_version(self):
        assert parse_version("ffmpeg version N-112233-gabcdef Copyright") is None
        assert parse_version("") is None

    def test_compare(self):
        assert compare_versions("4.0", "4.0.0") == 0
        assert compare_versions("3.4.8", MIN_FFMPEG_VERSION) < 0
        assert compare_versions("4.10.0", "4.9.9") > 0


# =============================================================================
# verify_binary
# =============================================================================

class TestVerifyBinary:
    def test_supported_version(self, monkeypatch):
        calls = []
        monkeypatch.setattr(subprocess, "run", fake_run(FFMPEG_6, calls=calls))

        info = verify_binary("/opt/ffmpeg/bin/ffmpeg")

        cmd, kwargs = calls[0]
        assert cmd == ["/opt/ffmpeg/bin/ffmpeg", "-version"]
        assert kwargs.get("shell", False) is False
        assert info.version == "6.1.1"

    def test_too_old(self, monkeypatch):
        monkeypatch.setattr(subprocess, "run", fake_run("ffmpeg version 3.4.8 Copyright"))

        with pytest.raises(UnsupportedVersionError) as excinfo:
            verify_binary("ffmpeg")

        assert isinstance(excinfo.value, ConfigurationError)
        assert excinfo.value.version == "3.4.8"
        assert excinfo.value.minimum == MIN_FFMPEG_VERSION

    def test_unreadable_version_is_accepted(self, monkeypatch):
        monkeypatch.setattr(subprocess, "run", fake_run("ffmpeg version N-112233-gabcdef"))
        assert verify_binary("ffmpeg").version is None

    def test_nonzero_exit(self, monkeypatch):
        monkeypatch.setattr(subprocess, "run", fake_run(returncode=1))
        with pytest.raises(BinaryNotFoundError):
            verify_binary("ffmpeg")

    def test_hung_binary(self, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run", fake_run(raises=subprocess.TimeoutExpired(["ffmpeg"], 5))
        )
        with pytest.raises(BinaryNotFoundError) as excinfo:
            verify_binary("ffmpeg")
        assert "timed out" in str(excinfo.value)

    def test_missing_binary(self, tmp_path):
        missing = str(tmp_path / "no-ffmpeg")
        with pytest.raises(BinaryNotFoundError) as excinfo:
            verify_binary(missing)
        assert excinfo.value.path == missing

    def test_verify_binaries_checks_both(self, monkeypatch, tmp_path):
        calls = []
        monkeypatch.setattr(subprocess, "run", fake_run(FFMPEG_6, calls=calls))
        settings = EngineSettings(temp_root=tmp_path, ffmpeg_path="/x/ffmpeg", ffprobe_path="/x/ffprobe")

        verify_binaries(settings)

        assert [cmd[0] for cmd, _ in calls] == ["/x/ffmpeg", "/x/ffprobe"]
