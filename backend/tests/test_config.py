"""
Tests for EngineSettings.
"""

from pathlib import Path

import pytest

from mediajobs.config import ConfigurationError, EngineSettings


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()
        assert settings.max_concurrent == 4
        assert settings.grace_period_seconds == 5.0
        assert settings.default_timeout_seconds == 3600.0
        assert settings.cpu_budget_percent > 0

    def test_every_problem_is_reported(self):
        with pytest.raises(ConfigurationError) as excinfo:
            EngineSettings(max_concurrent=0, poll_interval_seconds=0, max_memory_mb=10)

        problems = excinfo.value.problems
        assert len(problems) == 3
        assert any("max_concurrent" in p for p in problems)
        assert any("poll_interval_seconds" in p for p in problems)
        assert any("max_memory_mb" in p for p in problems)

    def test_timeout_floor(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(default_timeout_seconds=0.5)
        assert EngineSettings(default_timeout_seconds=None).default_timeout_seconds is None

    def test_settings_are_frozen(self):
        settings = EngineSettings()
        with pytest.raises(Exception):
            settings.max_concurrent = 10

    def test_unknown_field_rejected(self):
        with pytest.raises(Exception):
            EngineSettings(max_concurent=2)


class TestFromEnv:
    def test_reads_prefixed_variables(self):
        settings = EngineSettings.from_env({
            "MEDIAJOBS_MAX_CONCURRENT": "2",
            "MEDIAJOBS_TEMP_ROOT": "/var/tmp/jobs",
            "MEDIAJOBS_VERIFY_OUTPUTS": "false",
            "UNRELATED": "1",
        })
        assert settings.max_concurrent == 2
        assert settings.temp_root == Path("/var/tmp/jobs")
        assert settings.verify_outputs is False

    def test_none_clears_optional(self):
        settings = EngineSettings.from_env({"MEDIAJOBS_MAX_MEMORY_MB": "none"})
        assert settings.max_memory_mb is None

    def test_overrides_win(self):
        settings = EngineSettings.from_env({"MEDIAJOBS_MAX_CONCURRENT": "2"}, max_concurrent=1)
        assert settings.max_concurrent == 1

    def test_bad_type_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as excinfo:
            EngineSettings.from_env({"MEDIAJOBS_MAX_CONCURRENT": "many"})
        assert "max_concurrent" in str(excinfo.value)

    def test_bad_value_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            EngineSettings.from_env({"MEDIAJOBS_GRACE_PERIOD_SECONDS": "-1"})
