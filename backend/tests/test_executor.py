"""
Tests for ProcessExecutor.

The `posix` tests spawn real Python subprocesses (sys.executable -c ...)
to exercise timeouts, signal escalation and pipe wiring end to end.
The rest drive the executor through FakeProcessBackend.
"""

import io
import os
import sys
import time

import pytest

from conftest import FakeProcessBackend, FakeScript
from mediajobs.commands.models import Command, Redirect, StreamMode
from mediajobs.config import EngineSettings
from mediajobs.execution import (
    JobCancelledError,
    JobTimeoutError,
    OutcomeKind,
    ProcessExecutor,
    ProcessExitError,
    ProcessSpawnError,
    ResourceExceededError,
    Signal,
)
from mediajobs.observability.metrics import InMemoryMetrics


def python_command(script: str, **kwargs) -> Command:
    return Command(executable=sys.executable, args=("-c", script), **kwargs)


@pytest.fixture
def exec_settings(tmp_path) -> EngineSettings:
    return EngineSettings(
        temp_root=tmp_path,
        grace_period_seconds=0.5,
        kill_wait_seconds=2.0,
        poll_interval_seconds=0.02,
        max_memory_mb=None,
    )


@pytest.fixture
def executor(exec_settings) -> ProcessExecutor:
    return ProcessExecutor(exec_settings, metrics=InMemoryMetrics())


# =============================================================================
# Real subprocesses
# =============================================================================

@pytest.mark.posix
class TestRealProcesses:
    def test_clean_exit_streams_diagnostics(self, executor):
        script = (
            "import sys\n"
            "sys.stderr.write('frame=1 time=00:00:01.00 speed=1x\\n')\n"
            "sys.stderr.write('frame=2 time=00:00:02.00 speed=1x\\r')\n"
            "sys.stderr.write('done\\n')\n"
        )
        handle = executor.spawn(python_command(script), job_id="ok")
        lines = list(handle.diagnostics)
        outcome = handle.wait(timeout=10)

        assert outcome.succeeded
        assert outcome.error is None
        # '\r' separates lines too
        assert lines == [
            "frame=1 time=00:00:01.00 speed=1x",
            "frame=2 time=00:00:02.00 speed=1x",
            "done",
        ]
        assert executor.active_count() == 0

    def test_nonzero_exit_is_classified(self, executor):
        script = "import sys; sys.stderr.write('Conversion failed!\\n'); sys.exit(3)"
        outcome = executor.spawn(python_command(script), job_id="bad").wait(timeout=10)

        assert outcome.kind == OutcomeKind.EXITED
        assert outcome.exit_code == 3
        assert isinstance(outcome.error, ProcessExitError)
        assert outcome.error.exit_code == 3
        assert outcome.error.failure_type == "encoder_failed"
        assert outcome.diagnostic_tail == ["Conversion failed!"]
        assert executor.active_count() == 0

    @pytest.mark.slow
    def test_timeout_kills_long_running_process(self, executor):
        """
        GIVEN: A process that sleeps for 10 seconds
        WHEN: It runs with a 1 second timeout
        THEN: It is stopped shortly after 1 second and reported TIMED_OUT
        """
        started = time.monotonic()
        handle = executor.spawn(
            python_command("import time; time.sleep(10)"), job_id="slow", timeout=1.0
        )
        outcome = handle.wait(timeout=10)
        elapsed = time.monotonic() - started

        assert outcome.kind == OutcomeKind.TIMED_OUT
        assert isinstance(outcome.error, JobTimeoutError)
        assert 1.0 <= elapsed < 1.0 + 0.5 + 2.0
        assert executor.metrics.counter("jobs.timeouts") == 1
        assert executor.active_count() == 0

    @pytest.mark.slow
    def test_cancel_escalates_to_kill_when_terminate_is_ignored(self, executor):
        script = (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "sys.stderr.write('ready\\n'); sys.stderr.flush()\n"
            "time.sleep(30)\n"
        )
        handle = executor.spawn(python_command(script), job_id="stubborn")
        assert handle.diagnostics.get(timeout=10) == "ready"

        started = time.monotonic()
        assert handle.cancel(grace=0.5) is True
        outcome = handle.wait(timeout=10)
        elapsed = time.monotonic() - started

        assert outcome.kind == OutcomeKind.CANCELLED
        assert isinstance(outcome.error, JobCancelledError)
        assert outcome.signal_name == "SIGKILL"
        assert elapsed < 0.5 + 2.0
        assert executor.active_count() == 0

    def test_cancel_after_exit_is_refused(self, executor):
        handle = executor.spawn(python_command("pass"), job_id="quick")
        handle.wait(timeout=10)
        assert handle.cancel() is False

    def test_external_signal_is_reported(self, executor):
        script = "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"
        outcome = executor.spawn(python_command(script), job_id="killed").wait(timeout=10)

        assert outcome.kind == OutcomeKind.SIGNALED
        assert outcome.signal_name == "SIGKILL"
        assert isinstance(outcome.error, ProcessExitError)

    def test_pipes_are_fed_and_drained(self, executor):
        sink = io.BytesIO()
        command = python_command(
            "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read()[::-1])",
            stdin=Redirect(mode=StreamMode.PIPE, stream=io.BytesIO(b"abc" * 50_000)),
            stdout=Redirect(mode=StreamMode.PIPE, stream=sink),
        )
        outcome = executor.spawn(command, job_id="pipe").wait(timeout=10)

        assert outcome.succeeded
        assert sink.getvalue() == (b"abc" * 50_000)[::-1]

    def test_cwd_and_env_reach_the_child(self, executor, tmp_path):
        script = "import os, sys; sys.stderr.write(os.getcwd() + ' ' + os.environ['JOB_MARKER'] + '\\n')"
        env = dict(os.environ, JOB_MARKER="marker-42")
        outcome = executor.spawn(
            python_command(script), job_id="env", cwd=str(tmp_path), env=env
        ).wait(timeout=10)

        assert outcome.diagnostic_tail == [f"{os.path.realpath(tmp_path)} marker-42"]

    def test_missing_executable_is_a_spawn_failure(self, executor):
        handle = executor.spawn(Command(executable="/nonexistent/bin/ffmpeg"), job_id="missing")

        assert handle.done.is_set()
        assert handle.outcome.kind == OutcomeKind.SPAWN_FAILED
        assert isinstance(handle.outcome.error, ProcessSpawnError)
        assert list(handle.diagnostics) == []
        assert executor.active_count() == 0


# =============================================================================
# Fake backend
# =============================================================================

class TestExecutorWithFakeBackend:
    def test_registry_tracks_live_processes(self, exec_settings):
        backend = FakeProcessBackend(FakeScript(duration=None))
        executor = ProcessExecutor(exec_settings, backend=backend)

        handle = executor.spawn(Command(executable="ffmpeg"), job_id="a")

        assert executor.active_count() == 1
        assert executor.get("a") is handle
        assert executor.active_pids() == [handle.pid]

        with pytest.raises(ValueError):
            executor.spawn(Command(executable="ffmpeg"), job_id="a")

        assert executor.cancel_all() == 1
        outcome = handle.wait(timeout=5)
        assert outcome.kind == OutcomeKind.CANCELLED
        assert backend.processes[0].signals == [Signal.TERMINATE]
        assert executor.active_count() == 0

    def test_later_cancel_can_shorten_grace(self, exec_settings):
        backend = FakeProcessBackend(FakeScript(duration=None, ignore_terminate=True))
        executor = ProcessExecutor(exec_settings, backend=backend)
        handle = executor.spawn(Command(executable="ffmpeg"), job_id="slow")

        assert handle.cancel("first", grace=30.0) is True
        deadline = time.monotonic() + 5
        while not backend.processes[0].signals and time.monotonic() < deadline:
            time.sleep(0.01)

        started = time.monotonic()
        assert handle.cancel("second", grace=0.05) is True
        outcome = handle.wait(timeout=5)

        assert outcome.kind == OutcomeKind.CANCELLED
        assert "first" in str(outcome.error)
        assert time.monotonic() - started < 2.0
        assert backend.processes[0].signals == [Signal.TERMINATE, Signal.KILL]

    def test_memory_ceiling_kills_without_grace(self, tmp_path):
        settings = EngineSettings(
            temp_root=tmp_path,
            poll_interval_seconds=0.01,
            grace_period_seconds=5.0,
            max_memory_mb=512,
        )
        backend = FakeProcessBackend(FakeScript(duration=None, memory_mb=900.0, cpu_percent=50.0))
        metrics = InMemoryMetrics()
        executor = ProcessExecutor(settings, backend=backend, metrics=metrics)
        samples = []

        started = time.monotonic()
        outcome = executor.spawn(
            Command(executable="ffmpeg"), job_id="hog", on_usage=samples.append
        ).wait(timeout=5)

        assert outcome.kind == OutcomeKind.RESOURCE_EXCEEDED
        assert isinstance(outcome.error, ResourceExceededError)
        assert outcome.error.resource == "memory_mb"
        assert outcome.peak_memory_mb == pytest.approx(900.0)
        assert backend.processes[0].signals == [Signal.KILL]
        assert time.monotonic() - started < 5.0
        assert samples and samples[0].memory_mb == pytest.approx(900.0)
        assert metrics.counter("jobs.resource_kills") == 1

    def test_spawn_error_from_backend(self, exec_settings):
        backend = FakeProcessBackend()
        backend.spawn_error = "not found: ffmpeg"
        executor = ProcessExecutor(exec_settings, backend=backend)

        handle = executor.spawn(Command(executable="ffmpeg"), job_id="x")

        assert handle.outcome.kind == OutcomeKind.SPAWN_FAILED
        assert "not found" in str(handle.outcome.error)
        assert executor.get("x") is None

    def test_tail_is_bounded(self, tmp_path):
        settings = EngineSettings(temp_root=tmp_path, poll_interval_seconds=0.01, diagnostic_tail_lines=3)
        lines = [f"line {n}" for n in range(10)]
        backend = FakeProcessBackend(FakeScript(lines=lines, exit_code=1))
        executor = ProcessExecutor(settings, backend=backend)

        outcome = executor.spawn(Command(executable="ffmpeg"), job_id="t").wait(timeout=5)

        assert outcome.diagnostic_tail == ["line 7", "line 8", "line 9"]
        assert outcome.error.exit_code == 1
