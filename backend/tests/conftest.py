"""
Shared fixtures for mediajobs tests.

FakeProcessBackend stands in for real ffmpeg processes: each spawn
plays back a scripted stderr and exits on a timer, on TERMINATE (unless
told to ignore it) or on KILL. Real-subprocess tests live in
test_executor.py and are marked `posix`.
"""

import itertools
import os
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediajobs.commands.models import InputSpec, OutputSpec, Redirect
from mediajobs.config import EngineSettings
from mediajobs.execution.errors import ProcessSpawnError
from mediajobs.execution.process import ProcessBackend, ProcessHandle, ResourceUsage, Signal
from mediajobs.jobs.manager import JobManager
from mediajobs.jobs.models import Job
from mediajobs.observability.metrics import InMemoryMetrics


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: tests that take more than a second")
    config.addinivalue_line("markers", "posix: tests that spawn real POSIX subprocesses")


def pytest_collection_modifyitems(config, items):
    if os.name == "posix":
        return
    skip_posix = pytest.mark.skip(reason="requires POSIX signals")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)


# =============================================================================
# Fake process backend
# =============================================================================

@dataclass
class FakeScript:
    """What one fake process does."""

    lines: List[str] = field(default_factory=list)
    exit_code: int = 0
    # Seconds until a natural exit; None runs until signalled
    duration: Optional[float] = 0.05
    line_interval: float = 0.0
    ignore_terminate: bool = False
    memory_mb: Optional[float] = None
    cpu_percent: float = 0.0


class FakeProcess(ProcessHandle):
    def __init__(self, pid: int, argv: List[str], script: FakeScript, env=None, cwd=None):
        self.pid = pid
        self.argv = argv
        self.env = env
        self.cwd = cwd
        self.script = script
        self.signals: List[Signal] = []
        self.stdin = None
        self.stdout = None
        self.closed = False
        self._started = time.monotonic()
        self._exited = threading.Event()
        self._exit_code: Optional[int] = None
        self._lock = threading.Lock()

    def _exit(self, code: int) -> None:
        with self._lock:
            if self._exit_code is None:
                self._exit_code = code
                self._exited.set()

    @property
    def stderr_lines(self):
        return self._play()

    def _play(self):
        for line in self.script.lines:
            if self.script.line_interval:
                self._exited.wait(self.script.line_interval)
            if self.poll() is not None and self._exit_code < 0:
                return
            yield line
        while self.poll() is None:
            self._exited.wait(0.01)

    def poll(self) -> Optional[int]:
        duration = self.script.duration
        if duration is not None and time.monotonic() - self._started >= duration:
            self._exit(self.script.exit_code)
        return self._exit_code

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.poll() is None:
            if deadline is not None and time.monotonic() >= deadline:
                return None
            self._exited.wait(0.005)
        return self._exit_code

    def signal(self, kind: Signal) -> bool:
        if self.poll() is not None:
            return False
        self.signals.append(kind)
        if kind == Signal.KILL:
            self._exit(-9)
        elif not self.script.ignore_terminate:
            self._exit(-15)
        return True

    def sample_usage(self) -> Optional[ResourceUsage]:
        if self.script.memory_mb is None:
            return None
        return ResourceUsage(memory_mb=self.script.memory_mb, cpu_percent=self.script.cpu_percent)

    def close(self) -> None:
        self.closed = True

    @property
    def alive(self) -> bool:
        return self.poll() is None


class FakeProcessBackend(ProcessBackend):
    """
    Scripted backend. `scripts` maps a marker (any argv element, usually
    the output path) to the FakeScript for processes whose argv has it.
    """

    def __init__(self, default: Optional[FakeScript] = None):
        self.default = default or FakeScript()
        self.scripts: Dict[str, FakeScript] = {}
        self.spawn_error: Optional[str] = None
        self.processes: List[FakeProcess] = []
        self.max_alive = 0
        self._pids = itertools.count(1000)
        self._lock = threading.Lock()

    def spawn(self, argv, *, stdin: Redirect, stdout: Redirect, env=None, cwd=None) -> FakeProcess:
        if self.spawn_error is not None:
            raise ProcessSpawnError(argv[0], self.spawn_error)

        script = next(
            (s for marker, s in self.scripts.items() if marker in argv), self.default
        )
        with self._lock:
            process = FakeProcess(next(self._pids), list(argv), script, env=env, cwd=cwd)
            self.processes.append(process)
            alive = sum(1 for p in self.processes if p.alive)
            self.max_alive = max(self.max_alive, alive)
        return process

    def processes_for(self, marker: str) -> List[FakeProcess]:
        with self._lock:
            return [p for p in self.processes if marker in p.argv]


class FakeProber:
    def __init__(self, duration: Optional[float] = 10.0):
        self.duration = duration
        self.calls: List[InputSpec] = []

    def probe_duration(self, source) -> Optional[float]:
        self.calls.append(source)
        return self.duration


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(
        temp_root=tmp_path / "scratch",
        max_concurrent=2,
        queue_capacity=16,
        grace_period_seconds=0.5,
        kill_wait_seconds=1.0,
        poll_interval_seconds=0.01,
        memory_budget_mb=100_000,
        cpu_budget_percent=10_000,
        max_memory_mb=None,
        verify_outputs=False,
    )


@pytest.fixture
def backend() -> FakeProcessBackend:
    return FakeProcessBackend()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def manager(settings, backend, prober, metrics):
    manager = JobManager(settings, backend=backend, prober=prober, metrics=metrics)
    yield manager
    manager.shutdown(grace_timeout=0.2)


@pytest.fixture
def source_file(tmp_path) -> Path:
    path = tmp_path / "source.mov"
    path.write_bytes(b"\x00" * 16)
    return path


@pytest.fixture
def make_job(tmp_path, source_file):
    """Job factory: one existing input, one output named after `name`."""

    def _make(name: str = "out", **kwargs) -> Job:
        output = OutputSpec(path=str(tmp_path / f"{name}.mp4"), video_codec="libx264")
        return Job(inputs=(InputSpec(path=str(source_file)),), outputs=(output,), **kwargs)

    return _make


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
