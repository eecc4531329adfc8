"""
Process executor.

Spawns, monitors, signals and reaps ONE OS process per job.

Design rules:
- argv only, never a shell
- One supervisor thread per process owns the wait loop; nobody else waits
- Timeout and cancel share one escalation: terminate -> grace -> kill
- The timeout clock starts at spawn, not at submit
- A hard memory/CPU ceiling kills immediately (no grace)
- The registry entry is removed on every exit path (try/finally)
- Runtime failures come back as an ExecutionOutcome, never as a raise
"""

import logging
import signal as signal_module
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, TYPE_CHECKING, Callable, Deque, Dict, List, Mapping, Optional

from ..commands.models import Command, StreamMode
from .channel import BoundedChannel
from .diagnostics import classify_failure
from .errors import (
    ExecutionError,
    JobCancelledError,
    JobTimeoutError,
    ProcessExitError,
    ProcessSpawnError,
    ResourceExceededError,
)
from .process import PopenProcessBackend, ProcessBackend, ProcessHandle, ResourceUsage, Signal

if TYPE_CHECKING:
    from ..config import EngineSettings
    from ..observability.metrics import MetricsSink

logger = logging.getLogger(__name__)

# psutil CPU percentages are meaningless over very short windows
USAGE_SAMPLE_INTERVAL = 0.5

_COPY_CHUNK = 64 * 1024


class OutcomeKind(str, Enum):
    EXITED = "exited"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    RESOURCE_EXCEEDED = "resource_exceeded"
    SPAWN_FAILED = "spawn_failed"


@dataclass(frozen=True)
class ExecutionOutcome:
    """How a process ended. `error` is None only for a clean zero exit."""

    kind: OutcomeKind
    exit_code: Optional[int] = None
    signal_name: Optional[str] = None
    error: Optional[ExecutionError] = None
    diagnostic_tail: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    peak_memory_mb: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.EXITED and self.exit_code == 0


def _signal_name(exit_code: int) -> Optional[str]:
    """POSIX returncodes are -N when the process died from signal N."""
    if exit_code >= 0:
        return None
    try:
        return signal_module.Signals(-exit_code).name
    except ValueError:
        return f"signal {-exit_code}"


class ExecutionHandle:
    """
    Live view of one spawned process.

    Exposes the pid, a completion signal (`done` / `wait()`), and the
    raw diagnostic line stream (`diagnostics`). Created only by
    ProcessExecutor.spawn().
    """

    def __init__(
        self,
        job_id: str,
        command: Command,
        settings: "EngineSettings",
        timeout: Optional[float],
        metrics: Optional["MetricsSink"],
        on_usage: Optional[Callable[[ResourceUsage], None]],
        on_finish: Callable[["ExecutionHandle"], None],
    ):
        self.job_id = job_id
        self.command = command
        self.timeout = timeout
        self.pid: Optional[int] = None
        self.diagnostics: BoundedChannel[str] = BoundedChannel(settings.progress_buffer_size)
        self.done = threading.Event()
        self.latest_usage: Optional[ResourceUsage] = None

        self._settings = settings
        self._metrics = metrics
        self._on_usage = on_usage
        self._on_finish = on_finish

        self._lock = threading.Lock()
        self._tail: Deque[str] = deque(maxlen=settings.diagnostic_tail_lines)
        self._cancel_reason: Optional[str] = None
        self._cancel_grace: Optional[float] = None
        self._outcome: Optional[ExecutionOutcome] = None
        self._process: Optional[ProcessHandle] = None
        self._threads: List[threading.Thread] = []
        self._started = time.monotonic()
        self._peak_memory: Optional[float] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def outcome(self) -> Optional[ExecutionOutcome]:
        return self._outcome

    def cancel(self, reason: str = "Cancelled by user", grace: Optional[float] = None) -> bool:
        """
        Request termination. Idempotent: the first request wins, except
        that a later request may shorten the grace period, even while the
        process is already being terminated.

        Returns:
            True if the process was still running when asked
        """
        with self._lock:
            if self.done.is_set():
                return False
            if self._cancel_reason is None:
                self._cancel_reason = reason
                self._cancel_grace = grace
            elif grace is not None and grace < self._effective_grace_locked():
                self._cancel_grace = grace
        return True

    def _effective_grace_locked(self) -> float:
        if self._cancel_grace is None:
            return self._settings.grace_period_seconds
        return self._cancel_grace

    def wait(self, timeout: Optional[float] = None) -> Optional[ExecutionOutcome]:
        """Block until the process has been reaped. None if `timeout` elapsed first."""
        if not self.done.wait(timeout):
            return None
        return self._outcome

    def tail(self) -> List[str]:
        with self._lock:
            return list(self._tail)

    # -------------------------------------------------------------------------
    # Lifecycle (driven by ProcessExecutor)
    # -------------------------------------------------------------------------

    def _fail_spawn(self, error: ProcessSpawnError) -> None:
        self.diagnostics.close()
        self._finish(ExecutionOutcome(kind=OutcomeKind.SPAWN_FAILED, error=error))

    def _start(self, process: ProcessHandle) -> None:
        self._process = process
        self.pid = process.pid
        self._started = time.monotonic()

        self._spawn_thread(self._read_diagnostics, "diag")
        if self.command.stdin.mode == StreamMode.PIPE and process.stdin is not None:
            self._spawn_thread(self._feed_stdin, "stdin")
        if self.command.stdout.mode == StreamMode.PIPE and process.stdout is not None:
            self._spawn_thread(self._drain_stdout, "stdout")

        supervisor = threading.Thread(
            target=self._supervise, name=f"exec-{self.job_id}", daemon=True
        )
        supervisor.start()

    def _spawn_thread(self, target: Callable[[], None], label: str) -> None:
        thread = threading.Thread(target=target, name=f"exec-{self.job_id}-{label}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def _read_diagnostics(self) -> None:
        try:
            for line in self._process.stderr_lines:
                line = line.rstrip("\r\n")
                if not line:
                    continue
                with self._lock:
                    self._tail.append(line)
                self.diagnostics.put(line)
        except (OSError, ValueError) as e:
            # Pipe closed underneath us after a kill
            logger.debug(f"[Executor] Diagnostic stream for job {self.job_id} ended: {e}")
        finally:
            self.diagnostics.close()

    def _feed_stdin(self) -> None:
        source: IO[bytes] = self.command.stdin.stream
        sink = self._process.stdin
        try:
            while True:
                chunk = source.read(_COPY_CHUNK)
                if not chunk:
                    break
                sink.write(chunk)
        except (BrokenPipeError, ValueError, OSError) as e:
            logger.debug(f"[Executor] stdin feed for job {self.job_id} stopped: {e}")
        finally:
            try:
                sink.close()
            except OSError:
                pass

    def _drain_stdout(self) -> None:
        sink: IO[bytes] = self.command.stdout.stream
        source = self._process.stdout
        try:
            while True:
                chunk = source.read(_COPY_CHUNK)
                if not chunk:
                    break
                sink.write(chunk)
        except (ValueError, OSError) as e:
            logger.debug(f"[Executor] stdout drain for job {self.job_id} stopped: {e}")

    def _supervise(self) -> None:
        process = self._process
        settings = self._settings
        deadline = self._started + self.timeout if self.timeout else None
        stop_kind: Optional[OutcomeKind] = None
        stop_error: Optional[ExecutionError] = None
        next_sample = self._started
        outcome: Optional[ExecutionOutcome] = None

        try:
            while True:
                exit_code = process.wait(timeout=settings.poll_interval_seconds)
                if exit_code is not None:
                    break

                now = time.monotonic()
                with self._lock:
                    cancel_reason, cancel_grace = self._cancel_reason, self._cancel_grace

                if cancel_reason is not None:
                    stop_kind = OutcomeKind.CANCELLED
                    stop_error = JobCancelledError(cancel_reason)
                    grace = settings.grace_period_seconds if cancel_grace is None else cancel_grace
                    logger.info(f"[Executor] Cancelling job {self.job_id} (PID {self.pid})")
                    exit_code = self._escalate(grace)
                    break

                if deadline is not None and now >= deadline:
                    stop_kind = OutcomeKind.TIMED_OUT
                    stop_error = JobTimeoutError(self.timeout)
                    logger.warning(
                        f"[Executor] Job {self.job_id} (PID {self.pid}) exceeded {self.timeout:g}s timeout"
                    )
                    self._count("jobs.timeouts")
                    exit_code = self._escalate(settings.grace_period_seconds)
                    break

                if now >= next_sample:
                    next_sample = now + max(settings.poll_interval_seconds, USAGE_SAMPLE_INTERVAL)
                    exceeded = self._sample_usage()
                    if exceeded is not None:
                        stop_kind = OutcomeKind.RESOURCE_EXCEEDED
                        stop_error = exceeded
                        logger.warning(f"[Executor] Job {self.job_id} (PID {self.pid}): {exceeded}")
                        self._count("jobs.resource_kills")
                        exit_code = self._kill()
                        break

            self._join_io()
            outcome = self._build_outcome(exit_code, stop_kind, stop_error)

        except Exception as e:
            logger.exception(f"[Executor] Supervisor for job {self.job_id} failed")
            self._kill()
            outcome = ExecutionOutcome(
                kind=OutcomeKind.EXITED,
                exit_code=-1,
                error=ExecutionError(f"Process supervision failed: {e}"),
                diagnostic_tail=self.tail(),
                duration_seconds=time.monotonic() - self._started,
            )

        finally:
            self.diagnostics.close()
            process.close()
            if outcome is None:
                outcome = ExecutionOutcome(
                    kind=OutcomeKind.EXITED,
                    exit_code=-1,
                    error=ExecutionError("Process supervision aborted"),
                )
            self._finish(outcome)

    def _escalate(self, grace: float) -> Optional[int]:
        """
        terminate -> wait(grace) -> kill -> wait

        A cancel arriving during the wait can only shorten the grace.
        """
        process = self._process
        signalled = time.monotonic()
        deadline = signalled + grace
        process.signal(Signal.TERMINATE)

        while True:
            with self._lock:
                if self._cancel_reason is not None:
                    deadline = min(deadline, signalled + self._effective_grace_locked())
            remaining = deadline - time.monotonic()
            exit_code = process.wait(
                timeout=max(0.0, min(remaining, self._settings.poll_interval_seconds))
            )
            if exit_code is not None:
                return exit_code
            if remaining <= 0:
                break

        logger.warning(
            f"[Executor] PID {self.pid} ignored terminate for {grace:g}s, killing"
        )
        return self._kill()

    def _kill(self) -> Optional[int]:
        process = self._process
        if process is None:
            return None
        process.signal(Signal.KILL)
        exit_code = process.wait(timeout=self._settings.kill_wait_seconds)
        if exit_code is None:
            logger.error(f"[Executor] PID {self.pid} still alive after kill, waiting")
            exit_code = process.wait()
        return exit_code

    def _sample_usage(self) -> Optional[ResourceExceededError]:
        usage = self._process.sample_usage()
        if usage is None:
            return None

        self.latest_usage = usage
        if self._peak_memory is None or usage.memory_mb > self._peak_memory:
            self._peak_memory = usage.memory_mb
        if self._on_usage is not None:
            self._on_usage(usage)

        settings = self._settings
        if settings.max_memory_mb is not None and usage.memory_mb > settings.max_memory_mb:
            return ResourceExceededError("memory_mb", usage.memory_mb, settings.max_memory_mb)
        if settings.max_cpu_percent is not None and usage.cpu_percent > settings.max_cpu_percent:
            return ResourceExceededError("cpu_percent", usage.cpu_percent, settings.max_cpu_percent)
        return None

    def _join_io(self) -> None:
        # A grandchild holding stderr open must not hang the supervisor
        for thread in self._threads:
            thread.join(timeout=self._settings.kill_wait_seconds)
            if thread.is_alive():
                logger.warning(f"[Executor] {thread.name} did not finish after process exit")

    def _build_outcome(
        self,
        exit_code: Optional[int],
        stop_kind: Optional[OutcomeKind],
        stop_error: Optional[ExecutionError],
    ) -> ExecutionOutcome:
        tail = self.tail()
        duration = time.monotonic() - self._started
        signal_name = _signal_name(exit_code) if exit_code is not None else None

        if stop_kind is not None:
            kind, error = stop_kind, stop_error
        elif exit_code is not None and exit_code < 0:
            kind = OutcomeKind.SIGNALED
            error = ProcessExitError(
                exit_code, tail, signal_name=signal_name,
                failure_type=classify_failure(tail).value,
            )
        elif exit_code == 0:
            kind, error = OutcomeKind.EXITED, None
        else:
            kind = OutcomeKind.EXITED
            error = ProcessExitError(
                exit_code if exit_code is not None else -1, tail,
                failure_type=classify_failure(tail).value,
            )

        return ExecutionOutcome(
            kind=kind,
            exit_code=exit_code,
            signal_name=signal_name,
            error=error,
            diagnostic_tail=tail,
            duration_seconds=duration,
            peak_memory_mb=self._peak_memory,
        )

    def _finish(self, outcome: ExecutionOutcome) -> None:
        try:
            self._on_finish(self)
        finally:
            with self._lock:
                self._outcome = outcome
            self.done.set()

    def _count(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(name)


class ProcessExecutor:
    """
    Spawns processes and keeps the registry of the ones still alive.

    Usage:
        executor = ProcessExecutor(settings)
        handle = executor.spawn(command, job_id="abc", timeout=60.0)
        for line in handle.diagnostics:
            ...
        outcome = handle.wait()
    """

    def __init__(
        self,
        settings: "EngineSettings",
        backend: Optional[ProcessBackend] = None,
        metrics: Optional["MetricsSink"] = None,
    ):
        self.settings = settings
        self.backend = backend or PopenProcessBackend()
        self.metrics = metrics
        self._lock = threading.Lock()
        self._active: Dict[str, ExecutionHandle] = {}

    def spawn(
        self,
        command: Command,
        job_id: str,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        on_usage: Optional[Callable[[ResourceUsage], None]] = None,
    ) -> ExecutionHandle:
        """
        Start `command` for `job_id`.

        Never raises for runtime failures: a spawn failure yields a handle
        that is already done with a SPAWN_FAILED outcome.

        Raises:
            ValueError: If `job_id` already has a live process
        """
        handle = ExecutionHandle(
            job_id=job_id,
            command=command,
            settings=self.settings,
            timeout=timeout,
            metrics=self.metrics,
            on_usage=on_usage,
            on_finish=self._evict,
        )

        with self._lock:
            if job_id in self._active:
                raise ValueError(f"Job {job_id} already has a running process")
            self._active[job_id] = handle

        started = False
        try:
            process = self.backend.spawn(
                command.argv,
                stdin=command.stdin,
                stdout=command.stdout,
                env=env,
                cwd=cwd,
            )
            logger.info(f"[Executor] Job {job_id} spawned PID {process.pid}: {command.display()}")
            handle._start(process)
            started = True
        except ProcessSpawnError as e:
            logger.error(f"[Executor] Job {job_id} failed to spawn: {e}")
            handle._fail_spawn(e)
        finally:
            if not started:
                self._evict(handle)

        return handle

    def _evict(self, handle: ExecutionHandle) -> None:
        with self._lock:
            if self._active.get(handle.job_id) is handle:
                del self._active[handle.job_id]

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def active_pids(self) -> List[int]:
        with self._lock:
            return [h.pid for h in self._active.values() if h.pid is not None]

    def get(self, job_id: str) -> Optional[ExecutionHandle]:
        with self._lock:
            return self._active.get(job_id)

    def cancel_all(self, reason: str = "Executor shutting down", grace: Optional[float] = None) -> int:
        """Ask every live process to stop. Returns how many were asked."""
        with self._lock:
            handles = list(self._active.values())
        return sum(1 for handle in handles if handle.cancel(reason, grace))
