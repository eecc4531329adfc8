"""
Process capability interface.

Everything platform-specific about running a child process sits behind
two small abstractions:

    ProcessBackend.spawn(argv, stdin, stdout, env, cwd) -> ProcessHandle
    ProcessHandle.signal(kind) / wait(timeout) / sample_usage()

PopenProcessBackend implements them with subprocess.Popen and psutil.
Tests substitute an in-memory backend so scheduling logic can be
exercised without real processes.
"""

import contextlib
import io
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import IO, Any, Iterable, List, Mapping, Optional

import psutil

from ..commands.models import Redirect, StreamMode
from .errors import ProcessSpawnError

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


class Signal(str, Enum):
    """Signals the executor sends. TERMINATE is graceful, KILL is not."""

    TERMINATE = "terminate"  # SIGTERM on POSIX
    KILL = "kill"  # SIGKILL on POSIX


@dataclass(frozen=True)
class ResourceUsage:
    """One usage sample for a running process (children included)."""

    memory_mb: float
    cpu_percent: float
    sampled_at: datetime = field(default_factory=datetime.now)


class ProcessHandle(ABC):
    """A live (or finished) child process."""

    pid: int

    # Binary pipes, present only for PIPE redirects
    stdin: Optional[IO[bytes]] = None
    stdout: Optional[IO[bytes]] = None

    @property
    @abstractmethod
    def stderr_lines(self) -> Iterable[str]:
        """Diagnostic output, one line at a time; ends when the process closes stderr."""
        pass

    @abstractmethod
    def poll(self) -> Optional[int]:
        """Exit status if the process has exited, None otherwise."""
        pass

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for exit. Returns None if still running after `timeout`."""
        pass

    @abstractmethod
    def signal(self, kind: Signal) -> bool:
        """Deliver a signal. Returns False if the process already exited."""
        pass

    @abstractmethod
    def sample_usage(self) -> Optional[ResourceUsage]:
        """Current memory/CPU usage, or None if it cannot be read."""
        pass

    def close(self) -> None:
        """Release any pipes held by the parent."""
        pass


class ProcessBackend(ABC):
    @abstractmethod
    def spawn(
        self,
        argv: List[str],
        *,
        stdin: Redirect,
        stdout: Redirect,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        """
        Start a process from an argv list (never through a shell).

        Raises:
            ProcessSpawnError: If the executable is missing or cannot run
        """
        pass


class PopenProcessHandle(ProcessHandle):
    def __init__(self, process: subprocess.Popen):
        self._process = process
        self.pid = process.pid
        self.stdin = process.stdin
        self.stdout = process.stdout
        # Universal newlines: ffmpeg separates stats updates with '\r'
        self._stderr = (
            io.TextIOWrapper(process.stderr, encoding="utf-8", errors="replace", newline=None)
            if process.stderr is not None
            else None
        )
        try:
            self._ps: Optional[psutil.Process] = psutil.Process(process.pid)
            self._ps.cpu_percent(interval=None)  # prime the CPU counter
        except psutil.Error:
            self._ps = None

    @property
    def stderr_lines(self) -> Iterable[str]:
        if self._stderr is None:
            return iter(())
        return self._stderr

    def poll(self) -> Optional[int]:
        return self._process.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def signal(self, kind: Signal) -> bool:
        if self._process.poll() is not None:
            return False
        try:
            if kind == Signal.KILL:
                self._process.kill()
            else:
                self._process.terminate()
        except ProcessLookupError:
            return False
        return True

    def sample_usage(self) -> Optional[ResourceUsage]:
        if self._ps is None:
            return None
        try:
            memory = self._ps.memory_info().rss
            cpu = self._ps.cpu_percent(interval=None)
            for child in self._ps.children(recursive=True):
                with contextlib.suppress(psutil.Error):
                    memory += child.memory_info().rss
                    cpu += child.cpu_percent(interval=None)
        except psutil.Error:
            return None
        return ResourceUsage(memory_mb=memory / _MB, cpu_percent=cpu)

    def close(self) -> None:
        for stream in (self._stderr, self._process.stdin, self._process.stdout):
            if stream is not None:
                with contextlib.suppress(OSError, ValueError):
                    stream.close()


class PopenProcessBackend(ProcessBackend):
    """subprocess.Popen + psutil implementation."""

    def spawn(
        self,
        argv: List[str],
        *,
        stdin: Redirect,
        stdout: Redirect,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        opened: List[IO[Any]] = []
        try:
            stdin_arg = _stdin_arg(stdin, opened)
            stdout_arg = _stdout_arg(stdout, opened)
            process = subprocess.Popen(
                argv,
                stdin=stdin_arg,
                stdout=stdout_arg,
                stderr=subprocess.PIPE,
                env=dict(env) if env is not None else None,
                cwd=cwd,
                shell=False,
            )
        except FileNotFoundError as e:
            # Either the executable or a redirect file is missing
            missing = e.filename or argv[0]
            raise ProcessSpawnError(argv[0], f"not found: {missing}") from e
        except PermissionError as e:
            raise ProcessSpawnError(argv[0], f"permission denied: {e.filename or argv[0]}") from e
        except OSError as e:
            raise ProcessSpawnError(argv[0], str(e)) from e
        finally:
            # The child holds its own copies of redirected file descriptors
            for handle in opened:
                handle.close()

        logger.debug(f"[Process] Spawned PID {process.pid}")
        return PopenProcessHandle(process)


def _stdin_arg(redirect: Redirect, opened: List[IO[Any]]):
    if redirect.mode == StreamMode.FILE:
        handle = open(redirect.path, "rb")
        opened.append(handle)
        return handle
    if redirect.mode == StreamMode.PIPE:
        return subprocess.PIPE
    if redirect.mode == StreamMode.INHERIT:
        return None
    return subprocess.DEVNULL


def _stdout_arg(redirect: Redirect, opened: List[IO[Any]]):
    if redirect.mode == StreamMode.FILE:
        handle = open(redirect.path, "wb")
        opened.append(handle)
        return handle
    if redirect.mode == StreamMode.PIPE:
        return subprocess.PIPE
    if redirect.mode == StreamMode.INHERIT:
        return None
    return subprocess.DEVNULL
