"""
Job manager: the top-level orchestrator.

Queueing, admission control, concurrency limiting, lifecycle tracking
and cancellation for many jobs multiplexed over `max_concurrent` worker
slots, one OS process each.

Design rules:
- submit(), status() and cancel() never block on process I/O
- The active count and the queue are the only shared mutable state and
  are only touched under one lock
- Dispatch {increment, dequeue, hand off} and completion {decrement,
  finalize, promote} each happen under that lock as one step
- A job's process is waited on in the job's own worker thread, never
  while holding the lock
- Validation errors are raised synchronously and never enter the queue;
  everything that fails later is stored on the record
- Scratch cleanup is attempted before a terminal status becomes visible
"""

import logging
import os
import threading
import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..commands.builder import CommandBuilder
from ..commands.errors import ValidationError
from ..commands.models import StreamMode
from ..config import EngineSettings
from ..execution.channel import BoundedChannel
from ..execution.diagnostics import JobStats, parse_stats
from ..execution.errors import InputNotFoundError, JobCancelledError, OutputVerificationError
from ..execution.executor import ExecutionOutcome, OutcomeKind, ProcessExecutor
from ..execution.process import ProcessBackend
from ..execution.progress import Progress, ProgressTracker
from ..metadata.probe import FFProbe
from ..observability.metrics import MetricsSink, NullMetrics
from ..resources.governor import AdmissionDecision, ResourceEstimate, ResourceGovernor
from ..resources.tempfiles import TempFileManager
from .errors import JobNotFoundError, ManagerShutdownError, QueueFullError
from .models import Job, JobRecord, JobSnapshot, JobStatus
from .queue import DeferBackoff, FifoJobQueue, JobQueue, NoBackoff
from .state import is_job_terminal, validate_job_transition

logger = logging.getLogger(__name__)

_OUTCOME_STATUS = {
    OutcomeKind.TIMED_OUT: JobStatus.TIMED_OUT,
    OutcomeKind.CANCELLED: JobStatus.CANCELLED,
}


class JobManager:
    """
    Usage:
        manager = JobManager(EngineSettings(max_concurrent=2))
        job_id = manager.submit(Job(inputs=[...], outputs=[...]))
        for progress in manager.progress_stream(job_id):
            print(progress.percent)
        snapshot = manager.wait(job_id)
        manager.shutdown()

    Every collaborator can be injected; anything left out is built from
    `settings`.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        executor: Optional[ProcessExecutor] = None,
        backend: Optional[ProcessBackend] = None,
        prober=None,
        governor: Optional[ResourceGovernor] = None,
        temp_files: Optional[TempFileManager] = None,
        metrics: Optional[MetricsSink] = None,
        queue: Optional[JobQueue] = None,
        backoff: Optional[DeferBackoff] = None,
    ):
        self.settings = settings or EngineSettings()
        self.metrics = metrics or NullMetrics()
        self.executor = executor or ProcessExecutor(self.settings, backend, self.metrics)
        # Anything with probe_duration(input) -> Optional[float]
        self.prober = prober if prober is not None else FFProbe.from_settings(self.settings, self.metrics)
        self.governor = governor or ResourceGovernor.from_settings(self.settings)
        self.temp_files = temp_files or TempFileManager(self.settings.temp_root)

        self._queue = queue if queue is not None else FifoJobQueue()
        self._backoff = backoff or NoBackoff()

        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._records: Dict[str, JobRecord] = {}
        self._active = 0
        self._closed = False
        self._defer_attempts = 0
        self._retry_timer: Optional[threading.Timer] = None

    def __enter__(self) -> "JobManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # =========================================================================
    # Submission surface
    # =========================================================================

    def submit(self, job: Job) -> str:
        """
        Validate and enqueue a job.

        Returns:
            The new job's id

        Raises:
            ValidationError: The job cannot be turned into a Command
            QueueFullError: No free slot and the queue is at capacity
            ManagerShutdownError: shutdown() was already called
        """
        try:
            command = CommandBuilder.for_job(job, self.settings).build()
        except ValidationError:
            self.metrics.increment("jobs.rejected", tags={"reason": "validation"})
            raise

        estimate = job.resources or ResourceEstimate(
            memory_mb=self.settings.default_job_memory_mb,
            cpu_percent=self.settings.default_job_cpu_percent,
        )
        record = JobRecord(
            job=job,
            command=command,
            estimate=estimate,
            progress_channel=BoundedChannel(self.settings.progress_buffer_size),
        )

        with self._lock:
            if self._closed:
                self.metrics.increment("jobs.rejected", tags={"reason": "shutdown"})
                raise ManagerShutdownError()

            fits_now = (
                not self._queue
                and self._active < self.settings.max_concurrent
                and self.governor.check_available(estimate) == AdmissionDecision.ADMIT
            )
            if not fits_now and len(self._queue) >= self.settings.queue_capacity:
                self.metrics.increment("jobs.rejected", tags={"reason": "queue_full"})
                raise QueueFullError(self.settings.queue_capacity)

            record.queued_at = time.monotonic()
            self._records[record.id] = record
            self._queue.push(record.id, job.priority)
            self.metrics.increment("jobs.submitted")
            logger.info(f"[JobManager] Submitted job {record.id}")

            started = self._promote_locked()

        self._launch(started)
        return record.id

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job. Idempotent.

        PENDING jobs are removed from the queue and never spawn.
        RUNNING jobs go through terminate -> grace -> kill.

        Returns:
            False if the job is unknown or already terminal
        """
        return self._cancel(job_id, "Cancelled by user", None)

    def status(self, job_id: str) -> JobSnapshot:
        """
        Raises:
            JobNotFoundError: If the id is unknown
        """
        with self._lock:
            record = self._records.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            return record.snapshot()

    def list_jobs(self) -> List[JobSnapshot]:
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.created_at)
            return [record.snapshot() for record in records]

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobSnapshot:
        """
        Block until the job is terminal or `timeout` elapses.

        Returns the snapshot either way; check `is_terminal`.

        Raises:
            JobNotFoundError: If the id is unknown
        """
        with self._changed:
            record = self._records.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            self._changed.wait_for(lambda: is_job_terminal(record.status), timeout)
            return record.snapshot()

    def progress_stream(self, job_id: str) -> BoundedChannel[Progress]:
        """
        The job's progress events, oldest first.

        Single consumer; iteration ends once the job is terminal.
        Slow consumers lose the oldest buffered events, never the order.

        Raises:
            JobNotFoundError: If the id is unknown
        """
        with self._lock:
            record = self._records.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            return record.progress_channel

    def active_count(self) -> int:
        with self._lock:
            return self._active

    def queued_ids(self) -> List[str]:
        with self._lock:
            return self._queue.ids()

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def shutdown(self, grace_timeout: Optional[float] = None) -> bool:
        """
        Stop admitting, cancel everything, wait for terminal states.

        Pending jobs are cancelled without spawning. Running jobs are
        cancelled with `grace_timeout` as their grace period.

        Returns:
            True if every job is terminal, False if the wait timed out
        """
        grace = self.settings.grace_period_seconds if grace_timeout is None else grace_timeout

        with self._lock:
            already_closed = self._closed
            self._closed = True
            if self._retry_timer is not None:
                self._retry_timer.cancel()
                self._retry_timer = None
            pending = self._queue.ids()
            running = [r.id for r in self._records.values() if r.status == JobStatus.RUNNING]

        if not already_closed:
            logger.info(
                f"[JobManager] Shutting down: {len(pending)} pending, {len(running)} running"
            )

        for job_id in pending + running:
            self._cancel(job_id, "Job manager shutting down", grace, tighten=True)

        deadline = time.monotonic() + grace + self.settings.kill_wait_seconds
        with self._changed:
            done = self._changed.wait_for(
                lambda: all(is_job_terminal(r.status) for r in self._records.values()),
                max(0.0, deadline - time.monotonic()),
            )

        if not done:
            logger.warning("[JobManager] Shutdown timed out with jobs still running")
        return done

    # =========================================================================
    # Admission
    # =========================================================================

    def _promote_locked(self) -> List[JobRecord]:
        """
        Move queued jobs to RUNNING while a slot is free and the governor admits.

        Head-of-line: stops at the first deferred job. Caller launches the
        returned records after releasing the lock.
        """
        started: List[JobRecord] = []

        while not self._closed and self._queue and self._active < self.settings.max_concurrent:
            job_id = self._queue.peek()
            record = self._records[job_id]

            if self.governor.try_allocate(job_id, record.estimate) == AdmissionDecision.DEFER:
                self._schedule_retry_locked()
                break

            self._queue.pop()
            validate_job_transition(record.status, JobStatus.RUNNING)
            record.status = JobStatus.RUNNING
            record.started_at = datetime.now()
            self._active += 1
            self._defer_attempts = 0

            self.metrics.increment("jobs.dispatched")
            self.metrics.histogram("jobs.queue_wait_seconds", time.monotonic() - record.queued_at)
            logger.info(f"[JobManager] Dispatching job {job_id} ({self._active} running)")
            started.append(record)

        self._update_gauges_locked()
        return started

    def _schedule_retry_locked(self) -> None:
        self._defer_attempts += 1
        delay = self._backoff.next_delay(self._defer_attempts)
        if delay is None or self._retry_timer is not None:
            return
        logger.debug(f"[JobManager] Head job deferred, re-evaluating in {delay:g}s")
        timer = threading.Timer(delay, self._retry_deferred)
        timer.daemon = True
        self._retry_timer = timer
        timer.start()

    def _retry_deferred(self) -> None:
        with self._lock:
            self._retry_timer = None
            started = self._promote_locked()
        self._launch(started)

    def _update_gauges_locked(self) -> None:
        self.metrics.gauge("jobs.active", self._active)
        self.metrics.gauge("jobs.queue_depth", len(self._queue))

    def _launch(self, records: List[JobRecord]) -> None:
        for record in records:
            thread = threading.Thread(
                target=self._run_job, args=(record,), name=f"job-{record.id}", daemon=True
            )
            thread.start()

    # =========================================================================
    # Cancellation
    # =========================================================================

    def _cancel(
        self, job_id: str, reason: str, grace: Optional[float], tighten: bool = False
    ) -> bool:
        """
        First request wins. With `tighten`, a repeated request may still
        shorten the grace period of a job that is already being cancelled.
        """
        with self._lock:
            record = self._records.get(job_id)
            if record is None or is_job_terminal(record.status):
                return False

            if record.cancel_requested:
                if not (tighten and self._shortens_grace(record, grace)):
                    return False
                record.cancel_grace = grace
            else:
                record.cancel_requested = True
                record.cancel_reason = reason
                record.cancel_grace = grace
                # Wakes a worker blocked on the probe
                self._changed.notify_all()

            if record.status == JobStatus.PENDING:
                self._queue.remove(job_id)
                validate_job_transition(record.status, JobStatus.CANCELLED)
                record.status = JobStatus.CANCELLED
                record.completed_at = datetime.now()
                record.error = JobCancelledError(reason)
                record.progress_channel.close()
                self.metrics.increment("jobs.completed", tags={"status": JobStatus.CANCELLED.value})
                logger.info(f"[JobManager] Cancelled pending job {job_id}")
                # Removing the head may unblock the jobs behind it
                started = self._promote_locked()
                self._changed.notify_all()
                handle = None
            else:
                started = []
                handle = record.handle

        self._launch(started)
        if handle is not None:
            handle.cancel(record.cancel_reason, record.cancel_grace)
        return True

    def _shortens_grace(self, record: JobRecord, grace: Optional[float]) -> bool:
        if grace is None:
            return False
        current = record.cancel_grace
        if current is None:
            current = self.settings.grace_period_seconds
        return grace < current

    # =========================================================================
    # Worker
    # =========================================================================

    def _run_job(self, record: JobRecord) -> None:
        status: Optional[JobStatus] = None
        error: Optional[Exception] = None
        stats: Optional[JobStats] = None

        try:
            status, error, stats = self._execute(record)
        except Exception as e:
            logger.exception(f"[JobManager] Job {record.id} crashed in its worker")
            status, error = JobStatus.FAILED, e
        finally:
            # Cleanup first: terminal status must not be visible before this
            self.temp_files.cleanup(record.id)
            self.governor.release(record.id)
            self._finalize(record, status or JobStatus.FAILED, error, stats)

    def _execute(
        self, record: JobRecord
    ) -> Tuple[JobStatus, Optional[Exception], Optional[JobStats]]:
        command = record.command

        with self._lock:
            if record.cancel_requested:
                return JobStatus.CANCELLED, JobCancelledError(record.cancel_reason), None

        scratch = self.temp_files.create_scratch_dir(record.id)

        required = list(command.input_files)
        if command.stdin.mode == StreamMode.FILE and command.stdin.path:
            required.append(command.stdin.path)
        for path in required:
            if not os.path.exists(path):
                logger.warning(f"[JobManager] Job {record.id}: input missing: {path}")
                return JobStatus.FAILED, InputNotFoundError(path), None

        duration = self._probe_duration(record)

        with self._lock:
            if record.cancel_requested:
                return JobStatus.CANCELLED, JobCancelledError(record.cancel_reason), None

        timeout = record.job.timeout_seconds
        if timeout is None:
            timeout = self.settings.default_timeout_seconds

        handle = self.executor.spawn(
            command,
            job_id=record.id,
            timeout=timeout,
            cwd=str(scratch),
            env=self._child_env(scratch),
            on_usage=lambda usage: self.governor.record_usage(record.id, usage),
        )

        with self._lock:
            record.handle = handle
            record.pid = handle.pid
            cancel_now = record.cancel_requested
        if cancel_now:
            handle.cancel(record.cancel_reason, record.cancel_grace)

        tracker = ProgressTracker(duration)
        tracker.consume(handle.diagnostics, on_progress=lambda p: self._publish(record, p))

        outcome = handle.wait()
        return self._map_outcome(record, outcome)

    def _probe_duration(self, record: JobRecord) -> Optional[float]:
        """
        Probe the first addressable input on a helper thread.

        Returns early (None) once the job is cancelled; the probe thread
        is abandoned and ends on its own timeout.
        """
        spec = next((s for s in record.job.inputs if s.location), None)
        if spec is None:
            return None

        result: Dict[str, Optional[float]] = {}

        def probe() -> None:
            duration = None
            try:
                duration = self.prober.probe_duration(spec)
            except Exception:
                logger.exception(f"[JobManager] Probe for job {record.id} failed")
            with self._changed:
                result["duration"] = duration
                self._changed.notify_all()

        threading.Thread(target=probe, name=f"probe-{record.id}", daemon=True).start()

        with self._changed:
            self._changed.wait_for(lambda: "duration" in result or record.cancel_requested)
            return result.get("duration")

    @staticmethod
    def _child_env(scratch) -> Dict[str, str]:
        env = dict(os.environ)
        for name in ("TMPDIR", "TMP", "TEMP"):
            env[name] = str(scratch)
        return env

    def _publish(self, record: JobRecord, progress: Progress) -> None:
        with self._lock:
            record.progress = progress
        record.progress_channel.put(progress)

    def _map_outcome(
        self, record: JobRecord, outcome: ExecutionOutcome
    ) -> Tuple[JobStatus, Optional[Exception], Optional[JobStats]]:
        if outcome.succeeded:
            if self.settings.verify_outputs:
                for path in record.command.output_files:
                    if not os.path.exists(path):
                        return JobStatus.FAILED, OutputVerificationError(path), None
            return JobStatus.COMPLETED, None, parse_stats(outcome.diagnostic_tail)

        return _OUTCOME_STATUS.get(outcome.kind, JobStatus.FAILED), outcome.error, None

    def _finalize(
        self,
        record: JobRecord,
        status: JobStatus,
        error: Optional[Exception],
        stats: Optional[JobStats],
    ) -> None:
        with self._lock:
            validate_job_transition(record.status, status)
            record.status = status
            record.completed_at = datetime.now()
            record.error = error
            record.stats = stats
            record.handle = None
            self._active -= 1

            self.metrics.increment("jobs.completed", tags={"status": status.value})
            if record.started_at is not None:
                self.metrics.histogram(
                    "jobs.duration_seconds",
                    (record.completed_at - record.started_at).total_seconds(),
                )
            record.progress_channel.close()

            started = self._promote_locked()
            self._changed.notify_all()

        if status == JobStatus.COMPLETED:
            logger.info(f"[JobManager] Job {record.id} completed")
        else:
            logger.warning(f"[JobManager] Job {record.id} {status.value}: {error}")

        self._launch(started)
