"""
Tests for job state transitions and pending-job queues.

Terminal states are immutable: once a job is COMPLETED, FAILED,
TIMED_OUT or CANCELLED nothing may move it again.
"""

import pytest

from mediajobs.jobs import (
    TERMINAL_JOB_STATES,
    ExponentialBackoff,
    FifoJobQueue,
    InvalidStateTransitionError,
    JobStatus,
    NoBackoff,
    PriorityJobQueue,
    can_transition_job,
    is_job_terminal,
    validate_job_transition,
)


# =============================================================================
# State transitions
# =============================================================================

class TestJobTransitions:
    def test_terminal_states(self):
        assert TERMINAL_JOB_STATES == {
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.TIMED_OUT,
            JobStatus.CANCELLED,
        }
        assert not is_job_terminal(JobStatus.PENDING)
        assert not is_job_terminal(JobStatus.RUNNING)

    @pytest.mark.parametrize("target", [
        JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT, JobStatus.CANCELLED,
    ])
    def test_running_can_finish_any_way(self, target):
        assert can_transition_job(JobStatus.RUNNING, target)

    def test_pending_can_start_or_cancel(self):
        assert can_transition_job(JobStatus.PENDING, JobStatus.RUNNING)
        assert can_transition_job(JobStatus.PENDING, JobStatus.CANCELLED)

    def test_pending_cannot_complete_without_running(self):
        assert not can_transition_job(JobStatus.PENDING, JobStatus.COMPLETED)
        assert not can_transition_job(JobStatus.PENDING, JobStatus.TIMED_OUT)

    def test_running_cannot_go_back_to_pending(self):
        assert not can_transition_job(JobStatus.RUNNING, JobStatus.PENDING)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_JOB_STATES, key=lambda s: s.value))
    def test_terminal_states_are_immutable(self, terminal):
        """
        GIVEN: A job in a terminal state
        WHEN: Any transition is attempted, including to itself
        THEN: It is refused
        """
        for target in JobStatus:
            assert not can_transition_job(terminal, target)

    def test_validate_raises_with_states(self):
        with pytest.raises(InvalidStateTransitionError) as excinfo:
            validate_job_transition(JobStatus.COMPLETED, JobStatus.RUNNING)
        assert excinfo.value.current_state == "completed"
        assert excinfo.value.target_state == "running"


# =============================================================================
# Queues
# =============================================================================

class TestFifoJobQueue:
    def test_submission_order(self):
        queue = FifoJobQueue()
        for job_id, priority in (("a", 0), ("b", 9), ("c", 0)):
            queue.push(job_id, priority)

        assert queue.ids() == ["a", "b", "c"]
        assert queue.peek() == "a"
        assert queue.pop() == "a"
        assert len(queue) == 2

    def test_remove_from_middle(self):
        queue = FifoJobQueue()
        for job_id in "abc":
            queue.push(job_id)
        assert queue.remove("b") is True
        assert queue.remove("b") is False
        assert queue.ids() == ["a", "c"]

    def test_empty(self):
        queue = FifoJobQueue()
        assert queue.peek() is None
        assert queue.pop() is None
        assert not queue


class TestPriorityJobQueue:
    def test_higher_priority_first_fifo_within_priority(self):
        queue = PriorityJobQueue()
        queue.push("low-1", 0)
        queue.push("high-1", 5)
        queue.push("low-2", 0)
        queue.push("high-2", 5)

        assert queue.ids() == ["high-1", "high-2", "low-1", "low-2"]
        assert [queue.pop() for _ in range(4)] == ["high-1", "high-2", "low-1", "low-2"]
        assert queue.pop() is None

    def test_remove(self):
        queue = PriorityJobQueue()
        queue.push("a", 1)
        queue.push("b", 2)
        assert queue.remove("a") is True
        assert queue.ids() == ["b"]


class TestBackoff:
    def test_no_backoff(self):
        assert NoBackoff().next_delay(1) is None

    def test_exponential_is_capped(self):
        backoff = ExponentialBackoff(initial=0.5, factor=2.0, maximum=3.0)
        assert [backoff.next_delay(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            ExponentialBackoff(initial=0)
        with pytest.raises(ValueError):
            ExponentialBackoff(initial=5, maximum=1)
