"""
Pending-job ordering and defer backoff.

Queues hold job ids only; JobManager owns the records and guards every
queue call with its own lock, so these classes are not thread-safe on
their own.

Dispatch is head-of-line: when the governor defers the head job,
nothing behind it is started. That keeps FIFO order strict and stops
small jobs from starving a large one.
"""

import bisect
import itertools
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, List, Optional, Tuple


class JobQueue(ABC):
    @abstractmethod
    def push(self, job_id: str, priority: int = 0) -> None:
        pass

    @abstractmethod
    def peek(self) -> Optional[str]:
        """Next job id to dispatch, without removing it."""
        pass

    @abstractmethod
    def pop(self) -> Optional[str]:
        pass

    @abstractmethod
    def remove(self, job_id: str) -> bool:
        """Drop a job from anywhere in the queue. False if absent."""
        pass

    @abstractmethod
    def ids(self) -> List[str]:
        """Job ids in dispatch order."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class FifoJobQueue(JobQueue):
    """Submission order. Priority is ignored."""

    def __init__(self):
        self._items: Deque[str] = deque()

    def push(self, job_id: str, priority: int = 0) -> None:
        self._items.append(job_id)

    def peek(self) -> Optional[str]:
        return self._items[0] if self._items else None

    def pop(self) -> Optional[str]:
        return self._items.popleft() if self._items else None

    def remove(self, job_id: str) -> bool:
        try:
            self._items.remove(job_id)
        except ValueError:
            return False
        return True

    def ids(self) -> List[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class PriorityJobQueue(JobQueue):
    """Higher priority first; FIFO among equal priorities."""

    def __init__(self):
        self._items: List[Tuple[int, int, str]] = []
        self._sequence = itertools.count()

    def push(self, job_id: str, priority: int = 0) -> None:
        bisect.insort(self._items, (-priority, next(self._sequence), job_id))

    def peek(self) -> Optional[str]:
        return self._items[0][2] if self._items else None

    def pop(self) -> Optional[str]:
        return self._items.pop(0)[2] if self._items else None

    def remove(self, job_id: str) -> bool:
        for index, item in enumerate(self._items):
            if item[2] == job_id:
                del self._items[index]
                return True
        return False

    def ids(self) -> List[str]:
        return [item[2] for item in self._items]

    def __len__(self) -> int:
        return len(self._items)


# =============================================================================
# Defer backoff
# =============================================================================

class DeferBackoff(ABC):
    """
    When the governor defers the head job, how long until we look again?

    A job completing always triggers re-evaluation. A backoff adds a timed
    re-evaluation on top, for budgets that free up without a completion
    (e.g. a running job's observed usage dropping).
    """

    @abstractmethod
    def next_delay(self, attempt: int) -> Optional[float]:
        """Seconds until the next timed re-evaluation, or None for none."""
        pass


class NoBackoff(DeferBackoff):
    """Re-evaluate only when a running job completes."""

    def next_delay(self, attempt: int) -> Optional[float]:
        return None


class ExponentialBackoff(DeferBackoff):
    def __init__(self, initial: float = 0.5, factor: float = 2.0, maximum: float = 30.0):
        if initial <= 0 or factor < 1 or maximum < initial:
            raise ValueError("require initial > 0, factor >= 1, maximum >= initial")
        self.initial = initial
        self.factor = factor
        self.maximum = maximum

    def next_delay(self, attempt: int) -> Optional[float]:
        # attempt counts from 1
        return min(self.initial * self.factor ** max(attempt - 1, 0), self.maximum)
