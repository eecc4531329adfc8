"""
Aggregate resource budget.

The governor admits or defers jobs based on the memory/CPU already
reserved by running jobs. It never starts or stops processes itself.

Reservation for a running job = max(declared estimate, last observed
usage) per dimension, so a job that underestimated itself still counts
for what it actually uses.

An empty governor always admits: a job whose estimate alone exceeds the
whole budget runs on its own instead of waiting forever.
"""

import logging
import threading
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..execution.process import ResourceUsage

logger = logging.getLogger(__name__)


class AdmissionDecision(str, Enum):
    ADMIT = "admit"
    DEFER = "defer"


class ResourceEstimate(BaseModel):
    """Expected peak usage of one job."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    memory_mb: float = Field(gt=0)
    cpu_percent: float = Field(gt=0)


class ResourceGovernor:
    def __init__(self, memory_budget_mb: float, cpu_budget_percent: float):
        self.memory_budget_mb = memory_budget_mb
        self.cpu_budget_percent = cpu_budget_percent
        self._lock = threading.Lock()
        self._estimates: Dict[str, ResourceEstimate] = {}
        self._observed: Dict[str, ResourceUsage] = {}

    @classmethod
    def from_settings(cls, settings) -> "ResourceGovernor":
        return cls(settings.memory_budget_mb, settings.cpu_budget_percent)

    def _reserved_locked(self) -> Tuple[float, float]:
        memory = 0.0
        cpu = 0.0
        for job_id, estimate in self._estimates.items():
            usage = self._observed.get(job_id)
            memory += max(estimate.memory_mb, usage.memory_mb if usage else 0.0)
            cpu += max(estimate.cpu_percent, usage.cpu_percent if usage else 0.0)
        return memory, cpu

    def _decide_locked(self, estimate: ResourceEstimate) -> AdmissionDecision:
        if not self._estimates:
            return AdmissionDecision.ADMIT
        memory, cpu = self._reserved_locked()
        if memory + estimate.memory_mb > self.memory_budget_mb:
            return AdmissionDecision.DEFER
        if cpu + estimate.cpu_percent > self.cpu_budget_percent:
            return AdmissionDecision.DEFER
        return AdmissionDecision.ADMIT

    def check_available(self, estimate: ResourceEstimate) -> AdmissionDecision:
        """Would `estimate` fit next to everything currently reserved?"""
        with self._lock:
            return self._decide_locked(estimate)

    def allocate(self, job_id: str, estimate: ResourceEstimate) -> None:
        """
        Reserve `estimate` for `job_id` unconditionally.

        Raises:
            ValueError: If the job already holds a reservation
        """
        with self._lock:
            if job_id in self._estimates:
                raise ValueError(f"Job {job_id} already holds a reservation")
            self._estimates[job_id] = estimate
        logger.debug(
            f"[Governor] Reserved {estimate.memory_mb:g} MB / {estimate.cpu_percent:g}% for job {job_id}"
        )

    def try_allocate(self, job_id: str, estimate: ResourceEstimate) -> AdmissionDecision:
        """check_available + allocate as one atomic step."""
        with self._lock:
            decision = self._decide_locked(estimate)
            if decision == AdmissionDecision.ADMIT:
                if job_id in self._estimates:
                    raise ValueError(f"Job {job_id} already holds a reservation")
                self._estimates[job_id] = estimate
        if decision == AdmissionDecision.DEFER:
            logger.debug(f"[Governor] Deferred job {job_id}")
        return decision

    def release(self, job_id: str) -> bool:
        """Drop the reservation. Returns False if the job held none."""
        with self._lock:
            self._observed.pop(job_id, None)
            released = self._estimates.pop(job_id, None) is not None
        if released:
            logger.debug(f"[Governor] Released reservation for job {job_id}")
        return released

    def record_usage(self, job_id: str, usage: ResourceUsage) -> None:
        with self._lock:
            if job_id in self._estimates:
                self._observed[job_id] = usage

    def reserved(self) -> Dict[str, float]:
        with self._lock:
            memory, cpu = self._reserved_locked()
        return {"memory_mb": memory, "cpu_percent": cpu}

    def reservation_count(self) -> int:
        with self._lock:
            return len(self._estimates)

    def reservation_for(self, job_id: str) -> Optional[ResourceEstimate]:
        with self._lock:
            return self._estimates.get(job_id)
