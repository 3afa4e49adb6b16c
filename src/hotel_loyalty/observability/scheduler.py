"""Observability store for the loyalty job scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledJobMetrics:
    """Running counters for one configured job."""

    job_id: str
    task: str
    runs: int = 0
    successes: int = 0
    run_failures: int = 0
    attempt_failures: int = 0
    retries: int = 0
    consecutive_failures: int = 0
    runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": {
                "runs": self.runs,
                "success": self.successes,
                "run_failures": self.run_failures,
                "attempt_failures": self.attempt_failures,
                "retries": self.retries,
                "consecutive_failures": self.consecutive_failures,
            },
            "runtime_seconds": round(self.runtime_seconds, 3),
            "last_started_at": _iso(self.last_started_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
        }


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, ScheduledJobMetrics]

    def as_dict(self) -> Dict[str, object]:
        return {"totals": self.totals, "jobs": {key: job.as_dict() for key, job in self.jobs.items()}}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class LoyaltySchedulerObservabilityStore:
    """Tracks dispatch, retry, and failure counts per scheduled job."""

    # meta: observability: loyalty-scheduler

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, ScheduledJobMetrics] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _job(self, job_id: str, task: str) -> ScheduledJobMetrics:
        metrics = self._jobs.get(job_id)
        if metrics is None:
            metrics = self._jobs[job_id] = ScheduledJobMetrics(job_id=job_id, task=task)
        metrics.task = task
        return metrics

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            metrics = self._job(job_id, task)
            metrics.runs += 1
            metrics.last_started_at = _utcnow()
            metrics.last_attempts = 0

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            metrics = self._job(job_id, task)
            metrics.attempt_failures += 1
            metrics.last_attempts = attempts
            metrics.last_error = error
            metrics.last_error_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, attempts: int) -> None:
        with self._lock:
            metrics = self._job(job_id, task)
            metrics.retries += 1
            metrics.last_attempts = attempts

    def record_success(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int) -> None:
        with self._lock:
            metrics = self._job(job_id, task)
            metrics.successes += 1
            metrics.consecutive_failures = 0
            metrics.runtime_seconds += runtime_seconds
            metrics.last_attempts = attempts
            metrics.last_success_at = _utcnow()
            metrics.last_error = None

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            metrics = self._job(job_id, task)
            metrics.run_failures += 1
            metrics.consecutive_failures += 1
            metrics.runtime_seconds += runtime_seconds
            metrics.last_attempts = attempts
            metrics.last_error = error
            metrics.last_error_at = _utcnow()

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {
                job_id: ScheduledJobMetrics(**vars(metrics)) for job_id, metrics in self._jobs.items()
            }
        totals = {
            "runs": sum(job.runs for job in jobs.values()),
            "success": sum(job.successes for job in jobs.values()),
            "run_failures": sum(job.run_failures for job in jobs.values()),
            "attempt_failures": sum(job.attempt_failures for job in jobs.values()),
            "retries": sum(job.retries for job in jobs.values()),
        }
        return SchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = LoyaltySchedulerObservabilityStore()


def get_scheduler_store() -> LoyaltySchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "LoyaltySchedulerObservabilityStore",
    "ScheduledJobMetrics",
    "SchedulerSnapshot",
    "get_scheduler_store",
]
