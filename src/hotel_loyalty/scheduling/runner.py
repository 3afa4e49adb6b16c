"""Scheduler runtime for recurring loyalty jobs."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from hotel_loyalty.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(path: str) -> JobCallable:
    """Import ``package.module.function`` and require it to be a coroutine function."""

    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {path}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {path} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {path} must be an async function")
    return func


class LoyaltyJobScheduler:
    """Register and run cron-driven loyalty maintenance jobs."""

    # meta: scheduler: loyalty-maintenance

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._sleep = sleep
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.jobs:
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(
                self.build_runner(resolve_task(job.task), job),
                trigger=trigger,
                id=job.id,
                replace_existing=True,
            )
            logger.info("Registered loyalty job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Loyalty job scheduler started", jobs=len(config.jobs))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Loyalty job scheduler stopped")

    def build_runner(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        """Wrap ``func`` with the job's retry, backoff, and jitter policy."""

        async def _runner() -> Any:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()
            attempt = 0
            while True:
                attempt += 1
                try:
                    result = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error = str(exc)
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error)
                    if attempt >= job.max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error,
                        )
                        logger.exception(
                            "Scheduled job failed after retries",
                            job_id=job.id,
                            task=job.task,
                            attempts=attempt,
                            error=error,
                        )
                        return None

                    delay = job.backoff_for(attempt)
                    if job.jitter_seconds:
                        delay += random.uniform(0, job.jitter_seconds)
                    self._observability.record_retry(job.id, job.task, attempts=attempt + 1)
                    logger.warning(
                        "Scheduled job retrying",
                        job_id=job.id,
                        task=job.task,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                    )
                    if delay:
                        await self._sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id, job.task, runtime_seconds=runtime_seconds, attempts=attempt
                )
                logger.info(
                    "Scheduled job completed",
                    job_id=job.id,
                    task=job.task,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                )
                return result

        return _runner

    def health(self) -> dict[str, object]:
        """Return scheduler health metadata suitable for diagnostics."""

        snapshot = self._observability.snapshot()
        configured = self._config.jobs if self._config else []
        jobs = []
        for job in configured:
            metrics = snapshot.jobs.get(job.id)
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "metrics": metrics.as_dict() if metrics else None,
                }
            )
        return {
            "running": self.is_running,
            "configured_jobs": len(configured),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["LoyaltyJobScheduler", "resolve_task"]
