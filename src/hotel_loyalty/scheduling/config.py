"""Configuration loader for recurring loyalty job schedules."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib


@dataclass(slots=True)
class JobDefinition:
    """Describe a scheduled job and its retry policy."""

    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    max_attempts: int = 1
    base_backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    jitter_seconds: float = 1.0

    def backoff_for(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` failed, excluding jitter."""

        delay = self.base_backoff_seconds * (self.backoff_multiplier ** max(attempt - 1, 0))
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        return max(delay, 0.0)


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]


def _parse_job(key: str, payload: dict[str, Any]) -> JobDefinition | None:
    task = payload.get("task")
    cron = payload.get("cron")
    if not isinstance(task, str) or not isinstance(cron, str):
        return None
    kwargs = payload.get("kwargs", {})
    return JobDefinition(
        id=str(payload.get("id") or key),
        task=task,
        cron=cron,
        kwargs=kwargs if isinstance(kwargs, dict) else {},
        max_attempts=max(int(payload.get("max_attempts", 1) or 1), 1),
        base_backoff_seconds=max(float(payload.get("base_backoff_seconds", 5.0) or 0), 0.0),
        backoff_multiplier=max(float(payload.get("backoff_multiplier", 2.0) or 1), 1.0),
        max_backoff_seconds=max(float(payload.get("max_backoff_seconds", 60.0) or 0), 0.0),
        jitter_seconds=max(float(payload.get("jitter_seconds", 1.0) or 0), 0.0),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Load job definitions from a TOML schedule file.

    Entries missing a string ``task`` or ``cron`` are skipped.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs = [
        job
        for key, payload in data.get("jobs", {}).items()
        if isinstance(payload, dict) and (job := _parse_job(key, payload)) is not None
    ]
    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
