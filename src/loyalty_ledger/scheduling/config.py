"""TOML loader for the recurring loyalty job schedule."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib


@dataclass(slots=True)
class JobDefinition:
    """One scheduled job: an async task path, a crontab and its retry policy."""

    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    max_attempts: int = 1
    base_backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    jitter_seconds: float = 1.0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` failed, excluding jitter."""

        delay = self.base_backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
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
    if not isinstance(kwargs, dict):
        kwargs = {}

    max_attempts = int(payload.get("max_attempts", 1) or 1)
    base_backoff_seconds = float(payload.get("base_backoff_seconds", 5.0) or 0)
    backoff_multiplier = float(payload.get("backoff_multiplier", 2.0) or 1)
    max_backoff_seconds = float(payload.get("max_backoff_seconds", 60.0) or 0)
    jitter_seconds = float(payload.get("jitter_seconds", 1.0) or 0)

    return JobDefinition(
        id=str(payload.get("id") or key),
        task=task,
        cron=cron,
        kwargs=kwargs,
        enabled=bool(payload.get("enabled", True)),
        max_attempts=max(max_attempts, 1),
        base_backoff_seconds=max(base_backoff_seconds, 0.0),
        backoff_multiplier=max(backoff_multiplier, 1.0),
        max_backoff_seconds=max(max_backoff_seconds, 0.0),
        jitter_seconds=max(jitter_seconds, 0.0),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Read ``[jobs.<name>]`` tables from a schedule file.

    Entries without a string ``task`` and ``cron`` are ignored, as are jobs
    marked ``enabled = false``.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs: list[JobDefinition] = []
    for key, payload in data.get("jobs", {}).items():
        if not isinstance(payload, dict):
            continue
        job = _parse_job(key, payload)
        if job is None or not job.enabled:
            continue
        jobs.append(job)

    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
