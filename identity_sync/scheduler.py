"""APScheduler-based cron scheduling for provider syncs.

Each enabled provider gets two jobs. Departments run at 05:01:00 and users at
05:30:00 because user records resolve their groups from the department pass.
A firing that would overlap a still-running instance of the same job is
skipped (``max_instances=1``); different jobs may run side by side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from identity_sync.config import PROVIDER_NAMES, SyncConfig
from identity_sync.services import Services

logger = logging.getLogger("identity_sync.scheduler")

DEPARTMENT = "department"
USER = "user"

# sec min hour day month day_of_week
DEPARTMENT_SCHEDULE = "0 1 5 * * *"
USER_SCHEDULE = "0 30 5 * * *"

_CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")


def cron_trigger(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    """Compile a six-field, seconds-first cron expression."""
    parts = expression.split()
    if len(parts) != len(_CRON_FIELDS):
        raise ValueError(
            f"Expected {len(_CRON_FIELDS)} cron fields (seconds first), got {len(parts)}: {expression!r}"
        )
    return CronTrigger(timezone=timezone, **dict(zip(_CRON_FIELDS, parts)))


@dataclass(frozen=True)
class SyncJob:
    provider: str
    kind: str
    schedule: str

    @property
    def job_id(self) -> str:
        return f"{self.provider}_{self.kind}"


def registered_jobs(config: SyncConfig) -> list[SyncJob]:
    """Jobs for every provider whose enable flag is set, departments first."""
    jobs: list[SyncJob] = []
    for name in PROVIDER_NAMES:
        settings = config.provider(name)
        if settings is None or not settings.enable_sync:
            continue
        jobs.append(SyncJob(name, DEPARTMENT, DEPARTMENT_SCHEDULE))
        jobs.append(SyncJob(name, USER, USER_SCHEDULE))
    return jobs


def run_job(job: SyncJob, config: SyncConfig, services: Services) -> None:
    """Run one sync pass. Errors end here so the timer keeps running."""
    from identity_sync.cli import get_provider

    extra = {"provider": job.provider, "entity_kind": job.kind, "job_id": job.job_id}
    logger.info("Starting %s", job.job_id, extra=extra)
    try:
        provider = get_provider(job.provider, config, services)
        if provider is None:
            return
        if job.kind == DEPARTMENT:
            results = provider.sync_departments()
        else:
            results = provider.sync_users()
        logger.info("Finished %s: %s", job.job_id, results, extra=extra)
    except Exception as exc:
        logger.error("Job %s failed: %s", job.job_id, exc, exc_info=True, extra=extra)


def _on_job_event(event) -> None:
    if event.code == EVENT_JOB_MAX_INSTANCES:
        logger.warning("Job %s still running, skipped overlapping run", event.job_id)
    else:
        logger.error("Job %s raised an exception: %s", event.job_id, event.exception)


class SyncScheduler:
    """Provider-agnostic timer: takes (schedule, task) pairs."""

    def __init__(
        self,
        scheduler: Optional[BaseScheduler] = None,
        timezone: Optional[str] = None,
        misfire_grace_time: int = 300,
    ) -> None:
        self._scheduler = scheduler or BlockingScheduler()
        self._scheduler.add_listener(_on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES)
        self.timezone = timezone
        self.misfire_grace_time = misfire_grace_time

    def add(self, job_id: str, schedule: str, task: Callable[..., Any], args: Sequence[Any] = ()) -> None:
        self._scheduler.add_job(
            task,
            cron_trigger(schedule, self.timezone),
            args=list(args),
            id=job_id,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_time,
        )

    def job_ids(self) -> list[str]:
        return [j.id for j in self._scheduler.get_jobs()]

    def start(self) -> None:
        logger.info("Starting scheduler with jobs: %s", self.job_ids())
        self._scheduler.start()

    def shutdown(self) -> None:
        self._scheduler.shutdown(wait=False)


def build_scheduler(
    config: SyncConfig,
    services: Services,
    scheduler: Optional[BaseScheduler] = None,
) -> SyncScheduler:
    sched = SyncScheduler(
        scheduler,
        timezone=config.scheduler.timezone,
        misfire_grace_time=config.scheduler.misfire_grace_time,
    )
    for job in registered_jobs(config):
        sched.add(job.job_id, job.schedule, run_job, args=[job, config, services])
    return sched


def start_scheduler(config: SyncConfig, services: Services) -> None:
    """Start the blocking scheduler with cron jobs for each enabled provider."""
    build_scheduler(config, services).start()
