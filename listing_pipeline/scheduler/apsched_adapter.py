"""APScheduler wrapper exposing higher level helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import PipelineConfig, ScheduleConfig, ScheduleType
from ..logging_conf import configure_logging

RUN_JOB_ID = "pipeline::run"
MAINTENANCE_JOB_ID = "pipeline::maintenance"


def build_trigger(schedule: ScheduleConfig):
    if schedule.type is ScheduleType.CRON:
        return CronTrigger.from_crontab(str(schedule.value), timezone=timezone.utc)
    if schedule.type is ScheduleType.INTERVAL:
        if isinstance(schedule.value, (int, float)):
            return IntervalTrigger(seconds=float(schedule.value))
        if isinstance(schedule.value, dict):
            return IntervalTrigger(**schedule.value)
        raise ValueError("Interval schedule requires seconds or kwargs dict")
    if schedule.type is ScheduleType.ONCE:
        if schedule.value:
            run_date = datetime.fromisoformat(str(schedule.value))
        else:
            run_date = datetime.now(timezone.utc)
        return DateTrigger(run_date=run_date)
    raise ValueError(f"Unknown schedule type: {schedule.type}")


class APSchedulerAdapter:
    """Manage the periodic ingestion and maintenance jobs."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_job(
        self, job_id: str, schedule: ScheduleConfig, callback: Callable[[], object]
    ) -> None:
        trigger = build_trigger(schedule)
        # Runs are single-writer; never let two instances of a job overlap.
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job_id=job_id, schedule=schedule.model_dump(mode="json"))

    def schedule_pipeline(
        self,
        config: PipelineConfig,
        run: Callable[[], object],
        maintenance: Callable[[], object],
    ) -> None:
        self.schedule_job(RUN_JOB_ID, config.run_schedule, run)
        self.schedule_job(MAINTENANCE_JOB_ID, config.maintenance_schedule, maintenance)

    def remove_job(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except Exception:  # noqa: BLE001
            self.logger.warning("job_remove_failed", job_id=job_id)

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = [
    "APSchedulerAdapter",
    "MAINTENANCE_JOB_ID",
    "RUN_JOB_ID",
    "build_trigger",
]
