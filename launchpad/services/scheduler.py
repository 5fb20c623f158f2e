from apscheduler.triggers.cron import CronTrigger
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from typing import Any, Optional
from sqlmodel import Session, select
import logging
from datetime import datetime
import math
from launchpad.core import database
from launchpad.core.exceptions import TemplateNotFoundError
from launchpad.models import Schedule
from launchpad.services.jobs import ExecutionContext, JobService

logger = logging.getLogger(__name__)

# Schedule rows are the durable source; the in-memory job store is rebuilt from them at startup
scheduler = AsyncIOScheduler()

_pool = None


def schedule_job_id(schedule_id: int) -> str:
    return f"schedule-{schedule_id}"


async def launch_scheduled_template(schedule_id: int) -> Optional[int]:
    """Queues a job for the template behind a schedule.

    Why: This bridges an APScheduler firing to the job queue, so scheduled
    runs go through exactly the same pipeline as manual launches.
    """
    with Session(database.engine) as session:
        schedule = session.get(Schedule, schedule_id)
        if not schedule or not schedule.enabled:
            logger.info(f"Scheduler: schedule {schedule_id} missing or disabled, skipping")
            return None
        try:
            job = JobService(session).launch(
                schedule.template_id,
                ExecutionContext(username="scheduler", trigger="schedule"),
            )
        except TemplateNotFoundError as e:
            logger.error(f"Scheduler: {e}")
            return None
        job_id = job.id

    logger.info(f"Scheduler: queued job {job_id} for schedule {schedule_id}")
    if _pool is not None:
        _pool.enqueue(job_id)
    return job_id


class SchedulerService:
    """Fires template launches on cron schedules using APScheduler."""

    @staticmethod
    def start(pool=None):
        global _pool
        _pool = pool
        if not scheduler.running:
            scheduler.start()
            logger.info("Scheduler started.")

    @staticmethod
    def shutdown():
        if scheduler.running:
            scheduler.shutdown(wait=False)

    @staticmethod
    def add_schedule(schedule: Schedule) -> Optional[str]:
        """Registers (or replaces) the trigger for one schedule row.

        Returns:
            The APScheduler job id, or None if the cron expression or the
            timezone is invalid.
        """
        try:
            job = scheduler.add_job(
                launch_scheduled_template,
                CronTrigger.from_crontab(schedule.cron, timezone=schedule.timezone or "UTC"),
                args=[schedule.id],
                kwargs={},
                id=schedule_job_id(schedule.id),
                name=f"Run {schedule.name}",
                replace_existing=True,
            )
            return job.id
        # Unknown timezones raise ZoneInfoNotFoundError, a KeyError subclass
        except (ValueError, KeyError) as e:
            logger.error(f"Failed to add schedule {schedule.id} ({schedule.cron!r}, {schedule.timezone!r}): {e}")
            return None

    @staticmethod
    def remove_schedule(schedule_id: int) -> bool:
        job_id = schedule_job_id(schedule_id)
        if not scheduler.get_job(job_id):
            return False
        scheduler.remove_job(job_id)
        return True

    @staticmethod
    def sync_schedules(session: Session) -> int:
        """Makes the registered triggers match the enabled schedule rows."""
        schedules = session.exec(select(Schedule)).all()
        wanted = set()
        for schedule in schedules:
            if schedule.enabled and SchedulerService.add_schedule(schedule):
                wanted.add(schedule_job_id(schedule.id))
        for job in scheduler.get_jobs():
            if job.id.startswith("schedule-") and job.id not in wanted:
                scheduler.remove_job(job.id)
        return len(wanted)

    @staticmethod
    def list_jobs() -> list[dict[str, Any]]:
        jobs = []
        for job in scheduler.get_jobs():
            # Jobs added before the scheduler starts have no next_run_time yet
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run,
                "next_run_human": SchedulerService.format_timedelta(next_run),
                "args": job.args,
            })
        return jobs

    @staticmethod
    def format_timedelta(dt: Optional[datetime]) -> str:
        """Converts a future datetime into a human-readable relative string.

        Args:
            dt: The future datetime to format.

        Returns:
            A string like "In 5 mins" or "In 2 days".
        """
        if not dt: return "Paused"
        now = datetime.now(dt.tzinfo)
        diff = dt - now
        seconds = diff.total_seconds()
        if seconds < 0: return "Overdue"
        if seconds < 60: return "In < 1 minute"
        minutes = math.ceil(seconds / 60)
        if minutes < 60: return f"In {minutes} mins"
        hours = math.ceil(minutes / 60)
        if hours < 24: return f"In {hours} hours"
        days = math.ceil(hours / 24)
        return f"In {days} days"
