from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import update
from sqlmodel import Session, select

from launchpad.core.exceptions import InvalidTransitionError, JobNotFoundError, TemplateNotFoundError
from launchpad.models import ACTIVE_STATUSES, EventLevel, Job, JobStatus, Template
from launchpad.schemas.job import JobLaunch
from launchpad.services.events import append_event

logger = logging.getLogger(__name__)

# Allowed source states for each target state
TRANSITIONS = {
    JobStatus.RUNNING.value: (JobStatus.QUEUED.value,),
    JobStatus.SUCCESS.value: (JobStatus.RUNNING.value,),
    JobStatus.FAILED.value: (JobStatus.RUNNING.value,),
    JobStatus.CANCELLED.value: ACTIVE_STATUSES,
}


@dataclass(frozen=True)
class ExecutionContext:
    """Who asked for an operation, passed explicitly instead of read from a session."""
    username: Optional[str] = None
    trigger: str = "manual"


class JobService:
    """Owns the job lifecycle: queued -> running -> success | failed | cancelled.

    Every status write is a compare-and-set on the current status, so two
    racing writers (process exit and timeout, or a worker and a cancel
    request) can never both move a job, and nothing moves a job out of a
    terminal state.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, job_id: int) -> Job:
        job = self.db.get(Job, job_id)
        if not job:
            raise JobNotFoundError(job_id)
        return job

    def launch(
        self,
        template_id: int,
        context: ExecutionContext,
        overrides: Optional[JobLaunch] = None,
    ) -> Job:
        """Creates a queued job for a template.

        Args:
            template_id: The template to run.
            context: Requesting user and trigger.
            overrides: Per-launch limits, tags, extra vars or check mode.

        Returns:
            The persisted job in ``queued`` state.
        """
        template = self.db.get(Template, template_id)
        if not template:
            raise TemplateNotFoundError(template_id)
        overrides = overrides or JobLaunch()
        job = Job(
            template_id=template_id,
            status=JobStatus.QUEUED.value,
            trigger=context.trigger,
            launched_by=context.username,
            check_mode=template.check_mode if overrides.check_mode is None else overrides.check_mode,
            limits=overrides.limits,
            tags=overrides.tags,
            extra_vars=overrides.extra_vars,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        logger.info(f"Job {job.id} queued for template {template.name} by {context.username or 'anonymous'}")
        return job

    def _transition(self, job_id: int, target: str, **values: Any) -> bool:
        result = self.db.exec(
            update(Job)
            .where(Job.id == job_id)
            .where(Job.status.in_(TRANSITIONS[target]))
            .values(status=target, **values)
        )
        self.db.commit()
        moved = result.rowcount == 1
        if moved:
            logger.info(f"Job {job_id} -> {target}")
        return moved

    def claim(self, job_id: int) -> bool:
        """Moves a queued job to running. False if someone else got there first."""
        return self._transition(job_id, JobStatus.RUNNING.value, started_at=datetime.utcnow())

    def finalize(
        self,
        job_id: int,
        status: str,
        return_code: Optional[int] = None,
        summary: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Records the outcome of a running job.

        Returns:
            True if this call set the terminal state, False if the job had
            already left ``running`` (cancelled, or finalized by a racing path).
        """
        if status not in (JobStatus.SUCCESS.value, JobStatus.FAILED.value):
            raise ValueError(f"finalize() cannot set status {status!r}")
        moved = self._transition(
            job_id, status, finished_at=datetime.utcnow(), return_code=return_code, summary=summary
        )
        if not moved:
            logger.info(f"Job {job_id} already terminal, ignoring {status}")
        return moved

    def cancel(self, job_id: int, context: ExecutionContext) -> Job:
        """Cancels a queued or running job.

        Only the stored status is changed here; stopping a live process is
        up to the runner, which checks the status before launching and is
        signalled by the caller.

        Raises:
            JobNotFoundError: Unknown job id.
            InvalidTransitionError: The job is already terminal.
        """
        job = self.get(job_id)
        if not self._transition(job_id, JobStatus.CANCELLED.value, finished_at=datetime.utcnow()):
            self.db.refresh(job)
            raise InvalidTransitionError(job_id, job.status, JobStatus.CANCELLED.value)
        append_event(
            self.db, job_id, EventLevel.WARNING.value,
            f"Job cancelled by {context.username or 'unknown user'}",
        )
        self.db.refresh(job)
        return job

    def is_cancelled(self, job_id: int) -> bool:
        job = self.get(job_id)
        self.db.refresh(job)
        return job.status == JobStatus.CANCELLED.value

    def queued_job_ids(self) -> list[int]:
        statement = select(Job.id).where(Job.status == JobStatus.QUEUED.value).order_by(Job.id)
        return list(self.db.exec(statement).all())

    def cleanup_started_jobs(self) -> int:
        """Force-fails any jobs that were left in a 'running' state.

        Why: If the server crashes or restarts, jobs marked as 'running' will
        be stuck forever. This runs at startup, before any worker claims a job.
        """
        running_ids = list(self.db.exec(select(Job.id).where(Job.status == JobStatus.RUNNING.value)).all())
        for job_id in running_ids:
            if self.finalize(job_id, JobStatus.FAILED.value):
                append_event(self.db, job_id, EventLevel.ERROR.value, "[SYSTEM] Job interrupted by server restart.")
        if running_ids:
            logger.warning(f"Cleaned up {len(running_ids)} interrupted job(s)")
        return len(running_ids)
