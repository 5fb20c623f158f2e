from typing import Optional
import asyncio
import logging

from sqlalchemy.engine import Engine
from sqlmodel import Session

from launchpad.core.config import get_settings
from launchpad.services.jobs import JobService
from launchpad.services.runner import RunnerService

settings = get_settings()
logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed number of worker slots pulling job ids off a queue.

    The job table is the durable queue: a job is ``queued`` in the database
    before its id is pushed here, and ``recover`` re-pushes whatever is
    still queued after a restart. Each slot runs one job to completion
    before taking the next.
    """

    def __init__(self, engine: Engine, slots: Optional[int] = None, runner: Optional[RunnerService] = None):
        self.engine = engine
        self.slots = slots or settings.WORKER_SLOTS
        self.runner = runner or RunnerService(engine)
        self.queue: asyncio.Queue[int] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def enqueue(self, job_id: int) -> None:
        self.queue.put_nowait(job_id)

    def recover(self) -> int:
        """Fails jobs interrupted by a restart and re-queues pending ones."""
        with Session(self.engine) as db:
            jobs = JobService(db)
            jobs.cleanup_started_jobs()
            pending = jobs.queued_job_ids()
        for job_id in pending:
            self.enqueue(job_id)
        if pending:
            logger.info(f"Re-queued {len(pending)} pending job(s)")
        return len(pending)

    async def start(self) -> None:
        if self._workers:
            return
        self.recover()
        self._workers = [
            asyncio.create_task(self._work(slot), name=f"job-worker-{slot}") for slot in range(self.slots)
        ]
        logger.info(f"Job worker pool started with {self.slots} slot(s)")

    async def _work(self, slot: int) -> None:
        while True:
            job_id = await self.queue.get()
            try:
                logger.debug(f"Worker {slot} picked job {job_id}")
                status = await self.runner.execute(job_id)
                logger.info(f"Worker {slot} finished job {job_id}: {status or 'skipped'}")
            except Exception:
                logger.exception(f"Worker {slot} crashed on job {job_id}")
            finally:
                self.queue.task_done()

    async def join(self) -> None:
        """Waits until every queued job has been processed."""
        await self.queue.join()

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Job worker pool stopped")
