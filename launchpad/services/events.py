from datetime import datetime
from typing import Any, Iterable, Optional
import asyncio
import logging
import threading

from sqlalchemy.engine import Engine
from sqlmodel import Session, select, desc, func

from launchpad.core.config import get_settings
from launchpad.models import JobEvent, EventLevel
from launchpad.utils.text import strip_ansi

settings = get_settings()
logger = logging.getLogger(__name__)

BATCH_SIZE = 200

# Sequence numbers are read-then-written; one writer at a time per process
_write_lock = threading.Lock()

_CLOSE = object()

EventItem = tuple[str, str, Optional[dict[str, Any]]]


def insert_events(db: Session, job_id: int, items: Iterable[EventItem]) -> list[JobEvent]:
    """Inserts a batch of events for one job in a single commit.

    Sequence numbers and timestamps continue from the job's last stored
    event, so replay order is insertion order and timestamps never go
    backwards even if the wall clock does.
    """
    with _write_lock:
        last = db.exec(
            select(JobEvent).where(JobEvent.job_id == job_id).order_by(desc(JobEvent.seq)).limit(1)
        ).first()
        seq = last.seq if last else 0
        floor = last.created_at if last else None

        events = []
        for level, message, payload in items:
            now = datetime.utcnow()
            if floor and floor > now:
                now = floor
            seq += 1
            floor = now
            events.append(JobEvent(
                job_id=job_id,
                seq=seq,
                created_at=now,
                level=level,
                message=strip_ansi(message),
                payload=payload,
            ))
        db.add_all(events)
        db.commit()
    return events


def append_event(
    db: Session,
    job_id: int,
    level: str,
    message: str,
    payload: Optional[dict[str, Any]] = None,
) -> JobEvent:
    """Inserts the next event of a job and commits."""
    event = insert_events(db, job_id, [(level, message, payload)])[0]
    db.refresh(event)
    return event


def list_events(db: Session, job_id: int, after: int = 0, limit: Optional[int] = None) -> list[JobEvent]:
    statement = select(JobEvent).where(JobEvent.job_id == job_id).where(JobEvent.seq > after).order_by(JobEvent.seq)
    if limit:
        statement = statement.limit(limit)
    return list(db.exec(statement).all())


def count_events(db: Session, job_id: int) -> int:
    return db.exec(select(func.count()).select_from(JobEvent).where(JobEvent.job_id == job_id)).one()


class EventSink:
    """Ordered, failure-tolerant event writer for one job.

    Producers (the stdout/stderr readers and lifecycle hooks) put events on
    a bounded queue and only wait while it is full. A single consumer task
    takes whatever has accumulated, up to ``BATCH_SIZE`` events, and writes
    it in one transaction on a worker thread, so database latency never
    blocks the event loop. A failed batch is logged and dropped so that
    storage trouble never stops the process being observed.

    Attributes:
        job_id: The job all events belong to.
        written: Number of events stored.
        dropped: Number of events lost to write failures.
    """

    def __init__(self, job_id: int, engine: Engine, maxsize: Optional[int] = None):
        self.job_id = job_id
        self.engine = engine
        self.written = 0
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or settings.EVENT_BUFFER)
        self._consumer: Optional[asyncio.Task] = None

    def start(self) -> "EventSink":
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._drain(), name=f"event-sink-{self.job_id}")
        return self

    async def publish(self, level: str, message: str, payload: Optional[dict[str, Any]] = None) -> None:
        """Queues an event, waiting only while the buffer is full."""
        await self._queue.put((level, message, payload))

    async def info(self, message: str, payload: Optional[dict[str, Any]] = None) -> None:
        await self.publish(EventLevel.INFO.value, message, payload)

    async def warning(self, message: str, payload: Optional[dict[str, Any]] = None) -> None:
        await self.publish(EventLevel.WARNING.value, message, payload)

    async def error(self, message: str, payload: Optional[dict[str, Any]] = None) -> None:
        await self.publish(EventLevel.ERROR.value, message, payload)

    def write_batch(self, items: list[EventItem]) -> int:
        try:
            with Session(self.engine) as db:
                insert_events(db, self.job_id, items)
        except Exception as e:
            self.dropped += len(items)
            logger.warning(f"Failed to persist {len(items)} event(s) for job {self.job_id}: {e}")
            return 0
        self.written += len(items)
        return len(items)

    async def _drain(self) -> None:
        closing = False
        while not closing:
            batch = [await self._queue.get()]
            while len(batch) < BATCH_SIZE and not self._queue.empty():
                batch.append(self._queue.get_nowait())
            try:
                items = [item for item in batch if item is not _CLOSE]
                closing = len(items) < len(batch)
                if items:
                    await asyncio.to_thread(self.write_batch, items)
            finally:
                for _ in batch:
                    self._queue.task_done()

    async def close(self) -> None:
        """Flushes every queued event, then stops the consumer."""
        if self._consumer is None:
            return
        await self._queue.put(_CLOSE)
        await self._consumer
        self._consumer = None
