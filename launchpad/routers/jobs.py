from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from typing import Any
from sqlalchemy.engine import Engine
from sqlmodel import Session
import asyncio
import json
import logging

from launchpad.core.exceptions import InvalidTransitionError, JobNotFoundError, TemplateNotFoundError
from launchpad.dependencies import get_context, get_engine, get_job_service, get_runner_service, get_worker_pool
from launchpad.models import JobEvent, TERMINAL_STATUSES
from launchpad.schemas.job import JobEventRead, JobLaunch, JobRead
from launchpad.schemas.output import StructuredOutput
from launchpad.services import ExecutionContext, JobService, OutputParser, RunnerService, WorkerPool
from launchpad.services.events import list_events

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)

STREAM_POLL_SECONDS = 0.5


def _job_or_404(service: JobService, job_id: int):
    try:
        return service.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/templates/{template_id}/launch", status_code=status.HTTP_201_CREATED, response_model=JobRead)
async def launch_template(
    template_id: int,
    body: JobLaunch = JobLaunch(),
    service: JobService = Depends(get_job_service),
    pool: WorkerPool = Depends(get_worker_pool),
    context: ExecutionContext = Depends(get_context),
) -> Any:
    """Queues a job for a template and hands it to the worker pool."""
    try:
        job = service.launch(template_id, context, body)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    pool.enqueue(job.id)
    return job


@router.get("/jobs/{job_id}", response_model=JobRead)
async def get_job(job_id: int, service: JobService = Depends(get_job_service)) -> Any:
    return _job_or_404(service, job_id)


@router.post("/jobs/{job_id}/cancel", response_model=JobRead)
async def cancel_job(
    job_id: int,
    service: JobService = Depends(get_job_service),
    runner: RunnerService = Depends(get_runner_service),
    context: ExecutionContext = Depends(get_context),
) -> Any:
    """Marks a job cancelled and signals its process, if one is running.

    Returns 409 when the job has already finished.
    """
    try:
        job = service.cancel(job_id, context)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if runner.stop_job(job_id):
        logger.info(f"Sent termination signal to job {job_id}")
    return job


@router.get("/jobs/{job_id}/events", response_model=list[JobEventRead])
async def get_job_events(
    job_id: int,
    after: int = 0,
    service: JobService = Depends(get_job_service),
) -> list[JobEvent]:
    _job_or_404(service, job_id)
    return list_events(service.db, job_id, after=after)


@router.get("/jobs/{job_id}/output", response_model=StructuredOutput, response_model_exclude_none=True)
async def get_job_output(job_id: int, service: JobService = Depends(get_job_service)) -> StructuredOutput:
    """Rebuilds the play/task/recap view from the job's event log.

    Works on partial logs too, so it can be polled while the job runs.
    """
    _job_or_404(service, job_id)
    events = list_events(service.db, job_id)
    return OutputParser.parse("\n".join(e.message for e in events))


@router.get("/jobs/{job_id}/stream")
async def stream_job_events(
    job_id: int,
    after: int = 0,
    service: JobService = Depends(get_job_service),
    engine: Engine = Depends(get_engine),
) -> StreamingResponse:
    """Streams a job's events as Server-Sent Events until the job ends.

    Why: Live output without polling from the browser. Each event is sent
    once, in sequence order; the stream closes after the job reaches a
    terminal state and its remaining events have been flushed.
    """
    _job_or_404(service, job_id)

    async def event_generator():
        last_seq = after
        yield "data: Connected\n\n"
        while True:
            with Session(engine) as db:
                job_status = JobService(db).get(job_id).status
                events = list_events(db, job_id, after=last_seq)
            for event in events:
                last_seq = event.seq
                data = JobEventRead.model_validate(event, from_attributes=True).model_dump(mode="json")
                yield f"id: {event.seq}\ndata: {json.dumps(data)}\n\n"
            if job_status in TERMINAL_STATUSES and not events:
                break
            await asyncio.sleep(STREAM_POLL_SECONDS)
        yield f"event: end\ndata: {job_status}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")
