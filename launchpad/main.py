import asyncio
import sys
import logging

# Windows subprocess support requires ProactorEventLoop
if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlmodel import Session

from launchpad.core.config import get_settings
from launchpad.core.logging import setup_logging
from launchpad.core import database
from launchpad.services import SchedulerService, WorkerPool
from launchpad.routers import jobs as jobs_router, schedules as schedules_router

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manages Launchpad application lifecycle events.

    On Startup:
    - Creates database tables if missing.
    - Fails jobs interrupted by a previous shutdown and re-queues pending ones.
    - Starts the job worker pool.
    - Registers cron schedules and starts the scheduler.

    On Shutdown:
    - Stops the scheduler and the worker pool.
    """
    logger.info("Launchpad starting up...")
    database.create_db_and_tables()

    pool = WorkerPool(database.engine)
    await pool.start()
    app.state.pool = pool

    SchedulerService.start(pool)
    with Session(database.engine) as session:
        SchedulerService.sync_schedules(session)
    logger.info("Launchpad started successfully.")

    yield

    logger.info("Launchpad shutting down...")
    SchedulerService.shutdown()
    await pool.stop()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catches unhandled exceptions and returns clean error responses."""
    logger.exception("Unhandled exception")
    return JSONResponse({"detail": "Internal Server Error"}, status_code=500)


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.VERSION}


app.include_router(jobs_router.router)
app.include_router(schedules_router.router)
