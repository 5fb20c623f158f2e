from typing import Generator, Optional
from fastapi import Depends, Header, Request
from sqlalchemy.engine import Engine
from sqlmodel import Session
from launchpad.core import database
from launchpad.services import JobService, RunnerService, WorkerPool, ExecutionContext

def get_engine() -> Engine:
    return database.engine

def get_db(engine: Engine = Depends(get_engine)) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session

def get_job_service(db: Session = Depends(get_db)) -> JobService:
    return JobService(db)

def get_runner_service(engine: Engine = Depends(get_engine)) -> RunnerService:
    return RunnerService(engine)

def get_worker_pool(request: Request) -> WorkerPool:
    return request.app.state.pool

def get_context(x_remote_user: Optional[str] = Header(default=None)) -> ExecutionContext:
    """Builds the caller context from the identity set by the fronting auth proxy."""
    return ExecutionContext(username=x_remote_user, trigger="manual")
