from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime
from typing import Optional, Any
from enum import Enum

class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = (JobStatus.SUCCESS.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value)
ACTIVE_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)

class EventLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

class Job(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    template_id: int = Field(foreign_key="template.id", index=True)
    status: str = Field(default=JobStatus.QUEUED.value, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    return_code: Optional[int] = None
    summary: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    trigger: str = "manual"  # manual, schedule
    launched_by: Optional[str] = Field(default=None)
    check_mode: bool = Field(default=False)
    # Per-launch overrides of the template
    limits: Optional[str] = Field(default=None)
    tags: Optional[list[str]] = Field(default=None, sa_column=Column(JSON))
    extra_vars: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

class JobEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="job.id", index=True)
    seq: int = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    level: str = Field(default=EventLevel.INFO.value)
    message: str = ""
    payload: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
