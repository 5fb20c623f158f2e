from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel

class JobLaunch(BaseModel):
    limits: Optional[str] = None
    tags: Optional[list[str]] = None
    extra_vars: Optional[dict[str, Any]] = None
    check_mode: Optional[bool] = None

class JobRead(BaseModel):
    id: int
    template_id: int
    status: str
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    return_code: Optional[int] = None
    summary: Optional[dict[str, Any]] = None
    trigger: str
    launched_by: Optional[str] = None

class JobEventRead(BaseModel):
    seq: int
    created_at: datetime
    level: str
    message: str
    payload: Optional[dict[str, Any]] = None
