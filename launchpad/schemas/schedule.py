from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel

class ScheduledRun(BaseModel):
    id: str
    name: str
    next_run: Optional[datetime] = None
    next_run_human: str
    args: list[Any] = []

class ScheduleSync(BaseModel):
    registered: int
