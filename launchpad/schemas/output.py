from typing import Any, Optional, Union
from pydantic import BaseModel, Field

class TaskResult(BaseModel):
    name: str
    status: str  # ok, changed, failed, skipped, unreachable, running
    host: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    msg: Optional[Union[str, list[Any]]] = None
    results: Optional[list[Any]] = None
    result: Optional[Any] = None

class Play(BaseModel):
    name: str
    tasks: list[TaskResult] = Field(default_factory=list)

class HostRecap(BaseModel):
    ok: int = 0
    changed: int = 0
    unreachable: int = 0
    failed: int = 0
    skipped: int = 0
    rescued: int = 0
    ignored: int = 0

class StructuredOutput(BaseModel):
    plays: list[Play] = Field(default_factory=list)
    recap: Optional[dict[str, HostRecap]] = None
