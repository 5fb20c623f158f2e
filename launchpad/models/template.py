from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime
from typing import Optional, Any

class Playbook(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    content: str = ""

class Template(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str = ""
    playbook_id: int = Field(foreign_key="playbook.id")
    inventory_id: int = Field(foreign_key="inventory.id")
    credential_id: Optional[int] = Field(default=None, foreign_key="credential.id")
    verbosity: int = Field(default=0)  # 0-4, maps to -v .. -vvvv
    forks: int = Field(default=5)
    become: bool = Field(default=False)
    check_mode: bool = Field(default=False)
    limits: Optional[str] = Field(default=None)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    skip_tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    extra_vars: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    timeout: int = Field(default=3600)  # seconds, capped by the global JOB_TIMEOUT

class Schedule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    template_id: int = Field(foreign_key="template.id", index=True)
    cron: str
    timezone: str = Field(default="UTC")
    enabled: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
