from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
from pathlib import Path
import tempfile

class Settings(BaseSettings):
    APP_NAME: str = "Launchpad"
    VERSION: str = "1.0.0"
    DATABASE_URL: str = "sqlite:///./launchpad.db"
    SECRET_KEY: str = "launchpad-secret-key-change-me"
    DEBUG: bool = False
    LOG_LEVEL: Optional[str] = None  # e.g. WARNING; overrides DEBUG

    # Execution
    JOBS_DIR: Path = Path(tempfile.gettempdir()) / "launchpad-jobs"
    ANSIBLE_PLAYBOOK_BIN: str = "ansible-playbook"
    JOB_TIMEOUT: float = 300.0  # hard ceiling in seconds
    WORKER_SLOTS: int = 2
    EVENT_BUFFER: int = 1000

    # Notifications
    APPRISE_URL: Optional[str] = None
    NOTIFY_ON_SUCCESS: bool = False
    NOTIFY_ON_FAILURE: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "LAUNCHPAD_"

@lru_cache()
def get_settings():
    return Settings()
