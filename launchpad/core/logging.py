import logging
import sys
from launchpad.core.config import get_settings

settings = get_settings()

# Third-party loggers that flood the console at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "apprise")


def resolve_level() -> int:
    if settings.LOG_LEVEL:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if settings.DEBUG else logging.INFO


def setup_logging():
    """Configures stdout logging for the service and its workers.

    ``LOG_LEVEL`` wins over ``DEBUG`` when both are set. Calling this more
    than once only adjusts the level.
    """
    log_level = resolve_level()
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging initialized with level {logging.getLevelName(log_level)}; job workspaces in {settings.JOBS_DIR}"
    )
