from fastapi import APIRouter, Depends, HTTPException, status
from typing import Any
from sqlmodel import Session
import logging

from launchpad.dependencies import get_db
from launchpad.models import Schedule
from launchpad.schemas.schedule import ScheduledRun, ScheduleSync
from launchpad.services import SchedulerService

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


@router.get("/schedules", response_model=list[ScheduledRun])
async def get_schedule_queue() -> Any:
    """Lists registered cron triggers with their next run time."""
    return SchedulerService.list_jobs()


@router.post("/schedules/sync", response_model=ScheduleSync)
async def sync_schedules(db: Session = Depends(get_db)) -> Any:
    """Re-reads the schedule table after it was edited elsewhere."""
    return {"registered": SchedulerService.sync_schedules(db)}


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disable_schedule(schedule_id: int, db: Session = Depends(get_db)) -> None:
    """Disables a schedule and drops its trigger.

    The row is kept so past jobs still point at it; a later sync will not
    register it again.
    """
    schedule = db.get(Schedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found")
    schedule.enabled = False
    db.add(schedule)
    db.commit()
    if SchedulerService.remove_schedule(schedule_id):
        logger.info(f"Removed trigger for schedule {schedule_id}")
