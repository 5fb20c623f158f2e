from datetime import datetime, timedelta, timezone

import pytest

from launchpad.core import database
from launchpad.models import Job, Schedule
from launchpad.services import SchedulerService
from launchpad.services import scheduler as scheduler_module
from launchpad.services.scheduler import launch_scheduled_template, scheduler


@pytest.fixture(autouse=True)
def clean_scheduler():
    scheduler.remove_all_jobs()
    yield
    scheduler.remove_all_jobs()


@pytest.fixture
def scheduled(engine, pool, monkeypatch):
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(scheduler_module, "_pool", pool)
    return pool


def add_schedule(session, template_id, cron="*/5 * * * *", enabled=True, timezone="UTC"):
    schedule = Schedule(name="nightly", template_id=template_id, cron=cron, enabled=enabled, timezone=timezone)
    session.add(schedule)
    session.commit()
    session.refresh(schedule)
    return schedule


def test_add_and_remove_schedule(session, make_template):
    schedule = add_schedule(session, make_template().id)

    assert SchedulerService.add_schedule(schedule) == f"schedule-{schedule.id}"
    assert [j["id"] for j in SchedulerService.list_jobs()] == [f"schedule-{schedule.id}"]
    assert SchedulerService.remove_schedule(schedule.id) is True
    assert SchedulerService.remove_schedule(schedule.id) is False


def test_invalid_cron_is_rejected(session, make_template):
    schedule = add_schedule(session, make_template().id, cron="every tuesday")
    assert SchedulerService.add_schedule(schedule) is None
    assert SchedulerService.list_jobs() == []


def test_unknown_timezone_is_rejected(session, make_template):
    template_id = make_template().id
    valid = add_schedule(session, template_id, timezone="Europe/Paris")
    bad = add_schedule(session, template_id, timezone="Mars/Olympus")

    assert SchedulerService.add_schedule(bad) is None
    assert SchedulerService.sync_schedules(session) == 1
    assert [j["id"] for j in SchedulerService.list_jobs()] == [f"schedule-{valid.id}"]


def test_sync_schedules(session, make_template):
    template_id = make_template().id
    active = add_schedule(session, template_id)
    add_schedule(session, template_id, enabled=False)
    add_schedule(session, template_id, cron="bogus")

    assert SchedulerService.sync_schedules(session) == 1
    assert [j["id"] for j in SchedulerService.list_jobs()] == [f"schedule-{active.id}"]

    active.enabled = False
    session.add(active)
    session.commit()
    assert SchedulerService.sync_schedules(session) == 0
    assert SchedulerService.list_jobs() == []


@pytest.mark.asyncio
async def test_scheduled_launch_queues_job(session, make_template, scheduled):
    schedule = add_schedule(session, make_template().id)

    job_id = await launch_scheduled_template(schedule.id)

    assert scheduled.enqueued == [job_id]
    job = session.get(Job, job_id)
    assert job.status == "queued"
    assert job.trigger == "schedule"
    assert job.launched_by == "scheduler"


@pytest.mark.asyncio
async def test_disabled_or_missing_schedule_is_skipped(session, make_template, scheduled):
    schedule = add_schedule(session, make_template().id, enabled=False)

    assert await launch_scheduled_template(schedule.id) is None
    assert await launch_scheduled_template(999) is None
    assert scheduled.enqueued == []


@pytest.mark.asyncio
async def test_schedule_for_deleted_template(session, scheduled):
    schedule = add_schedule(session, template_id=999)
    assert await launch_scheduled_template(schedule.id) is None
    assert scheduled.enqueued == []


def test_format_timedelta():
    now = datetime.now(timezone.utc)
    assert SchedulerService.format_timedelta(None) == "Paused"
    assert SchedulerService.format_timedelta(now - timedelta(minutes=1)) == "Overdue"
    assert SchedulerService.format_timedelta(now + timedelta(seconds=30)) == "In < 1 minute"
    assert SchedulerService.format_timedelta(now + timedelta(minutes=5)) == "In 5 mins"
    assert SchedulerService.format_timedelta(now + timedelta(hours=3)) == "In 3 hours"
    assert SchedulerService.format_timedelta(now + timedelta(days=3)) == "In 3 days"
