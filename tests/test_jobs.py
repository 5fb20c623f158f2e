import pytest

from launchpad.core.exceptions import InvalidTransitionError, JobNotFoundError, TemplateNotFoundError
from launchpad.models import Job
from launchpad.schemas.job import JobLaunch
from launchpad.services import ExecutionContext, JobService
from launchpad.services.events import list_events

ALICE = ExecutionContext(username="alice")


@pytest.fixture
def service(session):
    return JobService(session)


def test_launch_creates_queued_job(service, make_template):
    template = make_template(check_mode=True)
    job = service.launch(template.id, ALICE)

    assert job.status == "queued"
    assert job.launched_by == "alice"
    assert job.trigger == "manual"
    assert job.check_mode is True
    assert not job.is_terminal


def test_launch_overrides(service, make_template):
    template = make_template(check_mode=True)
    overrides = JobLaunch(limits="web*", tags=["deploy"], extra_vars={"version": "1.2"}, check_mode=False)
    job = service.launch(template.id, ALICE, overrides)

    assert job.check_mode is False
    assert job.limits == "web*"
    assert job.tags == ["deploy"]
    assert job.extra_vars == {"version": "1.2"}


def test_launch_unknown_template(service):
    with pytest.raises(TemplateNotFoundError):
        service.launch(42, ALICE)


def test_get_unknown_job(service):
    with pytest.raises(JobNotFoundError):
        service.get(42)


def test_lifecycle(service, make_template):
    job = service.launch(make_template().id, ALICE)

    assert service.finalize(job.id, "success") is False
    assert service.claim(job.id) is True
    assert service.claim(job.id) is False
    assert service.finalize(job.id, "success", return_code=0, summary={"ok": 1}) is True

    job = service.get(job.id)
    assert job.status == "success"
    assert job.return_code == 0
    assert job.summary == {"ok": 1}
    assert job.started_at is not None
    assert job.finished_at is not None


def test_terminal_state_is_final(service, make_template):
    job = service.launch(make_template().id, ALICE)
    service.claim(job.id)
    service.finalize(job.id, "failed", return_code=2)

    assert service.finalize(job.id, "success", return_code=0) is False
    with pytest.raises(InvalidTransitionError):
        service.cancel(job.id, ALICE)

    job = service.get(job.id)
    assert job.status == "failed"
    assert job.return_code == 2


def test_finalize_rejects_non_outcome_status(service, make_template):
    job = service.launch(make_template().id, ALICE)
    with pytest.raises(ValueError):
        service.finalize(job.id, "cancelled")


def test_cancel_running_job(service, make_template):
    job = service.launch(make_template().id, ALICE)
    service.claim(job.id)

    job = service.cancel(job.id, ALICE)
    assert job.status == "cancelled"
    assert service.is_cancelled(job.id)
    assert service.finalize(job.id, "failed") is False

    events = list_events(service.db, job.id)
    assert events[-1].level == "warning"
    assert events[-1].message == "Job cancelled by alice"


def test_cancel_twice_conflicts(service, make_template):
    job = service.launch(make_template().id, ALICE)
    service.cancel(job.id, ALICE)

    with pytest.raises(InvalidTransitionError) as exc:
        service.cancel(job.id, ALICE)
    assert exc.value.current == "cancelled"


def test_queued_job_ids(service, make_template):
    template = make_template()
    first = service.launch(template.id, ALICE)
    second = service.launch(template.id, ALICE)
    service.claim(first.id)

    assert service.queued_job_ids() == [second.id]


def test_cleanup_started_jobs(service, session, make_template):
    template = make_template()
    running = service.launch(template.id, ALICE)
    queued = service.launch(template.id, ALICE)
    service.claim(running.id)

    assert service.cleanup_started_jobs() == 1

    session.expire_all()
    assert session.get(Job, running.id).status == "failed"
    assert session.get(Job, queued.id).status == "queued"
    assert "interrupted by server restart" in list_events(session, running.id)[-1].message
