import pytest

from launchpad.models import Job
from launchpad.services import ExecutionContext, JobService, RunnerService, WorkerPool
from launchpad.services.events import list_events

CONTEXT = ExecutionContext(username="alice")


class RecordingRunner:
    def __init__(self):
        self.executed = []

    async def execute(self, job_id):
        self.executed.append(job_id)
        if job_id < 0:
            raise RuntimeError("boom")
        return "success"


@pytest.mark.asyncio
async def test_pool_recovers_and_drains_queue(engine, session, make_template):
    template = make_template()
    jobs = JobService(session)
    interrupted = jobs.launch(template.id, CONTEXT)
    jobs.claim(interrupted.id)
    pending = [jobs.launch(template.id, CONTEXT).id for _ in range(3)]

    runner = RecordingRunner()
    pool = WorkerPool(engine, slots=2, runner=runner)
    await pool.start()
    assert pool.running
    await pool.join()
    await pool.stop()

    assert sorted(runner.executed) == pending
    assert not pool.running
    session.expire_all()
    assert session.get(Job, interrupted.id).status == "failed"


@pytest.mark.asyncio
async def test_worker_survives_runner_crash(engine):
    runner = RecordingRunner()
    pool = WorkerPool(engine, slots=1, runner=runner)
    await pool.start()
    pool.enqueue(-1)
    pool.enqueue(7)
    await pool.join()
    await pool.stop()

    assert runner.executed == [-1, 7]


@pytest.mark.asyncio
async def test_concurrent_jobs_stay_isolated(engine, session, jobs_dir, fake_ansible, make_template):
    fake_ansible(
        'echo "dir=$(pwd)"\n'
        'for i in 1 2 3 4 5; do echo "$(basename "$(pwd)")-line-$i"; sleep 0.1; done\n'
        "exit 0"
    )
    template = make_template()
    jobs = JobService(session)
    job_ids = [jobs.launch(template.id, CONTEXT).id for _ in range(2)]

    pool = WorkerPool(engine, slots=2, runner=RunnerService(engine))
    await pool.start()
    await pool.join()
    await pool.stop()

    session.expire_all()
    dirs, windows = set(), {}
    for job_id in job_ids:
        assert session.get(Job, job_id).status == "success"
        events = list_events(session, job_id)
        assert [e.seq for e in events] == list(range(1, len(events) + 1))

        messages = [e.message for e in events]
        workdir = next(m for m in messages if m.startswith("dir="))
        assert workdir.endswith(f"job-{job_id}")
        dirs.add(workdir)

        lines = [e for e in events if "-line-" in e.message]
        assert [e.message for e in lines] == [f"job-{job_id}-line-{i}" for i in range(1, 6)]
        windows[job_id] = (lines[0].created_at, lines[-1].created_at)

    assert len(dirs) == 2
    first, second = (windows[job_id] for job_id in job_ids)
    # Both slots were busy at once
    assert first[0] < second[1] and second[0] < first[1]
