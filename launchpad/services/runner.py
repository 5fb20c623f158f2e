from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional
import asyncio
import json
import logging
import os
import shutil
import signal

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from launchpad.core.config import get_settings
from launchpad.core.exceptions import CredentialDecodeError, InventoryWriteError, LaunchError, LaunchpadError
from launchpad.models import Credential, EventLevel, Host, Job, JobStatus, Playbook, Template
from launchpad.services.credentials import CredentialService
from launchpad.services.events import EventSink
from launchpad.services.inventory import InventoryService
from launchpad.services.jobs import JobService
from launchpad.services.notification import NotificationService
from launchpad.services.output import OutputParser
from launchpad.utils.text import strip_ansi

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_PLAYBOOK = "---\n- hosts: all\n  tasks:\n    - debug: msg=\"Hello World\"\n"
STREAM_LIMIT = 4 * 1024 * 1024
KILL_GRACE_SECONDS = 10

RUNNER_ENV = {
    "ANSIBLE_HOST_KEY_CHECKING": "False",
    "ANSIBLE_FORCE_COLOR": "0",
    "ANSIBLE_NOCOLOR": "1",
    "ANSIBLE_NOCOWS": "1",
    "ANSIBLE_STDOUT_CALLBACK": "default",
    "ANSIBLE_RETRY_FILES_ENABLED": "False",
    "ANSIBLE_TIMEOUT": "120",
    "ANSIBLE_PERSISTENT_COMMAND_TIMEOUT": "120",
    "PYTHONUNBUFFERED": "1",
}


@dataclass
class ProcessOutcome:
    return_code: Optional[int]
    timed_out: bool = False
    stdout: list[str] = field(default_factory=list)

    @property
    def output(self) -> str:
        return "\n".join(self.stdout)


@dataclass
class JobSpec:
    """Everything read from storage that one run needs, loaded up front."""
    job: Job
    template: Template
    playbook_content: str
    hosts: list[Host]
    credential: Optional[Credential]


def effective_timeout(template: Template) -> float:
    ceiling = settings.JOB_TIMEOUT
    if template.timeout and template.timeout > 0:
        return min(float(template.timeout), ceiling)
    return ceiling


@contextmanager
def job_workspace(job_id: int) -> Iterator[Path]:
    """Creates the job's private directory and removes it on every exit path."""
    job_dir = Path(settings.JOBS_DIR) / f"job-{job_id}"
    try:
        if job_dir.exists():
            shutil.rmtree(job_dir)
        job_dir.mkdir(parents=True, mode=0o700)
    except OSError as e:
        raise InventoryWriteError(f"Failed to create job directory {job_dir}: {e}") from e
    try:
        yield job_dir
    finally:
        try:
            shutil.rmtree(job_dir)
        except OSError as e:
            logger.warning(f"Failed to clean up {job_dir}: {e}")


class RunnerService:
    """Runs queued jobs: prepares artifacts, drives ansible-playbook, records the outcome.

    Each call to ``execute`` owns one job from claim to terminal status.
    Jobs are independent of each other; the only shared state is the
    registry of live processes used for cancellation.

    Attributes:
        engine: Engine used to open short-lived sessions; the run outlives
            any single request session.
    """
    _locks: dict[int, asyncio.Lock] = {}
    _processes: dict[int, asyncio.subprocess.Process] = {}

    def __init__(self, engine: Engine):
        self.engine = engine
        self.notification_service = NotificationService()

    def _get_lock(self, job_id: int) -> asyncio.Lock:
        if job_id not in RunnerService._locks:
            RunnerService._locks[job_id] = asyncio.Lock()
        return RunnerService._locks[job_id]

    @staticmethod
    def build_command(playbook_path: Path, inventory_path: Path, template: Template, job: Job) -> list[str]:
        """Constructs the ansible-playbook argument vector for a job.

        Per-launch overrides on the job take precedence over the template.
        """
        cmd = [settings.ANSIBLE_PLAYBOOK_BIN, "-i", str(inventory_path), str(playbook_path)]
        verbosity = max(0, min(int(template.verbosity or 0), 5))
        if verbosity > 0:
            cmd.append(f"-{'v' * verbosity}")
        if template.forks:
            cmd.extend(["--forks", str(template.forks)])
        if template.become:
            cmd.append("--become")
        if job.check_mode:
            cmd.append("--check")
        limit = job.limits or template.limits
        if limit:
            cmd.extend(["--limit", limit])
        tags = job.tags or template.tags
        if tags:
            cmd.extend(["--tags", ",".join(tags)])
        if template.skip_tags:
            cmd.extend(["--skip-tags", ",".join(template.skip_tags)])
        extra_vars = {**(template.extra_vars or {}), **(job.extra_vars or {})}
        if extra_vars:
            cmd.extend(["-e", json.dumps(extra_vars)])
        return cmd

    @staticmethod
    def build_env() -> dict[str, str]:
        env = os.environ.copy()
        env.update(RUNNER_ENV)
        return env

    def load_spec(self, job_id: int) -> JobSpec:
        with Session(self.engine) as db:
            job = db.get(Job, job_id)
            template = db.get(Template, job.template_id) if job else None
            if not job or not template:
                raise LaunchpadError(f"Job {job_id} has no template to run")
            playbook = db.get(Playbook, template.playbook_id)
            hosts = list(db.exec(select(Host).where(Host.inventory_id == template.inventory_id).order_by(Host.id)).all())
            credential = db.get(Credential, template.credential_id) if template.credential_id else None
            return JobSpec(
                job=job,
                template=template,
                playbook_content=(playbook.content if playbook and playbook.content else DEFAULT_PLAYBOOK),
                hosts=hosts,
                credential=credential,
            )

    async def execute(self, job_id: int) -> Optional[str]:
        """Runs one job to a terminal state.

        Returns:
            The terminal status this call recorded, or None if the job was
            not claimed or was already finalized elsewhere (e.g. cancelled).
        """
        lock = self._get_lock(job_id)
        if lock.locked():
            logger.warning(f"Job {job_id} is already executing")
            return None

        async with lock:
            with Session(self.engine) as db:
                if not JobService(db).claim(job_id):
                    logger.info(f"Job {job_id} was not queued, skipping")
                    return None

            sink = EventSink(job_id, self.engine).start()
            status, return_code, summary = JobStatus.FAILED.value, None, None
            try:
                status, return_code, summary = await self._run(job_id, sink)
            except InventoryWriteError as e:
                await sink.error(f"Preparation failed: {e}")
            except LaunchError as e:
                await sink.error(str(e))
            except Exception as e:
                logger.exception(f"Error during execution of job {job_id}")
                await sink.error(f"Execution error: {str(e) or type(e).__name__}")
            finally:
                await sink.close()

            try:
                if status is None:
                    return None
                return self._finish(job_id, status, return_code, summary)
            finally:
                RunnerService._locks.pop(job_id, None)

    def _finish(self, job_id: int, status: str, return_code: Optional[int], summary: Optional[dict[str, Any]]) -> Optional[str]:
        with Session(self.engine) as db:
            jobs = JobService(db)
            if not jobs.finalize(job_id, status, return_code=return_code, summary=summary):
                return None
            job = jobs.get(job_id)
            template = db.get(Template, job.template_id)
            self.notification_service.send_job_notification(job, template.name if template else "?")
        return status

    async def _run(self, job_id: int, sink: EventSink) -> tuple[Optional[str], Optional[int], Optional[dict[str, Any]]]:
        spec = self.load_spec(job_id)
        await sink.info(f"Starting playbook execution for template {spec.template.name}")

        payload = None
        if spec.credential is not None:
            try:
                payload = CredentialService.decode(spec.credential)
            except CredentialDecodeError as e:
                logger.warning(f"Job {job_id}: {e}")
                await sink.warning(f"{e}; continuing without credentials")

        with job_workspace(job_id) as job_dir:
            materialized = InventoryService.materialize(job_dir, spec.hosts, spec.playbook_content, payload)
            await sink.info(
                f"Inventory ready: {materialized.host_count} host(s), {materialized.platform}",
                payload={"hosts": materialized.host_count, "platform": materialized.platform},
            )

            with Session(self.engine) as db:
                if JobService(db).is_cancelled(job_id):
                    await sink.warning("Job cancelled before launch")
                    return None, None, None

            cmd = self.build_command(materialized.playbook_path, materialized.inventory_path, spec.template, spec.job)
            timeout = effective_timeout(spec.template)
            outcome = await self.run_process(job_id, cmd, job_dir, sink, timeout)

        summary = OutputParser.summarize(outcome.output)
        summary["hosts"] = materialized.host_count
        if outcome.timed_out:
            await sink.error(f"Job timed out after {timeout:g} seconds; process killed")
            return JobStatus.FAILED.value, outcome.return_code, summary
        if outcome.return_code == 0:
            await sink.info("Process finished with exit code 0")
            return JobStatus.SUCCESS.value, 0, summary
        await sink.error(f"Process finished with exit code {outcome.return_code}")
        return JobStatus.FAILED.value, outcome.return_code, summary

    async def run_process(
        self,
        job_id: int,
        cmd: list[str],
        cwd: Path,
        sink: EventSink,
        timeout: float,
    ) -> ProcessOutcome:
        """Launches the runner and streams its output into the sink.

        stdout and stderr are read concurrently, line by line, while a
        separate timer races the process. Whichever finishes first decides
        the outcome; on timeout the whole process group is killed.

        Raises:
            LaunchError: The executable could not be spawned.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(),
                cwd=str(cwd),
                limit=STREAM_LIMIT,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise LaunchError(f"Failed to launch {cmd[0]}: {str(e) or type(e).__name__}") from e

        RunnerService._processes[job_id] = process
        outcome = ProcessOutcome(return_code=None)
        logger.info(f"Job {job_id}: started {cmd[0]} (pid {process.pid})")

        async def pump(stream: asyncio.StreamReader, level: str, keep: Optional[list[str]]) -> None:
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = strip_ansi(line.decode("utf-8", errors="replace").rstrip("\r\n"))
                if keep is not None:
                    keep.append(text)
                await sink.publish(level, text)

        async def complete() -> int:
            await asyncio.gather(
                pump(process.stdout, EventLevel.INFO.value, outcome.stdout),
                pump(process.stderr, EventLevel.WARNING.value, None),
            )
            return await process.wait()

        completion = asyncio.create_task(complete())
        timer = asyncio.create_task(asyncio.sleep(timeout))
        try:
            done, _ = await asyncio.wait({completion, timer}, return_when=asyncio.FIRST_COMPLETED)
            if completion in done:
                outcome.return_code = completion.result()
                return outcome

            outcome.timed_out = True
            logger.warning(f"Job {job_id}: timeout after {timeout}s, killing pid {process.pid}")
            self._signal(process, signal.SIGKILL)
            try:
                await asyncio.wait_for(completion, KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                completion.cancel()
            outcome.return_code = process.returncode
            return outcome
        finally:
            timer.cancel()
            if not completion.done():
                completion.cancel()
            RunnerService._processes.pop(job_id, None)

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, sig)
            elif sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
        except (ProcessLookupError, PermissionError):
            pass

    def stop_job(self, job_id: int) -> bool:
        """Terminates a running job's process.

        Returns:
            True if a process was signalled, False if none was running.
        """
        process = RunnerService._processes.get(job_id)
        if not process or process.returncode is not None:
            return False
        self._signal(process, signal.SIGTERM)
        return True
