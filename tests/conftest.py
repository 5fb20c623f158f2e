import pytest
from pathlib import Path
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

from launchpad.core.config import get_settings
from launchpad.dependencies import get_engine
from launchpad.main import app
from launchpad.models import Credential, Host, Inventory, Playbook, Template
from launchpad.services import CredentialService


@pytest.fixture
def engine(tmp_path):
    # File-backed so event writes on worker threads get their own connections
    engine = create_engine(f"sqlite:///{tmp_path / 'launchpad-test.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def jobs_dir(tmp_path, monkeypatch):
    """Points the per-job working directories at a temporary location."""
    path = tmp_path / "jobs"
    monkeypatch.setattr(get_settings(), "JOBS_DIR", path)
    return path


@pytest.fixture
def fake_ansible(tmp_path, monkeypatch):
    """Installs a shell script in place of ansible-playbook.

    The script records its arguments in ``args.txt`` before running ``body``.
    """
    def _install(body: str) -> Path:
        script = tmp_path / "ansible-playbook"
        args_file = tmp_path / "args.txt"
        script.write_text(f'#!/bin/sh\necho "$@" > "{args_file}"\n{body}\n', encoding="utf-8")
        script.chmod(0o755)
        monkeypatch.setattr(get_settings(), "ANSIBLE_PLAYBOOK_BIN", str(script))
        return args_file
    return _install


@pytest.fixture
def make_template(session):
    """Creates a playbook, inventory (with hosts), optional credential and template."""
    def _make(hosts=None, secret=None, credential_type="ssh", content="- hosts: all\n", **options):
        playbook = Playbook(name="site.yml", content=content)
        inventory = Inventory(name="lab")
        session.add(playbook)
        session.add(inventory)
        session.commit()

        for host in hosts if hosts is not None else [{"hostname": "web1"}]:
            session.add(Host(inventory_id=inventory.id, **host))

        credential_id = None
        if secret is not None:
            encrypted = secret if isinstance(secret, str) else CredentialService.encode(secret)
            credential = Credential(name="lab-cred", type=credential_type, encrypted_secret=encrypted)
            session.add(credential)
            session.commit()
            credential_id = credential.id

        template = Template(
            name="deploy",
            playbook_id=playbook.id,
            inventory_id=inventory.id,
            credential_id=credential_id,
            **options,
        )
        session.add(template)
        session.commit()
        session.refresh(template)
        return template
    return _make


class RecordingPool:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, job_id: int) -> None:
        self.enqueued.append(job_id)


@pytest.fixture
def pool():
    return RecordingPool()


@pytest.fixture
def client(engine, pool):
    app.dependency_overrides[get_engine] = lambda: engine
    app.state.pool = pool
    yield TestClient(app)
    app.dependency_overrides.clear()
