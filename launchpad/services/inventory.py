from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional
import json
import logging
import os
import shlex

from launchpad.core.exceptions import InventoryWriteError
from launchpad.models import Host
from launchpad.schemas.credential import ConnectionCredential, CredentialPayload
from launchpad.services.credentials import CredentialService, SSH, WINRM

logger = logging.getLogger(__name__)

WINRM_DEFAULTS = {
    "ansible_port": "5986",
    "ansible_winrm_transport": "ntlm",
    "ansible_winrm_server_cert_validation": "ignore",
}

# Host vars that must never reach a host line of the given class
EXCLUDED_VARS = {
    WINRM: {"ansible_ssh_private_key_file", "ansible_private_key_file"},
    "ssh_with_key": {"ansible_password", "ansible_ssh_pass", "ansible_ssh_password"},
}

KEY_FILE_NAME = "ssh_private_key"
INVENTORY_FILE_NAME = "inventory.ini"
PLAYBOOK_FILE_NAME = "playbook.yml"


def connection_class(host: Host) -> str:
    """Returns ``winrm`` when the host vars ask for it, ``ssh`` otherwise."""
    conn = str((host.vars or {}).get("ansible_connection", "")).strip().lower()
    return WINRM if conn == WINRM else SSH


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        value = json.dumps(value, separators=(",", ":"))
    return shlex.quote(str(value))


@dataclass
class HostRecord:
    """One inventory line: a hostname followed by ordered directives.

    Directives set first win; later ``add`` calls for the same key are
    ignored, so the order of the build steps is the precedence order.
    """
    hostname: str
    connection: str
    directives: dict[str, Any] = field(default_factory=dict)

    def add(self, key: str, value: Any) -> None:
        if value is None or value == "":
            return
        self.directives.setdefault(key, value)

    def serialize(self) -> str:
        parts = [self.hostname]
        parts.extend(f"{key}={format_value(value)}" for key, value in self.directives.items())
        return " ".join(parts)


@dataclass
class MaterializedInventory:
    inventory_path: Path
    playbook_path: Path
    key_path: Optional[Path]
    host_count: int
    platform: str  # windows, linux, mixed or empty
    content: str


class InventoryService:
    """Turns inventory host rows into an INI inventory for one job.

    Every host is classified on its own (WinRM or SSH), so a mixed
    inventory gets the right directives on each line. The platform summary
    is informational only.
    """

    @staticmethod
    def build_host_record(
        host: Host,
        credential: Optional[ConnectionCredential],
        key_path: Optional[Path] = None,
    ) -> HostRecord:
        host_vars = dict(host.vars or {})
        record = HostRecord(hostname=host.hostname, connection=connection_class(host))
        excluded: set[str] = set()

        if record.connection == WINRM:
            record.add("ansible_connection", WINRM)
            for key, default in WINRM_DEFAULTS.items():
                record.add(key, host_vars.get(key) or default)
            if credential:
                record.add("ansible_user", credential.username)
                record.add("ansible_password", credential.password)
            excluded |= EXCLUDED_VARS[WINRM]
        elif credential:
            record.add("ansible_user", credential.username)
            if credential.ssh_key_data and key_path:
                record.add("ansible_ssh_private_key_file", str(key_path))
                excluded |= EXCLUDED_VARS["ssh_with_key"]
            else:
                record.add("ansible_password", credential.password)
            if credential.become_method:
                record.add("ansible_become_method", credential.become_method)
                record.add("ansible_become_user", credential.become_username)
                record.add("ansible_become_password", credential.become_password)

        for key, value in host_vars.items():
            if key not in excluded:
                record.add(key, value)
        return record

    @staticmethod
    def platform_summary(records: Iterable[HostRecord]) -> str:
        kinds = {r.connection for r in records}
        if not kinds:
            return "empty"
        if kinds == {WINRM}:
            return "windows"
        if kinds == {SSH}:
            return "linux"
        return "mixed"

    @staticmethod
    def render(records: list[HostRecord]) -> str:
        lines = ["[all]"]
        lines.extend(record.serialize() for record in records)
        return "\n".join(lines) + "\n"

    @staticmethod
    def write_private_key(job_dir: Path, key_data: str) -> Path:
        """Writes key material readable by the owner only."""
        if "\\n" in key_data:
            key_data = key_data.replace("\\n", "\n")
        if not key_data.endswith("\n"):
            key_data += "\n"
        key_file = job_dir / KEY_FILE_NAME
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(key_data)
        os.chmod(key_file, 0o600)
        return key_file

    @staticmethod
    def materialize(
        job_dir: Path,
        hosts: list[Host],
        playbook_content: str,
        payload: Optional[CredentialPayload] = None,
    ) -> MaterializedInventory:
        """Writes the inventory, playbook and key file for one job.

        Args:
            job_dir: The job's private working directory (must exist).
            hosts: All host rows of the inventory; disabled ones are skipped.
            playbook_content: YAML body of the playbook to run.
            payload: The decoded credential, if any.

        Returns:
            Paths and summary of what was written.

        Raises:
            InventoryWriteError: If any artifact cannot be written.
        """
        ssh_cred = CredentialService.for_connection(payload, SSH) if payload else None
        winrm_cred = CredentialService.for_connection(payload, WINRM) if payload else None
        enabled = [h for h in hosts if h.enabled]

        try:
            key_path = None
            needs_key = ssh_cred and ssh_cred.ssh_key_data and any(connection_class(h) == SSH for h in enabled)
            if needs_key:
                key_path = InventoryService.write_private_key(job_dir, ssh_cred.ssh_key_data)

            records = [
                InventoryService.build_host_record(
                    h, winrm_cred if connection_class(h) == WINRM else ssh_cred, key_path
                )
                for h in enabled
            ]
            content = InventoryService.render(records)

            inventory_path = job_dir / INVENTORY_FILE_NAME
            inventory_path.write_text(content, encoding="utf-8")
            playbook_path = job_dir / PLAYBOOK_FILE_NAME
            playbook_path.write_text(playbook_content, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write job artifacts in {job_dir}: {e}")
            raise InventoryWriteError(f"Failed to write job artifacts: {e}") from e

        platform = InventoryService.platform_summary(records)
        logger.debug(f"Materialized {len(records)} host(s) ({platform}) in {job_dir}")
        return MaterializedInventory(
            inventory_path=inventory_path,
            playbook_path=playbook_path,
            key_path=key_path,
            host_count=len(records),
            platform=platform,
            content=content,
        )
