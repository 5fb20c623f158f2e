import json
import logging
from typing import Optional

from cryptography.fernet import InvalidToken
from pydantic import TypeAdapter, ValidationError

from launchpad.core.exceptions import CredentialDecodeError
from launchpad.core.security import decrypt_secret, encrypt_secret
from launchpad.models import Credential
from launchpad.schemas.credential import ConnectionCredential, CredentialPayload, SshCredential

logger = logging.getLogger(__name__)

payload_adapter = TypeAdapter(CredentialPayload)

SSH = "ssh"
WINRM = "winrm"


class CredentialService:
    """Decodes stored credential blobs into typed connection settings.

    Secrets only exist in clear text inside the objects returned here, for
    the duration of inventory materialization. Nothing decoded is written
    back to the database.
    """

    @staticmethod
    def encode(payload: dict) -> str:
        """Encrypts a credential payload for storage in ``Credential.encrypted_secret``."""
        return encrypt_secret(json.dumps(payload))

    @staticmethod
    def decode(credential: Credential) -> CredentialPayload:
        """Decrypts and validates a credential row against its declared type.

        Args:
            credential: The stored credential row.

        Returns:
            One of the typed payload variants (ssh, vault, api_token, cloud).

        Raises:
            CredentialDecodeError: If the token, JSON or field set is invalid.
        """
        try:
            raw = json.loads(decrypt_secret(credential.encrypted_secret) or "{}")
        except (InvalidToken, ValueError) as e:
            raise CredentialDecodeError(f"Credential {credential.name!r} could not be decrypted") from e
        if not isinstance(raw, dict):
            raise CredentialDecodeError(f"Credential {credential.name!r} payload is not an object")

        # The row's type column is authoritative over anything in the blob
        raw["type"] = credential.type
        try:
            return payload_adapter.validate_python(raw)
        except ValidationError as e:
            raise CredentialDecodeError(
                f"Credential {credential.name!r} is not a valid {credential.type} credential: "
                f"{e.error_count()} error(s)"
            ) from e

    @staticmethod
    def for_connection(payload: CredentialPayload, connection: str) -> Optional[ConnectionCredential]:
        """Narrows a decoded payload to what one host class can use.

        WinRM hosts authenticate with username and password only; key
        material and privilege escalation apply to SSH hosts.
        """
        if not isinstance(payload, SshCredential):
            return None
        if connection == WINRM:
            return ConnectionCredential(username=payload.username, password=payload.password)
        return ConnectionCredential(
            username=payload.username,
            password=payload.password,
            ssh_key_data=payload.ssh_key_data,
            become_method=payload.become_method,
            become_username=payload.become_username,
            become_password=payload.become_password,
        )
