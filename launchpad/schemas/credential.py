from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field

class SshCredential(BaseModel):
    type: Literal["ssh", "machine"] = "ssh"
    username: str
    password: Optional[str] = None
    ssh_key_data: Optional[str] = None
    become_method: Optional[str] = None
    become_username: Optional[str] = None
    become_password: Optional[str] = None

class VaultCredential(BaseModel):
    type: Literal["vault"] = "vault"
    vault_password: str
    vault_id: Optional[str] = None

class ApiTokenCredential(BaseModel):
    type: Literal["api_token"] = "api_token"
    token: str
    url: Optional[str] = None

class CloudCredential(BaseModel):
    type: Literal["cloud"] = "cloud"
    provider: str
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: Optional[str] = None

CredentialPayload = Annotated[
    Union[SshCredential, VaultCredential, ApiTokenCredential, CloudCredential],
    Field(discriminator="type"),
]

class ConnectionCredential(BaseModel):
    """Connection settings handed to the inventory for one host class."""
    username: Optional[str] = None
    password: Optional[str] = None
    ssh_key_data: Optional[str] = None
    become_method: Optional[str] = None
    become_username: Optional[str] = None
    become_password: Optional[str] = None
