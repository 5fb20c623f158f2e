from sqlmodel import SQLModel, Field
from typing import Optional
from enum import Enum

class CredentialType(str, Enum):
    SSH = "ssh"
    MACHINE = "machine"  # alias of ssh used by older rows
    VAULT = "vault"
    API_TOKEN = "api_token"
    CLOUD = "cloud"

class Credential(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    type: str = Field(default=CredentialType.SSH.value)
    description: str = ""
    encrypted_secret: str = ""  # Fernet token of the JSON payload
    scope: str = Field(default="user")
    owner: Optional[str] = Field(default=None)
