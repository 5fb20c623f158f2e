import base64
import hashlib
import logging

from cryptography.fernet import Fernet
from launchpad.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def get_fernet() -> Fernet:
    """Derives a Fernet key from the SECRET_KEY and returns a Fernet instance.

    Why: Fernet requires a 32-byte url-safe base64-encoded key. We derive this
    from the application's SECRET_KEY to ensure consistency and security.
    """
    key_bytes = get_settings().SECRET_KEY.encode()
    hash_object = hashlib.sha256(key_bytes)
    key_32 = base64.urlsafe_b64encode(hash_object.digest())
    return Fernet(key_32)


def encrypt_secret(plain_text: str) -> str:
    """Encrypts a string using Fernet symmetric encryption.

    Args:
        plain_text: The sensitive data to encrypt.

    Returns:
        The encrypted token as a string.
    """
    if not plain_text:
        return ""
    f = get_fernet()
    return f.encrypt(plain_text.encode()).decode()


def decrypt_secret(cipher_text: str) -> str:
    """Decrypts a Fernet token back to its original string.

    Args:
        cipher_text: The encrypted token.

    Returns:
        The original plain-text string.

    Raises:
        cryptography.fernet.InvalidToken: If the token is malformed or was
            encrypted with another key.
    """
    if not cipher_text:
        return ""
    f = get_fernet()
    return f.decrypt(cipher_text.encode()).decode()
