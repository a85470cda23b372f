"""
Encryption utilities for connection credentials
"""
from cryptography.fernet import Fernet, InvalidToken
from functools import lru_cache
from typing import Optional
import base64
import os

import structlog

from sqlbroker.config import settings

logger = structlog.get_logger()


def get_or_create_encryption_key(key_file: Optional[str] = None) -> bytes:
    """Get the configured key, or read/generate one in the key file."""
    if settings.ENCRYPTION_KEY:
        return settings.ENCRYPTION_KEY.encode()

    key_file = key_file or settings.ENCRYPTION_KEY_FILE
    if os.path.exists(key_file):
        with open(key_file, "rb") as f:
            return f.read().strip()

    # Generate new key
    key = Fernet.generate_key()
    os.makedirs(os.path.dirname(os.path.abspath(key_file)), exist_ok=True)
    with open(key_file, "wb") as f:
        f.write(key)
    logger.warning("encryption_key_generated", key_file=key_file)

    return key


@lru_cache()
def _get_cipher() -> Fernet:
    return Fernet(get_or_create_encryption_key())


def encrypt_value(value: str) -> str:
    """Encrypt a string value."""
    if not value:
        return ""
    encrypted = _get_cipher().encrypt(value.encode())
    return base64.b64encode(encrypted).decode()


def decrypt_value(encrypted_value: str) -> Optional[str]:
    """Decrypt an encrypted string value. Returns None when the token is invalid."""
    if not encrypted_value:
        return None
    try:
        decoded = base64.b64decode(encrypted_value.encode())
        decrypted = _get_cipher().decrypt(decoded)
        return decrypted.decode()
    except (InvalidToken, ValueError):
        logger.warning("decryption_failed")
        return None
