"""
Secret encryption for member-supplied credentials (Telegram bot tokens) using Fernet.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


def _get_fernet() -> Fernet:
    """Get Fernet instance from encryption key."""
    key = settings.ENCRYPTION_KEY

    # If key is not 32 bytes, derive a key using PBKDF2
    if len(key) != 32:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"point_ledger_secret_salt",
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(key.encode()))
    else:
        key = base64.urlsafe_b64encode(key.encode())

    return Fernet(key)


def encrypt_secret(secret: str) -> str:
    """Encrypt a secret for storage; returns URL-safe base64 text."""
    return _get_fernet().encrypt(secret.encode()).decode()


def decrypt_secret(encrypted_secret: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored secret.

    Returns None when nothing is stored or the value cannot be decrypted
    with the current key (for example after key rotation).
    """
    if not encrypted_secret:
        return None
    try:
        return _get_fernet().decrypt(encrypted_secret.encode()).decode()
    except InvalidToken:
        return None
