"""
Encryption for OAuth secrets stored in auth_tokens.
Uses Fernet symmetric encryption with the configured ENCRYPTION_KEY.
Without a key, values pass through unchanged (local development).
"""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


def _get_fernet() -> Optional[Fernet]:
    from src.config import get_settings

    key = get_settings().encryption_key
    if not key:
        return None
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_secret(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a token for storage. None and empty strings are stored as-is."""
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        return plaintext
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_secret(stored: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored token.
    Rows written before a key was configured are plaintext and returned as-is.
    """
    if not stored:
        return stored

    fernet = _get_fernet()
    if fernet is None:
        return stored

    try:
        return fernet.decrypt(stored.encode()).decode()
    except InvalidToken:
        logger.debug("Stored token is not Fernet-encrypted, using raw value")
        return stored
