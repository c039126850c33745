# linkledger/utils/security.py
"""Router credential encryption at rest (Fernet)."""
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def _cipher() -> Optional[Fernet]:
    settings = get_settings()
    if not settings.encryption_key:
        if settings.is_production:
            raise RuntimeError(
                "FATAL: ENCRYPTION_KEY is not set. It is mandatory in production "
                "to protect NAS router credentials."
            )
        logger.warning("ENCRYPTION_KEY is not set. Router passwords are stored in clear text.")
        return None
    return Fernet(settings.encryption_key.encode())


def encrypt_data(data: str) -> str:
    cipher = _cipher()
    if not cipher or not data:
        return data
    return cipher.encrypt(data.encode()).decode()


def decrypt_data(token: str) -> str:
    cipher = _cipher()
    if not cipher or not token:
        return token
    try:
        return cipher.decrypt(token.encode()).decode()
    except InvalidToken:
        # Rows written before the key was configured are plain text
        logger.warning("Could not decrypt a router password, assuming legacy plain text.")
        return token
