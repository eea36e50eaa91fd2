from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from multipost.config import settings
from multipost.utils.logging import get_logger

logger = get_logger(__name__)

def _fernet() -> Fernet:
    if not settings.fernet_key:
        raise RuntimeError("FERNET_KEY is missing in .env")
    return Fernet(settings.fernet_key.encode())

def encrypt_token(plain: str) -> str:
    return _fernet().encrypt(plain.encode()).decode()

def encrypt_optional(plain: Optional[str]) -> Optional[str]:
    return encrypt_token(plain) if plain else None

def decrypt_token(cipher: str) -> str:
    try:
        return _fernet().decrypt(cipher.encode()).decode()
    except (TypeError, AttributeError, InvalidToken) as e:
        # caller decides whether this means reconnect or 500
        logger.warning("token_decrypt_failed", error=type(e).__name__)
        raise
