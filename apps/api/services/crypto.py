"""
Credential encryption for stored provider tokens (Fernet symmetric encryption).
"""

import base64
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings
from services.errors import StorageError


@lru_cache(maxsize=4)
def _fernet_for(key: str) -> Fernet:
    # Raw 32-byte keys are used directly; anything else is stretched with PBKDF2.
    if len(key) == 32:
        return Fernet(base64.urlsafe_b64encode(key.encode()))
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"lifeline_ingest_credential_salt",
        iterations=100000,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


def _get_fernet() -> Fernet:
    return _fernet_for(settings.ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """
    Encrypt a provider token before it is written to the credential store.

    Args:
        token: Plain text access or refresh token

    Returns:
        URL-safe Fernet ciphertext
    """
    return _get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a stored provider token.

    Raises:
        StorageError: ciphertext was produced with a different key or is corrupt
    """
    try:
        return _get_fernet().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as exc:
        raise StorageError("Stored credential could not be decrypted.") from exc


def encrypt_optional(token: Optional[str]) -> Optional[str]:
    return encrypt_token(token) if token else None


def decrypt_optional(encrypted_token: Optional[str]) -> Optional[str]:
    return decrypt_token(encrypted_token) if encrypted_token else None


def generate_encryption_key() -> str:
    """Generate a new random encryption key for .env file."""
    return Fernet.generate_key().decode()
