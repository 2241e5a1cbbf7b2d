"""Encryption utilities for OAuth tokens at rest.

Uses Fernet symmetric encryption with a master key from settings.
"""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from likes_archive.config import settings
from likes_archive.logging import get_logger

logger = get_logger(__name__)

# Generated dev key, kept for the process lifetime
_generated_dev_key: str | None = None


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""

    pass


def _get_master_key() -> bytes:
    """Get the master encryption key.

    The key must be a valid 32-byte base64-encoded Fernet key. Without one a
    random key is generated, and tokens stored with it become unreadable
    after a restart.
    """
    global _generated_dev_key

    key = settings.encryption_master_key

    if not key:
        if _generated_dev_key is None:
            _generated_dev_key = Fernet.generate_key().decode()
            logger.warning(
                "encryption_using_generated_key",
                hint="Run `likes-archive generate-key` and set ENCRYPTION_MASTER_KEY in .env",
            )
        key = _generated_dev_key

    return key.encode()


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Get a cached Fernet instance with the master key."""
    try:
        return Fernet(_get_master_key())
    except ValueError as e:
        raise EncryptionError(f"Failed to initialize encryption: {e}") from e


def encrypt_token(token: str) -> str:
    """Encrypt a token for secure storage.

    Args:
        token: The plaintext token to encrypt.

    Returns:
        The encrypted token as a base64-encoded string.

    Raises:
        EncryptionError: If the token is empty.
    """
    if not token:
        raise EncryptionError("Cannot encrypt empty token")

    return get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token.

    Raises:
        EncryptionError: If decryption fails (invalid key or corrupted data).
    """
    if not encrypted_token:
        raise EncryptionError("Cannot decrypt empty token")

    try:
        return get_fernet().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise EncryptionError(
            "Failed to decrypt token: Invalid key or corrupted data. "
            "This may happen if ENCRYPTION_MASTER_KEY changed."
        ) from e


def generate_master_key() -> str:
    """Generate a new master encryption key."""
    return Fernet.generate_key().decode()
