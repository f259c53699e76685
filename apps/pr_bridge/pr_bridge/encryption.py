"""Encryption utilities for legacy repository access tokens."""

import logging
import os
import secrets

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_BYTES = 32


class EncryptionKeyMissingError(ValueError):
    """Raised when TOKEN_ENCRYPTION_KEY environment variable is not set."""


def _get_encryption_key() -> bytes:
    """Get the Fernet key from the environment.

    Returns:
        32-byte url-safe base64 Fernet key

    Raises:
        EncryptionKeyMissingError: If TOKEN_ENCRYPTION_KEY is not set
    """
    explicit_key = os.environ.get("TOKEN_ENCRYPTION_KEY")
    if not explicit_key:
        raise EncryptionKeyMissingError

    return explicit_key.encode()


def encrypt_token(token: str) -> str:
    """Encrypt a GitHub access token for storage on a repository record.

    Args:
        token: The plaintext token to encrypt

    Returns:
        Fernet token as text, or empty string for an empty input
    """
    if not token:
        return ""

    f = Fernet(_get_encryption_key())
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored access token.

    Args:
        encrypted_token: The Fernet token produced by ``encrypt_token``

    Returns:
        The plaintext token, or empty string if decryption fails
    """
    if not encrypted_token:
        return ""

    try:
        f = Fernet(_get_encryption_key())
        return f.decrypt(encrypted_token.encode()).decode()
    except InvalidToken:
        logger.warning("Failed to decrypt token: invalid token")
        return ""
    except EncryptionKeyMissingError:
        logger.warning("Failed to decrypt token: encryption key not set")
        return ""


def generate_webhook_secret() -> str:
    """Generate a 64-character lowercase hex webhook secret."""
    return secrets.token_hex(WEBHOOK_SECRET_BYTES)
