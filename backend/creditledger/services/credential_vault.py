"""
Credential encryption for accounts' own AI provider keys (Fernet).
"""

import base64
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

KDF_SALT = b"creditledger_credential_vault"
KDF_ITERATIONS = 100000


class CredentialDecryptionError(Exception):
    """Stored credential cannot be decrypted with the current key."""


def _get_fernet() -> Fernet:
    """Get Fernet instance from ENCRYPTION_KEY."""
    key = os.getenv("ENCRYPTION_KEY")
    if not key:
        raise RuntimeError("ENCRYPTION_KEY environment variable is not set")

    # Accept a ready-made Fernet key, otherwise derive one
    try:
        return Fernet(key.encode())
    except ValueError:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        derived = base64.urlsafe_b64encode(kdf.derive(key.encode()))
        return Fernet(derived)


def encrypt_credential(plain: str) -> str:
    """
    Encrypt an API key for storage.

    Args:
        plain: Plain text API key

    Returns:
        URL-safe base64 token
    """
    return _get_fernet().encrypt(plain.encode()).decode()


def decrypt_credential(encrypted: str) -> str:
    """
    Decrypt a stored API key.

    Raises:
        CredentialDecryptionError: token is corrupt or was encrypted with another key
    """
    try:
        return _get_fernet().decrypt(encrypted.encode()).decode()
    except (InvalidToken, ValueError) as e:
        raise CredentialDecryptionError("Stored credential could not be decrypted") from e
