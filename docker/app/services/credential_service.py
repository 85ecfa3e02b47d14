"""Fernet encryption for secrets kept in the database (SMTP password)."""

import base64
import binascii
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import get_settings

_KDF_SALT = b"inspi-secret-salt-v1"
_KDF_ITERATIONS = 480000


class CredentialEncryptionError(Exception):
    """Exception for secret encryption errors."""

    def __init__(self, message: str, code: str = "encryption_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class CredentialService:
    """Encrypts and decrypts stored secrets.

    The key is CREDENTIAL_ENCRYPTION_KEY: either a Fernet key or a
    passphrase that is stretched with PBKDF2.
    """

    def __init__(self, encryption_key: Optional[str] = None):
        key = encryption_key or get_settings().credential_encryption_key
        self._fernet: Optional[Fernet] = self._create_fernet(key) if key else None

    @property
    def is_configured(self) -> bool:
        return self._fernet is not None

    @staticmethod
    def _create_fernet(key: str) -> Fernet:
        try:
            if len(base64.urlsafe_b64decode(key)) == 32:
                return Fernet(key)
        except (binascii.Error, ValueError):
            pass

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode("utf-8"))))

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise CredentialEncryptionError("Encryption key not configured", "no_encryption_key")
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string.

        Raises:
            CredentialEncryptionError: If no key is configured
        """
        return self._require_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a string produced by :meth:`encrypt`.

        Raises:
            CredentialEncryptionError: If no key is configured or the token is invalid
        """
        fernet = self._require_fernet()
        try:
            return fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise CredentialEncryptionError("Invalid or corrupted ciphertext", "invalid_ciphertext")

    @staticmethod
    def generate_key() -> str:
        """Generate a value suitable for CREDENTIAL_ENCRYPTION_KEY."""
        return Fernet.generate_key().decode("utf-8")
