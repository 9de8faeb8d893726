"""
Encryption of stored SSH passwords.

The settings mapping may carry a password_encrypted token instead of a
plaintext password. Tokens are Fernet ciphertexts keyed by a master
passphrase; only the backup contents themselves are left unencrypted.
"""

import base64
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sshbackup.errors import ValidationError


KDF_ITERATIONS = 480000


class CredentialCipher:
    """Encrypts and decrypts SSH passwords with a passphrase-derived key."""

    def __init__(self, passphrase: str, salt: bytes = None):
        """
        Derive the Fernet key.

        Args:
            passphrase: Master passphrase
            salt: 16-byte salt; a new one is generated when omitted
        """
        if not passphrase:
            raise ValidationError("Master passphrase must not be empty")

        self.salt = salt if salt is not None else os.urandom(16)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self.salt,
            iterations=KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))
        self._fernet = Fernet(key)

    @classmethod
    def from_encoded_salt(cls, passphrase: str, encoded_salt: str) -> 'CredentialCipher':
        """Build a cipher from a salt stored as urlsafe base64 text."""
        try:
            salt = base64.urlsafe_b64decode(encoded_salt.encode())
        except ValueError as e:
            raise ValidationError(f"Invalid master salt: {e}", cause=e) from e
        if len(salt) < 16:
            raise ValidationError("Invalid master salt: expected at least 16 bytes")
        return cls(passphrase, salt)

    @property
    def encoded_salt(self) -> str:
        return base64.urlsafe_b64encode(self.salt).decode()

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a password.

        Returns:
            Fernet token as text
        """
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a password token.

        Raises:
            ValidationError: If the token was not produced with this passphrase and salt
        """
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise ValidationError("Failed to decrypt SSH password: invalid token or passphrase", cause=e) from e
