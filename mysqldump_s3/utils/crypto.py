"""
Encryption utilities for the MySQL password in settings files.

Uses Fernet symmetric encryption with a key derived from a passphrase
(MYSQLDUMP_S3_PASSPHRASE), so a settings file can carry
``password_encrypted=...`` instead of the plaintext password.
"""

import base64
import binascii

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class CredentialError(Exception):
    """Raised when a credential cannot be encrypted or decrypted."""
    pass


class CredentialCipher:
    """
    Encrypts and decrypts credentials with a passphrase-derived key.

    The salt is fixed because the token has to be decryptable on any host
    that knows the passphrase; the passphrase itself is the secret.
    """

    SALT = b'mysqldump_s3_credentials_salt_v1'
    ITERATIONS = 480000

    def __init__(self, passphrase: str):
        """
        Derive the Fernet key.

        Args:
            passphrase: Shared secret used to derive the encryption key

        Raises:
            CredentialError: If the passphrase is empty
        """
        if not passphrase:
            raise CredentialError("passphrase must not be empty")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self.SALT,
            iterations=self.ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a password for a settings file.

        Args:
            plaintext: Password in plaintext

        Returns:
            Base64-encoded token
        """
        encrypted_bytes = self._fernet.encrypt(plaintext.encode())
        return base64.urlsafe_b64encode(encrypted_bytes).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Args:
            token: Base64-encoded token

        Returns:
            Plaintext password

        Raises:
            CredentialError: If the token is malformed or the passphrase is wrong
        """
        try:
            encrypted_bytes = base64.urlsafe_b64decode(token.encode())
            return self._fernet.decrypt(encrypted_bytes).decode()
        except (InvalidToken, binascii.Error, ValueError) as e:
            raise CredentialError(f"invalid token or wrong passphrase ({type(e).__name__})")
