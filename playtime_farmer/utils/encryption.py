"""Password encryption utilities using Fernet symmetric encryption."""

import hashlib
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from loguru import logger


class PasswordEncryption:
    """Handles password encryption and decryption using Fernet."""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize encryption with key.

        Args:
            encryption_key: Base64-encoded Fernet key. If None, reads from env.

        Raises:
            ValueError: If encryption key is not provided or invalid
        """
        key = encryption_key or os.getenv("ENCRYPTION_KEY")
        if not key:
            raise ValueError(
                "ENCRYPTION_KEY must be set to use encrypted passwords. "
                'Generate one with: python -c "from cryptography.fernet import Fernet; '
                'print(Fernet.generate_key().decode())"'
            )

        try:
            self._key_hash = hashlib.sha256(key.encode()).hexdigest()[:16]

            # New key first, then the old key during rotation
            fernet_keys = [Fernet(key.encode())]
            old_key = os.getenv("ENCRYPTION_KEY_OLD")
            if old_key:
                try:
                    fernet_keys.append(Fernet(old_key.encode()))
                    logger.info("Old encryption key loaded for key rotation support")
                except ValueError as e:
                    logger.warning(f"Failed to load old encryption key: {e}")

            self.cipher = MultiFernet(fernet_keys)
        except ValueError as e:
            raise ValueError(f"Invalid ENCRYPTION_KEY: {e}") from e

        logger.debug(f"Password encryption initialized (key hash: {self._key_hash})")

    @property
    def key_hash(self) -> str:
        """Return truncated hash of current key for identification."""
        return self._key_hash

    def encrypt_password(self, password: str) -> str:
        """
        Encrypt a password.

        Args:
            password: Plain text password

        Returns:
            Fernet token as text
        """
        return self.cipher.encrypt(password.encode()).decode()

    def decrypt_password(self, encrypted_password: str) -> str:
        """
        Decrypt a password.

        Args:
            encrypted_password: Fernet token

        Returns:
            Plain text password

        Raises:
            ValueError: If no configured key can decrypt the token
        """
        try:
            return self.cipher.decrypt(encrypted_password.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Password cannot be decrypted with the configured keys") from e


def encrypt_password(password: str, encryption_key: Optional[str] = None) -> str:
    """Encrypt ``password`` with the given key or ENCRYPTION_KEY."""
    return PasswordEncryption(encryption_key).encrypt_password(password)


def decrypt_password(encrypted_password: str, encryption_key: Optional[str] = None) -> str:
    """Decrypt ``encrypted_password`` with the given key or ENCRYPTION_KEY."""
    return PasswordEncryption(encryption_key).decrypt_password(encrypted_password)
