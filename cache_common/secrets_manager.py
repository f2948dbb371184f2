"""
Secrets management for the cache service.
"""

import os
import json
import base64
from typing import Dict, Optional
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import logging

from cache_common.errors import ConfigInvalidError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CACHE_"


class SecretsManager:
    """
    Resolves secrets from the environment first, then from an encrypted
    JSON secrets file.
    """

    def __init__(self, master_key: Optional[str] = None, secrets_file: Optional[str] = None):
        """
        Initialize the secrets manager.

        Args:
            master_key: Master key for encryption/decryption. Without one,
                only environment lookups are available.
            secrets_file: Path to the encrypted secrets file
        """
        self.master_key = master_key or os.getenv(f"{ENV_PREFIX}MASTER_KEY")
        self.secrets_file = secrets_file or os.getenv(f"{ENV_PREFIX}SECRETS_FILE")
        self._fernet = self._create_fernet() if self.master_key else None

    def _create_fernet(self) -> Fernet:
        """
        Create a Fernet cipher instance.

        Returns:
            Fernet cipher instance
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b'cache_service_salt',
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self.master_key.encode()))
        return Fernet(key)

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise ConfigInvalidError("Master key is required for encrypted secrets")
        return self._fernet

    def encrypt_secret(self, secret: str) -> str:
        """
        Encrypt a secret.

        Args:
            secret: Secret to encrypt

        Returns:
            Encrypted secret
        """
        encrypted = self._require_fernet().encrypt(secret.encode())
        return base64.urlsafe_b64encode(encrypted).decode()

    def decrypt_secret(self, encrypted_secret: str) -> str:
        """
        Decrypt a secret.

        Args:
            encrypted_secret: Encrypted secret

        Returns:
            Decrypted secret
        """
        fernet = self._require_fernet()
        try:
            decoded = base64.urlsafe_b64decode(encrypted_secret.encode())
            return fernet.decrypt(decoded).decode()
        except (InvalidToken, ValueError) as e:
            logger.error(f"Failed to decrypt secret: {e}")
            raise ConfigInvalidError("Secret could not be decrypted") from e

    def load_secrets_file(self) -> Dict[str, str]:
        """Read the raw (still encrypted) secrets file."""
        if not self.secrets_file or not os.path.exists(self.secrets_file):
            return {}
        try:
            with open(self.secrets_file, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read secrets file: {e}")
            return {}

    def get_secret(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get a secret by key.

        Args:
            key: Secret key
            default: Default value if secret not found

        Returns:
            Secret value or default
        """
        secret = os.getenv(f"{ENV_PREFIX}{key.upper()}")
        if secret:
            return secret

        secrets = self.load_secrets_file()
        if key in secrets and self._fernet is not None:
            return self.decrypt_secret(secrets[key])

        return default

    def set_secret(self, key: str, value: str) -> None:
        """
        Encrypt and store a secret in the secrets file.

        Args:
            key: Secret key
            value: Secret value
        """
        if not self.secrets_file:
            raise ConfigInvalidError("No secrets file configured")

        secrets = self.load_secrets_file()
        secrets[key] = self.encrypt_secret(value)

        with open(self.secrets_file, 'w') as f:
            json.dump(secrets, f, indent=2)
        logger.info(f"Secret '{key}' saved to {self.secrets_file}")

