"""Encrypted credential store.

Page access tokens never travel through the rest of the system as raw
strings: callers hold an opaque ``credential_ref`` and only the channel
adapter asks this store to reveal the token at send time.
"""

import uuid

import structlog
from cryptography.fernet import Fernet, InvalidToken

from minechat.core.config import settings
from minechat.core.exceptions import ConfigurationError
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()


class SecretStore:
    """Fernet-encrypted secrets persisted through the storage backend."""

    def __init__(self, storage: StorageBackend, key: str | bytes | None = None) -> None:
        self.storage = storage
        self._cipher = self._get_cipher(key if key is not None else settings.credential_encryption_key)

    def _get_cipher(self, key: str | bytes) -> Fernet:
        if not key:
            if settings.is_production:
                raise ConfigurationError(
                    "CREDENTIAL_ENCRYPTION_KEY must be set in production. "
                    "Generate one with Fernet.generate_key()."
                )
            # Credentials encrypted with this key do not survive a restart.
            logger.warning("Using ephemeral credential encryption key")
            key = Fernet.generate_key()

        try:
            return Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid credential encryption key: {e}") from e

    async def put(self, secret: str) -> str:
        """Encrypt and store a secret, returning its opaque reference."""
        ref = f"cred_{uuid.uuid4().hex}"
        ciphertext = self._cipher.encrypt(secret.encode()).decode()
        await self.storage.put_secret(ref, ciphertext)
        return ref

    async def reveal(self, ref: str) -> str | None:
        """Decrypt the secret behind a reference, None if revoked or unreadable."""
        ciphertext = await self.storage.get_secret(ref)
        if ciphertext is None:
            return None

        try:
            return self._cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Credential could not be decrypted", credential_ref=ref)
            return None

    async def revoke(self, ref: str | None) -> bool:
        """Delete a stored secret. Unknown or empty references are a no-op."""
        if not ref:
            return False
        return await self.storage.delete_secret(ref)


# Singleton instance
_secret_store: SecretStore | None = None


def get_secret_store(storage: StorageBackend) -> SecretStore:
    """Get or create the secret store bound to the given storage backend."""
    global _secret_store
    if _secret_store is None or _secret_store.storage is not storage:
        _secret_store = SecretStore(storage)
    return _secret_store


def reset_secret_store() -> None:
    """Reset secret store (for testing)."""
    global _secret_store
    _secret_store = None
