"""Secrets Domain Ports (Interfaces)."""
from abc import ABC, abstractmethod
from typing import List, Optional

from .models import AccessStats, EncryptionKey, SecretRecord


class KeyStore(ABC):
    """Abstract Port for the encryption key registry.

    Records are bookkeeping: every version of a key is kept, none is ever
    deleted.
    """

    @abstractmethod
    def append(self, key: EncryptionKey) -> None:
        """Append a key version."""
        ...

    @abstractmethod
    def replace_current(self, key: EncryptionKey) -> None:
        """Overwrite the latest version of ``key.id`` (status changes)."""
        ...

    @abstractmethod
    def current(self, key_id: str) -> Optional[EncryptionKey]:
        """Latest version of a key, or None."""
        ...

    @abstractmethod
    def history(self, key_id: str) -> List[EncryptionKey]:
        """All versions, oldest first."""
        ...

    @abstractmethod
    def list_current(self) -> List[EncryptionKey]:
        ...


class SecretBackend(ABC):
    """Abstract Port for secret persistence.

    The backend stores ciphertext plus ``SecretRecord`` metadata and never
    sees plaintext. Errors propagate unchanged; callers do not retry.
    """

    @abstractmethod
    async def store(self, record: SecretRecord, ciphertext: str) -> None:
        """Create or overwrite a secret and its ciphertext."""
        ...

    @abstractmethod
    async def fetch_metadata(self, secret_id: str) -> Optional[SecretRecord]:
        """Metadata-only view; ``value`` is never set."""
        ...

    @abstractmethod
    async def fetch_ciphertext(self, secret_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def update_record(self, record: SecretRecord) -> None:
        """Persist metadata changes without touching the ciphertext."""
        ...

    @abstractmethod
    async def list_records(self) -> List[SecretRecord]:
        ...

    @abstractmethod
    async def record_access(self, secret_id: str, user_id: str, granted: bool) -> AccessStats:
        """Update and return access statistics for one attempt."""
        ...
