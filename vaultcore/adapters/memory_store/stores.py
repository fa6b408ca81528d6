"""Memory Store Implementations."""
from typing import Any, Dict, List, Optional, Set
import logging

from vaultcore.domain.policy.models import AccessPolicy
from vaultcore.domain.policy.ports import PolicyStore
from vaultcore.domain.secrets.models import AccessStats, EncryptionKey, SecretRecord, utc_now_iso
from vaultcore.domain.secrets.ports import KeyStore, SecretBackend

logger = logging.getLogger(__name__)


class MemoryPolicyStore(PolicyStore):
    def __init__(self):
        # dicts keep insertion order = registration order
        self._policies: Dict[str, AccessPolicy] = {}

    def put(self, policy: AccessPolicy) -> None:
        self._policies[policy.id] = policy

    def remove(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None

    def get(self, policy_id: str) -> Optional[AccessPolicy]:
        return self._policies.get(policy_id)

    def list_policies(self) -> List[AccessPolicy]:
        return list(self._policies.values())


class MemoryKeyStore(KeyStore):
    def __init__(self):
        self._keys: Dict[str, List[EncryptionKey]] = {}

    def append(self, key: EncryptionKey) -> None:
        self._keys.setdefault(key.id, []).append(key)

    def replace_current(self, key: EncryptionKey) -> None:
        versions = self._keys.get(key.id)
        if not versions:
            self._keys[key.id] = [key]
            return
        versions[-1] = key

    def current(self, key_id: str) -> Optional[EncryptionKey]:
        versions = self._keys.get(key_id)
        return versions[-1] if versions else None

    def history(self, key_id: str) -> List[EncryptionKey]:
        return list(self._keys.get(key_id, []))

    def list_current(self) -> List[EncryptionKey]:
        return [versions[-1] for versions in self._keys.values() if versions]


class MemorySecretBackend(SecretBackend):
    def __init__(self):
        self._records: Dict[str, SecretRecord] = {}
        self._ciphertexts: Dict[str, str] = {}
        self._users: Dict[str, Set[str]] = {}

    async def store(self, record: SecretRecord, ciphertext: str) -> None:
        self._records[record.id] = record.model_copy(update={"value": None}, deep=True)
        self._ciphertexts[record.id] = ciphertext

    async def fetch_metadata(self, secret_id: str) -> Optional[SecretRecord]:
        record = self._records.get(secret_id)
        return record.model_copy(deep=True) if record else None

    async def fetch_ciphertext(self, secret_id: str) -> Optional[str]:
        return self._ciphertexts.get(secret_id)

    async def update_record(self, record: SecretRecord) -> None:
        if record.id not in self._records:
            raise KeyError(f"Secret {record.id} is not stored")
        self._records[record.id] = record.model_copy(update={"value": None}, deep=True)

    async def list_records(self) -> List[SecretRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    async def record_access(self, secret_id: str, user_id: str, granted: bool) -> AccessStats:
        record = self._records.get(secret_id)
        if record is None:
            raise KeyError(f"Secret {secret_id} is not stored")

        stats = record.access_stats
        if granted:
            users = self._users.setdefault(secret_id, set())
            users.add(user_id)
            stats.total_access += 1
            stats.last_access = utc_now_iso()
            stats.unique_users = len(users)
        else:
            stats.failed_attempts += 1
        return stats.model_copy()


class MemoryAuditSink:
    """Collects audit events in a list."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def by_outcome(self, outcome: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e.get("outcome") == outcome]
