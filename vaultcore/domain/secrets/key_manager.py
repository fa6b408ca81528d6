import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from vaultcore.errors import KeyNotFoundError, ValidationError

from .models import (
    EncryptionAlgorithm,
    EncryptionKey,
    KeyStatus,
    KeyUsage,
    RotationSchedule,
    SecurityLevel,
    to_iso,
)
from .ports import KeyStore

logger = logging.getLogger(__name__)

ALGORITHM_FOR_LEVEL: Dict[SecurityLevel, EncryptionAlgorithm] = {
    SecurityLevel.PUBLIC: EncryptionAlgorithm.AES_128_CBC,
    SecurityLevel.INTERNAL: EncryptionAlgorithm.AES_256_CBC,
    SecurityLevel.CONFIDENTIAL: EncryptionAlgorithm.AES_128_GCM,
    SecurityLevel.SECRET: EncryptionAlgorithm.AES_256_GCM,
    SecurityLevel.TOP_SECRET: EncryptionAlgorithm.CHACHA20_POLY1305,
}

LEVEL_FOR_ALGORITHM: Dict[EncryptionAlgorithm, SecurityLevel] = {
    alg: level for level, alg in ALGORITHM_FOR_LEVEL.items()
}

# Derived key length in bytes
KEY_BYTES: Dict[SecurityLevel, int] = {
    SecurityLevel.PUBLIC: 16,
    SecurityLevel.INTERNAL: 32,
    SecurityLevel.CONFIDENTIAL: 32,
    SecurityLevel.SECRET: 32,
    SecurityLevel.TOP_SECRET: 32,
}

ROTATION_DAYS: Dict[SecurityLevel, int] = {
    SecurityLevel.PUBLIC: 365,
    SecurityLevel.INTERNAL: 180,
    SecurityLevel.CONFIDENTIAL: 90,
    SecurityLevel.SECRET: 30,
    SecurityLevel.TOP_SECRET: 7,
}


def _rotation_schedule(level: SecurityLevel, now: Optional[datetime] = None) -> RotationSchedule:
    now = now or datetime.now(timezone.utc)
    days = ROTATION_DAYS[level]
    return RotationSchedule(interval_days=days, next_rotation=to_iso(now + timedelta(days=days)))


class KeyManager:
    """Manages encryption key registry lifecycle (Versioning, Rotation).

    The registry is bookkeeping: key material is always re-derived from the
    master key and never stored here.
    """

    def __init__(self, store: Optional[KeyStore] = None):
        if store is None:
            from vaultcore.adapters.memory_store.stores import MemoryKeyStore
            store = MemoryKeyStore()
        self.store = store
        self._lock = threading.Lock()

    def generate_key(
        self,
        key_id: str,
        level: SecurityLevel,
        algorithm: Optional[EncryptionAlgorithm] = None
    ) -> EncryptionKey:
        """Register version 1 of a new key for ``level``.

        Raises:
            ValidationError: ``key_id`` is already registered.
        """
        algorithm = algorithm or ALGORITHM_FOR_LEVEL[level]
        key = EncryptionKey(
            id=key_id,
            version=1,
            security_level=level,
            algorithm=algorithm,
            key_size=KEY_BYTES[level] * 8,
            usage=KeyUsage.BOTH,
            status=KeyStatus.ACTIVE,
            rotation_schedule=_rotation_schedule(level),
        )
        self.register_key(key)
        return key

    def register_key(self, key: EncryptionKey) -> None:
        """Append ``key`` as the newest version of its id.

        The previous active version is marked deprecated, so only one
        version of a key is ever active.

        Raises:
            ValidationError: ``key.version`` is not newer than the current one.
        """
        with self._lock:
            current = self.store.current(key.id)
            if current is not None:
                if key.version <= current.version:
                    raise ValidationError(
                        f"Key {key.id} already has version {current.version}; rotate it instead",
                        details={"key_id": key.id, "current_version": current.version},
                    )
                if current.status == KeyStatus.ACTIVE:
                    self.store.replace_current(current.model_copy(update={"status": KeyStatus.DEPRECATED}))
            self.store.append(key)
        logger.info(f"Registered key {key.id} v{key.version} ({key.algorithm.value})")

    def get_key(self, key_id: str) -> Optional[EncryptionKey]:
        return self.store.current(key_id)

    def list_keys(self) -> List[EncryptionKey]:
        return self.store.list_current()

    def key_history(self, key_id: str) -> List[EncryptionKey]:
        return self.store.history(key_id)

    def ensure_key(self, key_id: str, level: SecurityLevel, version: int = 1) -> EncryptionKey:
        """Return the current key record, registering one if missing."""
        existing = self.store.current(key_id)
        if existing is not None:
            return existing

        key = EncryptionKey(
            id=key_id,
            version=version,
            security_level=level,
            algorithm=ALGORITHM_FOR_LEVEL[level],
            key_size=KEY_BYTES[level] * 8,
            rotation_schedule=_rotation_schedule(level),
        )
        with self._lock:
            # Re-check under lock: concurrent first encrypts register once
            existing = self.store.current(key_id)
            if existing is not None:
                return existing
            self.store.append(key)
        logger.info(f"Registered key {key_id} v{version} on first use")
        return key

    def current_version(self, key_id: str) -> int:
        key = self.store.current(key_id)
        if key is None:
            raise KeyNotFoundError(key_id)
        return key.version

    def rotate_key(self, key_id: str) -> EncryptionKey:
        """Deprecate the current version and register version + 1.

        Existing ciphertexts are not re-encrypted.
        """
        with self._lock:
            current = self.store.current(key_id)
            if current is None:
                raise KeyNotFoundError(key_id)

            self.store.replace_current(current.model_copy(update={"status": KeyStatus.DEPRECATED}))

            rotated = current.model_copy(update={
                "version": current.version + 1,
                "status": KeyStatus.ACTIVE,
                "created_at": to_iso(datetime.now(timezone.utc)),
                "rotation_schedule": _rotation_schedule(current.security_level),
            })
            self.store.append(rotated)

        logger.info(f"Rotated key {key_id} to v{rotated.version}")
        return rotated
