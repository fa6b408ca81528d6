"""Multi-level encryption engine.

Encrypts secrets with a cipher chosen by security level, using a key derived
per call from the master key with scrypt. All binary fields in the produced
metadata are lowercase hex.

| Level        | Algorithm          | Key bytes |
|--------------|--------------------|-----------|
| public       | aes-128-cbc        | 16        |
| internal     | aes-256-cbc        | 32        |
| confidential | aes-128-gcm        | 32        |
| secret       | aes-256-gcm        | 32        |
| top_secret   | chacha20-poly1305  | 32        |

Every algorithm uses a 16-byte IV. ChaCha20-Poly1305 takes a 12-byte nonce,
so only the first 12 bytes of the stored IV are fed to it.
"""
import asyncio
import hashlib
import hmac
import logging
import os
import re
from typing import Any, List, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import ValidationError as PydanticValidationError

from vaultcore.errors import DecryptionError, EncryptionError, IntegrityError, ValidationError

from .key_manager import ALGORITHM_FOR_LEVEL, KEY_BYTES, LEVEL_FOR_ALGORITHM, KeyManager
from .models import (
    EncryptionAlgorithm,
    EncryptionKey,
    EncryptionMetadata,
    EncryptionResult,
    KeyDerivationFunction,
    SecurityLevel,
    utc_now_iso,
)
from .ports import KeyStore

logger = logging.getLogger(__name__)

IV_BYTES = 16
SALT_BYTES = 32
TAG_BYTES = 16
CHACHA_NONCE_BYTES = 12

# Scrypt cost parameters
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1

_HEX = re.compile(r"^[0-9a-fA-F]*$")
_CHECKSUM = re.compile(r"^[0-9a-fA-F]{64}$")

MetadataInput = Union[EncryptionMetadata, Mapping[str, Any]]


def algorithm_for_level(level: SecurityLevel) -> EncryptionAlgorithm:
    return ALGORITHM_FOR_LEVEL[SecurityLevel(level)]


def level_for_algorithm(algorithm: EncryptionAlgorithm) -> SecurityLevel:
    return LEVEL_FOR_ALGORITHM[EncryptionAlgorithm(algorithm)]


def _checksum(ciphertext: bytes, key: bytes, iv: bytes) -> str:
    return hashlib.sha256(ciphertext + key + iv).hexdigest()


def _aad_bytes(additional_data: Optional[str]) -> Optional[bytes]:
    return additional_data.encode("utf-8") if additional_data else None


def _hex_len(value: Optional[str]) -> Optional[int]:
    """Decoded byte length of a hex string, None if not valid hex."""
    if value is None or len(value) % 2 or not _HEX.match(value):
        return None
    return len(value) // 2


def _metadata_problems(metadata: MetadataInput) -> List[str]:
    if not isinstance(metadata, EncryptionMetadata):
        try:
            metadata = EncryptionMetadata.model_validate(dict(metadata))
        except (PydanticValidationError, TypeError, ValueError) as e:
            return [f"malformed metadata: {e}"]

    problems = []
    if not metadata.key_id:
        problems.append("keyId is required")
    if _hex_len(metadata.iv) != IV_BYTES:
        problems.append(f"iv must be {IV_BYTES} bytes of hex")
    if not _CHECKSUM.match(metadata.checksum or ""):
        problems.append("checksum must be 64 hex characters")
    if metadata.algorithm.is_aead and _hex_len(metadata.tag) != TAG_BYTES:
        problems.append(f"tag of {TAG_BYTES} bytes is required for {metadata.algorithm.value}")
    if metadata.salt is not None and _hex_len(metadata.salt) is None:
        problems.append("salt must be hex")
    return problems


class MultiLevelEncryption:
    """Encryption engine with per-level algorithms and a key registry."""

    def __init__(
        self,
        master_key: Optional[Union[bytes, str]] = None,
        key_store: Optional[KeyStore] = None
    ):
        if master_key is None:
            self._master_key = os.urandom(32)
        elif isinstance(master_key, str):
            try:
                self._master_key = bytes.fromhex(master_key)
            except ValueError:
                raise ValidationError("Master key must be a hex string")
        else:
            self._master_key = bytes(master_key)

        if not self._master_key:
            raise ValidationError("Master key must not be empty")

        self.keys = KeyManager(key_store)

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def _derive_sync(self, key_id: str, level: SecurityLevel, salt: bytes) -> bytes:
        kdf = Scrypt(
            salt=f"{key_id}:{level.value}:{salt.hex()}".encode("utf-8"),
            length=KEY_BYTES[level],
            n=SCRYPT_N,
            r=SCRYPT_R,
            p=SCRYPT_P,
        )
        return kdf.derive(self._master_key)

    async def derive_key(self, key_id: str, level: SecurityLevel, salt: bytes) -> bytes:
        """Derive the key for (key_id, level, salt). Runs off the event loop."""
        return await asyncio.to_thread(self._derive_sync, key_id, SecurityLevel(level), salt)

    # ------------------------------------------------------------------
    # Encrypt / decrypt
    # ------------------------------------------------------------------

    async def encrypt(
        self,
        plaintext: str,
        key_id: str,
        level: SecurityLevel,
        additional_data: Optional[str] = None
    ) -> EncryptionResult:
        """Encrypt ``plaintext`` at ``level`` with a fresh salt and IV."""
        if not key_id:
            raise ValidationError("key_id is required")
        level = SecurityLevel(level)
        algorithm = ALGORITHM_FOR_LEVEL[level]

        salt = os.urandom(SALT_BYTES)
        iv = os.urandom(IV_BYTES)
        key = await self.derive_key(key_id, level, salt)
        aad = _aad_bytes(additional_data)
        data = plaintext.encode("utf-8")

        tag: Optional[bytes] = None
        try:
            if algorithm in (EncryptionAlgorithm.AES_128_GCM, EncryptionAlgorithm.AES_256_GCM):
                sealed = AESGCM(key).encrypt(iv, data, aad)
                ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
            elif algorithm == EncryptionAlgorithm.CHACHA20_POLY1305:
                sealed = ChaCha20Poly1305(key).encrypt(iv[:CHACHA_NONCE_BYTES], data, aad)
                ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
            else:
                padder = padding.PKCS7(algorithms.AES.block_size).padder()
                padded = padder.update(data) + padder.finalize()
                encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
                ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError) as e:
            logger.error(f"Encryption failed for key {key_id} ({algorithm.value}): {e}")
            raise EncryptionError(f"Encryption failed: {e}")

        key_record = self.keys.ensure_key(key_id, level)

        metadata = EncryptionMetadata(
            algorithm=algorithm,
            key_id=key_id,
            key_version=key_record.version,
            iv=iv.hex(),
            tag=tag.hex() if tag is not None else None,
            kdf=KeyDerivationFunction.SCRYPT,
            salt=salt.hex(),
            encrypted_at=utc_now_iso(),
            checksum=_checksum(ciphertext, key, iv),
        )
        logger.debug(f"Encrypted with key {key_id} v{key_record.version} ({algorithm.value})")
        return EncryptionResult(encrypted=ciphertext.hex(), metadata=metadata)

    async def decrypt(
        self,
        ciphertext_hex: str,
        metadata: MetadataInput,
        additional_data: Optional[str] = None
    ) -> str:
        """Verify and decrypt.

        Raises:
            ValidationError: metadata is structurally invalid.
            IntegrityError: checksum or authentication tag mismatch.
            DecryptionError: any other cipher failure.
        """
        problems = _metadata_problems(metadata)
        if problems:
            raise ValidationError(f"Invalid encryption metadata: {'; '.join(problems)}")
        if not isinstance(metadata, EncryptionMetadata):
            metadata = EncryptionMetadata.model_validate(dict(metadata))
        if metadata.salt is None:
            raise DecryptionError(f"No salt recorded for key {metadata.key_id}; cannot re-derive key")

        try:
            ciphertext = bytes.fromhex(ciphertext_hex)
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"Ciphertext is not valid hex: {e}")

        algorithm = metadata.algorithm
        level = LEVEL_FOR_ALGORITHM[algorithm]
        iv = bytes.fromhex(metadata.iv)
        key = await self.derive_key(metadata.key_id, level, bytes.fromhex(metadata.salt))

        if not hmac.compare_digest(_checksum(ciphertext, key, iv), metadata.checksum.lower()):
            logger.warning(
                f"Integrity check failed for key {metadata.key_id} v{metadata.key_version}: "
                f"checksum mismatch, possible tampering"
            )
            raise IntegrityError("Integrity verification failed - data may be corrupted")

        aad = _aad_bytes(additional_data)
        try:
            if algorithm in (EncryptionAlgorithm.AES_128_GCM, EncryptionAlgorithm.AES_256_GCM):
                data = AESGCM(key).decrypt(iv, ciphertext + bytes.fromhex(metadata.tag), aad)
            elif algorithm == EncryptionAlgorithm.CHACHA20_POLY1305:
                data = ChaCha20Poly1305(key).decrypt(
                    iv[:CHACHA_NONCE_BYTES], ciphertext + bytes.fromhex(metadata.tag), aad
                )
            else:
                decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
                padded = decryptor.update(ciphertext) + decryptor.finalize()
                unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
                data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except InvalidTag:
            logger.warning(
                f"Integrity check failed for key {metadata.key_id} v{metadata.key_version}: "
                f"authentication tag mismatch"
            )
            raise IntegrityError("Authentication tag verification failed")
        except (ValueError, TypeError) as e:
            logger.error(f"Decryption failed for key {metadata.key_id} ({algorithm.value}): {e}")
            raise DecryptionError(f"Decryption failed: {e}")

    # ------------------------------------------------------------------
    # Metadata / key registry
    # ------------------------------------------------------------------

    @staticmethod
    def validate_metadata(metadata: MetadataInput) -> bool:
        """Structural check only; no key material involved."""
        return not _metadata_problems(metadata)

    def generate_key(
        self,
        key_id: str,
        level: SecurityLevel,
        algorithm: Optional[EncryptionAlgorithm] = None
    ) -> EncryptionKey:
        return self.keys.generate_key(key_id, SecurityLevel(level), algorithm)

    def rotate_key(self, key_id: str) -> EncryptionKey:
        return self.keys.rotate_key(key_id)

    def get_key(self, key_id: str) -> Optional[EncryptionKey]:
        return self.keys.get_key(key_id)

    def list_keys(self) -> List[EncryptionKey]:
        return self.keys.list_keys()

    def key_history(self, key_id: str) -> List[EncryptionKey]:
        return self.keys.key_history(key_id)

