"""Tests for the multi-level encryption engine."""
import pytest
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from vaultcore.adapters.memory_store.stores import MemoryKeyStore
from vaultcore.domain.secrets.encryption import (
    MultiLevelEncryption,
    algorithm_for_level,
    level_for_algorithm,
)
from vaultcore.domain.secrets.models import EncryptionAlgorithm, KeyDerivationFunction, SecurityLevel
from vaultcore.errors import DecryptionError, IntegrityError, ValidationError


def _flip_hex(value: str, index: int) -> str:
    """Change the hex digit at ``index`` (negative indexes count from the end)."""
    index %= len(value)
    flipped = "0" if value[index] != "0" else "1"
    return value[:index] + flipped + value[index + 1:]


def _position(value: str, where: str) -> int:
    return {"first": 0, "middle": len(value) // 2, "last": -1}[where]


POSITIONS = ["first", "middle", "last"]


@pytest.mark.asyncio
@pytest.mark.parametrize("where", POSITIONS)
async def test_public_round_trip_and_tamper(engine, where):
    result = await engine.encrypt("hello-secret", "k1", SecurityLevel.PUBLIC)

    assert await engine.decrypt(result.encrypted, result.metadata) == "hello-secret"

    tampered = _flip_hex(result.encrypted, _position(result.encrypted, where))
    with pytest.raises(IntegrityError):
        await engine.decrypt(tampered, result.metadata)


@pytest.mark.asyncio
@pytest.mark.parametrize("level", list(SecurityLevel))
@pytest.mark.parametrize("where", POSITIONS)
async def test_ciphertext_tamper_every_level(engine, level, where):
    result = await engine.encrypt("value long enough to span blocks", "k", level)
    tampered = _flip_hex(result.encrypted, _position(result.encrypted, where))

    with pytest.raises(IntegrityError):
        await engine.decrypt(tampered, result.metadata)


@pytest.mark.asyncio
@pytest.mark.parametrize("level", list(SecurityLevel))
async def test_round_trip_every_level(engine, level):
    plaintext = "pässwörd ✓ 秘密 \n with spaces"
    result = await engine.encrypt(plaintext, f"key-{level.value}", level)

    assert result.metadata.algorithm == algorithm_for_level(level)
    assert await engine.decrypt(result.encrypted, result.metadata) == plaintext


@pytest.mark.asyncio
@pytest.mark.parametrize("level", list(SecurityLevel))
@pytest.mark.parametrize("where", POSITIONS)
async def test_checksum_tamper_every_level(engine, level, where):
    result = await engine.encrypt("value", "k", level)
    checksum = result.metadata.checksum
    tampered = result.metadata.model_copy(update={"checksum": _flip_hex(checksum, _position(checksum, where))})

    with pytest.raises(IntegrityError):
        await engine.decrypt(result.encrypted, tampered)


@pytest.mark.asyncio
async def test_metadata_shape(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.SECRET)
    meta = result.metadata

    assert meta.algorithm == EncryptionAlgorithm.AES_256_GCM
    assert meta.key_id == "k1"
    assert meta.key_version == 1
    assert len(meta.iv) == 32
    assert len(meta.tag) == 32
    assert len(meta.salt) == 64
    assert len(meta.checksum) == 64
    assert meta.kdf == KeyDerivationFunction.SCRYPT
    assert meta.encrypted_at.endswith("Z")


@pytest.mark.asyncio
async def test_cbc_has_no_tag(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.INTERNAL)
    assert result.metadata.tag is None
    # PKCS7: always at least one padding byte, whole blocks
    assert len(bytes.fromhex(result.encrypted)) == 16


@pytest.mark.asyncio
async def test_fresh_salt_and_iv(engine):
    a = await engine.encrypt("same", "k1", SecurityLevel.SECRET)
    b = await engine.encrypt("same", "k1", SecurityLevel.SECRET)
    assert a.metadata.iv != b.metadata.iv
    assert a.metadata.salt != b.metadata.salt
    assert a.encrypted != b.encrypted


@pytest.mark.asyncio
async def test_additional_data_binds(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.CONFIDENTIAL, additional_data="ctx-1")

    assert await engine.decrypt(result.encrypted, result.metadata, additional_data="ctx-1") == "value"
    with pytest.raises(IntegrityError):
        await engine.decrypt(result.encrypted, result.metadata, additional_data="ctx-2")


@pytest.mark.asyncio
async def test_tag_tamper_is_integrity_failure(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.TOP_SECRET)
    tampered = result.metadata.model_copy(update={"tag": _flip_hex(result.metadata.tag, -1)})

    with pytest.raises(IntegrityError):
        await engine.decrypt(result.encrypted, tampered)


@pytest.mark.asyncio
async def test_different_master_key_fails_integrity(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.SECRET)
    other = MultiLevelEncryption(master_key="ff" * 32)

    with pytest.raises(IntegrityError):
        await other.decrypt(result.encrypted, result.metadata)


@pytest.mark.asyncio
async def test_same_master_key_decrypts_across_instances():
    key = "ab" * 32
    result = await MultiLevelEncryption(master_key=key).encrypt("value", "k1", SecurityLevel.INTERNAL)
    assert await MultiLevelEncryption(master_key=bytes.fromhex(key)).decrypt(result.encrypted, result.metadata) == "value"


@pytest.mark.asyncio
async def test_non_hex_ciphertext_is_decryption_error(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.PUBLIC)
    with pytest.raises(DecryptionError):
        await engine.decrypt("zz" + result.encrypted[2:], result.metadata)


@pytest.mark.asyncio
async def test_invalid_metadata_is_validation_error(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.SECRET)
    no_tag = result.metadata.model_copy(update={"tag": None})
    with pytest.raises(ValidationError):
        await engine.decrypt(result.encrypted, no_tag)


@pytest.mark.asyncio
async def test_decrypt_accepts_camel_case_dict(engine):
    result = await engine.encrypt("value", "k1", SecurityLevel.CONFIDENTIAL)
    as_json = result.metadata.to_json_dict()
    assert "keyId" in as_json
    assert await engine.decrypt(result.encrypted, as_json) == "value"


@pytest.mark.asyncio
async def test_chacha_uses_first_twelve_iv_bytes(engine):
    """The stored IV is 16 bytes; ChaCha20-Poly1305 consumes only 12 of them."""
    result = await engine.encrypt("value", "k1", SecurityLevel.TOP_SECRET)
    meta = result.metadata
    iv = bytes.fromhex(meta.iv)
    assert len(iv) == 16

    key = await engine.derive_key("k1", SecurityLevel.TOP_SECRET, bytes.fromhex(meta.salt))
    sealed = bytes.fromhex(result.encrypted) + bytes.fromhex(meta.tag)

    assert ChaCha20Poly1305(key).decrypt(iv[:12], sealed, None) == b"value"
    # A standard consumer handing the full stored IV to ChaCha20-Poly1305 fails
    with pytest.raises(ValueError):
        ChaCha20Poly1305(key).decrypt(iv, sealed, None)


@pytest.mark.asyncio
async def test_derive_key_is_deterministic_and_sized(engine):
    salt = b"\x01" * 32
    public = await engine.derive_key("k1", SecurityLevel.PUBLIC, salt)
    secret = await engine.derive_key("k1", SecurityLevel.SECRET, salt)

    assert len(public) == 16
    assert len(secret) == 32
    assert await engine.derive_key("k1", SecurityLevel.SECRET, salt) == secret
    assert await engine.derive_key("k2", SecurityLevel.SECRET, salt) != secret


@pytest.mark.asyncio
async def test_first_encrypt_registers_key_and_rotation_bumps_version(engine):
    await engine.encrypt("value", "k1", SecurityLevel.SECRET)
    assert engine.get_key("k1").version == 1

    engine.rotate_key("k1")
    result = await engine.encrypt("value", "k1", SecurityLevel.SECRET)
    assert result.metadata.key_version == 2


class TestValidateMetadata:

    @pytest.mark.asyncio
    async def test_valid(self, engine):
        result = await engine.encrypt("value", "k1", SecurityLevel.SECRET)
        assert engine.validate_metadata(result.metadata) is True
        assert engine.validate_metadata(result.metadata.to_json_dict()) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("iv", "00" * 12),
        ("iv", "zz" * 16),
        ("checksum", "ab" * 31),
        ("tag", None),
        ("tag", "00" * 8),
        ("salt", "not-hex"),
    ])
    async def test_invalid_fields(self, engine, field, value):
        result = await engine.encrypt("value", "k1", SecurityLevel.SECRET)
        broken = result.metadata.model_copy(update={field: value})
        assert engine.validate_metadata(broken) is False

    def test_unknown_algorithm(self, engine):
        assert engine.validate_metadata({
            "algorithm": "des-ede3",
            "keyId": "k1",
            "iv": "00" * 16,
            "checksum": "00" * 32,
        }) is False

    def test_missing_key_id(self, engine):
        assert engine.validate_metadata({
            "algorithm": "aes-128-cbc",
            "iv": "00" * 16,
            "checksum": "00" * 32,
        }) is False


class TestConstruction:

    def test_non_hex_master_key(self):
        with pytest.raises(ValidationError):
            MultiLevelEncryption(master_key="not-hex")

    def test_empty_master_key(self):
        with pytest.raises(ValidationError):
            MultiLevelEncryption(master_key=b"")

    def test_random_master_key_by_default(self):
        assert MultiLevelEncryption(key_store=MemoryKeyStore()) is not None


def test_algorithm_table_is_invertible():
    for level in SecurityLevel:
        assert level_for_algorithm(algorithm_for_level(level)) == level
