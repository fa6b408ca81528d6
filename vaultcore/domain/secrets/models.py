"""Secrets Domain Models.

Persisted JSON uses camelCase field names (``securityLevel``, ``keyId``,
``encryptedAt``...) so records stay interoperable with secrets written by
other vault clients. Python attributes are snake_case; both spellings are
accepted on input.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """RFC3339 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CamelModel(BaseModel):
    """Base model serializing to camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Classification enums
# ---------------------------------------------------------------------------

class SecurityLevel(str, Enum):
    """Ordered sensitivity tier: public < internal < confidential < secret < top_secret."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    SECRET = "secret"
    TOP_SECRET = "top_secret"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, SecurityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SecurityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SecurityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SecurityLevel):
            return NotImplemented
        return self.rank >= other.rank


_LEVEL_ORDER = tuple(SecurityLevel)


class SecretCategory(str, Enum):
    """Functional classification. Declaration order is detection order."""
    API_KEY = "api_key"
    DATABASE = "database"
    ENCRYPTION_KEY = "encryption_key"
    CERTIFICATE = "certificate"
    SERVICE = "service"
    USER_CREDENTIALS = "user_credentials"
    CONFIGURATION = "configuration"
    TEMPORARY = "temporary"


class BusinessImpact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecretStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEPRECATED = "deprecated"
    COMPROMISED = "compromised"


# ---------------------------------------------------------------------------
# Secret metadata
# ---------------------------------------------------------------------------

class RotationPolicy(CamelModel):
    enabled: bool
    interval_days: Optional[int] = Field(default=None, ge=1)
    auto_rotate: Optional[bool] = None
    notify_before_days: Optional[int] = None

    @model_validator(mode="after")
    def validate_interval(self) -> "RotationPolicy":
        """intervalDays is present iff rotation is enabled."""
        if self.enabled and self.interval_days is None:
            raise ValueError("intervalDays is required when rotation is enabled")
        if not self.enabled and self.interval_days is not None:
            raise ValueError("intervalDays must be absent when rotation is disabled")
        return self


class RetentionPolicy(CamelModel):
    retain_after_deletion: bool
    retain_days: Optional[int] = None
    permanent_archive: Optional[bool] = None


class CompliancePolicy(CamelModel):
    standards: List[str] = Field(default_factory=list)
    audit_required: Optional[bool] = None
    encryption_standard: Optional[str] = None


class AccessWindow(CamelModel):
    """Secret-level time window carried with the metadata."""
    start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    end_hour: Optional[int] = Field(default=None, ge=0, le=23)
    days_of_week: Optional[List[int]] = None
    timezone: Optional[str] = None


class SecretMetadata(CamelModel):
    """Classification output and policy inputs for a secret."""
    security_level: SecurityLevel
    category: SecretCategory
    owner_id: str = ""
    acl: Optional[List[str]] = None
    required_permissions: List[str] = Field(default_factory=list)
    geo_restrictions: Optional[List[str]] = None
    time_restrictions: Optional[AccessWindow] = None
    ip_restrictions: Optional[List[str]] = None
    device_restrictions: Optional[List[str]] = None
    rotation_policy: RotationPolicy = Field(default_factory=lambda: RotationPolicy(enabled=False))
    retention_policy: RetentionPolicy = Field(
        default_factory=lambda: RetentionPolicy(retain_after_deletion=False)
    )
    compliance: CompliancePolicy = Field(default_factory=CompliancePolicy)
    classification_tags: List[str] = Field(default_factory=list)
    risk_score: int = 0
    business_impact: BusinessImpact = BusinessImpact.LOW

    @field_validator("risk_score", mode="before")
    @classmethod
    def clamp_risk_score(cls, v):
        if v is None:
            return 0
        return max(0, min(100, int(v)))


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

class EncryptionAlgorithm(str, Enum):
    AES_128_CBC = "aes-128-cbc"
    AES_256_CBC = "aes-256-cbc"
    AES_128_GCM = "aes-128-gcm"
    AES_256_GCM = "aes-256-gcm"
    CHACHA20_POLY1305 = "chacha20-poly1305"

    @property
    def is_aead(self) -> bool:
        return self in (
            EncryptionAlgorithm.AES_128_GCM,
            EncryptionAlgorithm.AES_256_GCM,
            EncryptionAlgorithm.CHACHA20_POLY1305,
        )


class KeyDerivationFunction(str, Enum):
    # Only SCRYPT is produced; the others are accepted when reading metadata.
    PBKDF2_SHA256 = "pbkdf2-sha256"
    SCRYPT = "scrypt"
    ARGON2ID = "argon2id"


class KeyUsage(str, Enum):
    ENCRYPTION = "encryption"
    DECRYPTION = "decryption"
    BOTH = "both"


class KeyStatus(str, Enum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    REVOKED = "revoked"


class RotationSchedule(CamelModel):
    interval_days: int
    next_rotation: str


class EncryptionKey(CamelModel):
    """Key registry entry. Bookkeeping only; derivation never reads it."""
    id: str
    version: int = 1
    security_level: SecurityLevel
    algorithm: EncryptionAlgorithm
    key_size: int  # bits
    usage: KeyUsage = KeyUsage.BOTH
    status: KeyStatus = KeyStatus.ACTIVE
    created_at: str = Field(default_factory=utc_now_iso)
    expires_at: Optional[str] = None
    rotation_schedule: Optional[RotationSchedule] = None
    metadata: Optional[Dict[str, Any]] = None


class EncryptionMetadata(CamelModel):
    """Persisted alongside ciphertext, never alongside plaintext.

    Binary fields are lowercase hex strings.
    """
    algorithm: EncryptionAlgorithm
    key_id: str = Field(..., min_length=1)
    key_version: int = 1
    iv: str                     # 32 hex chars (16 bytes)
    tag: Optional[str] = None   # 32 hex chars, AEAD only
    kdf: Optional[KeyDerivationFunction] = KeyDerivationFunction.SCRYPT
    salt: Optional[str] = None  # 64 hex chars (32 bytes)
    encrypted_at: str = Field(default_factory=utc_now_iso)
    checksum: str               # SHA-256 hex


class EncryptionResult(CamelModel):
    encrypted: str
    metadata: EncryptionMetadata


# ---------------------------------------------------------------------------
# Orchestration records
# ---------------------------------------------------------------------------

class SecretVersion(CamelModel):
    current: int = 1
    total: int = 1
    last_rotated: Optional[str] = None
    next_rotation: Optional[str] = None


class AccessStats(CamelModel):
    total_access: int = 0
    last_access: Optional[str] = None
    unique_users: int = 0
    failed_attempts: int = 0


class SecretRecord(CamelModel):
    """Metadata view of a stored secret.

    ``value`` is only populated on an authorized read and is never persisted.
    """
    id: str
    name: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    expires_at: Optional[str] = None
    metadata: SecretMetadata
    encryption: EncryptionMetadata
    version: SecretVersion = Field(default_factory=SecretVersion)
    access_stats: AccessStats = Field(default_factory=AccessStats)
    status: SecretStatus = SecretStatus.ACTIVE
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    value: Optional[str] = None


class SecretPage(CamelModel):
    secrets: List[SecretRecord]
    total: int
    page: int
    page_size: int
