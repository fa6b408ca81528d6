"""Access policy models.

Normative types: AccessPolicy, AccessRule, AccessCondition, AccessContext,
AccessDecision. Serialized with the same camelCase aliases as the secret
records so policy documents can be loaded from JSON as-is.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from vaultcore.domain.secrets.models import (
    CamelModel,
    SecretCategory,
    SecurityLevel,
    utc_now_iso,
)


class PolicyType(str, Enum):
    """Informational only; evaluation is condition-driven."""
    RBAC = "rbac"
    ABAC = "abac"
    TBAC = "tbac"
    LBAC = "lbac"
    DBAC = "dbac"


class ConditionType(str, Enum):
    STRING_EQUALS = "StringEquals"
    STRING_CONTAINS = "StringContains"
    NUMERIC_EQUALS = "NumericEquals"
    NUMERIC_GREATER_THAN = "NumericGreaterThan"
    NUMERIC_LESS_THAN = "NumericLessThan"
    BOOL = "Bool"
    IP_ADDRESS = "IpAddress"
    DATE_TIME = "DateTime"
    FOR_ALL_VALUES = "ForAllValues"
    FOR_ANY_VALUE = "ForAnyValue"


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DEPRECATED = "deprecated"


class AccessCondition(CamelModel):
    type: ConditionType
    key: str
    values: List[Any] = Field(default_factory=list)
    negate: bool = False
    weight: Optional[float] = None


class AllowedHours(CamelModel):
    start: str  # "HH:MM"
    end: str

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Expected HH:MM, got {v!r}")
        hours, minutes = int(parts[0]), int(parts[1])
        if not (0 <= hours <= 23 and 0 <= minutes <= 59):
            raise ValueError(f"Clock time out of range: {v!r}")
        return v

    @staticmethod
    def to_minutes(clock: str) -> int:
        hours, minutes = clock.split(":")
        return int(hours) * 60 + int(minutes)


class TimeRestrictions(CamelModel):
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None
    allowed_hours: Optional[AllowedHours] = None
    allowed_days: Optional[List[int]] = None  # 0 = Sunday
    timezone: Optional[str] = None

    @field_validator("allowed_days")
    @classmethod
    def validate_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("allowedDays entries must be in 0..6")
        return v


class AccessRule(CamelModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    policy_type: PolicyType = PolicyType.ABAC
    conditions: List[AccessCondition] = Field(default_factory=list)
    effect: Effect
    priority: int = 100  # ascending = higher precedence
    status: RuleStatus = RuleStatus.ACTIVE
    time_restrictions: Optional[TimeRestrictions] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    created_by: str = "system"
    updated_by: Optional[str] = None


class AccessPolicy(CamelModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    version: str = "1.0.0"
    secret_id: Optional[str] = None
    secret_pattern: Optional[str] = None
    security_level: Optional[List[SecurityLevel]] = None
    category: Optional[List[SecretCategory]] = None
    rules: List[AccessRule] = Field(default_factory=list)
    default_effect: Effect = Effect.DENY
    status: PolicyStatus = PolicyStatus.ACTIVE
    metadata: Optional[Dict[str, Any]] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    created_by: str = "system"
    updated_by: Optional[str] = None


class Coordinates(CamelModel):
    latitude: float
    longitude: float


class Location(CamelModel):
    country: str
    region: Optional[str] = None
    city: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class AccessContext(CamelModel):
    """Who is asking, from where, and when."""
    user_id: str
    user_roles: List[str] = Field(default_factory=list)
    user_attributes: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None  # ISO-8601; evaluation uses "now" when absent
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    location: Optional[Location] = None
    purpose: Optional[str] = None
    session_id: Optional[str] = None
    request_method: str = "GET"
    resource: Optional[str] = None

    @classmethod
    def system(cls, method: str, resource: str) -> "AccessContext":
        """Context used for unattended operations (scheduled rotation)."""
        return cls(
            user_id="system",
            user_roles=["system"],
            timestamp=utc_now_iso(),
            source_ip="127.0.0.1",
            request_method=method,
            resource=resource,
        )


class AppliedRule(CamelModel):
    rule_id: str
    rule_name: str
    effect: Effect
    matched: bool


class AccessDecision(CamelModel):
    granted: bool
    reason: str
    applied_rules: List[AppliedRule] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now_iso)
    duration: float = 0.0  # milliseconds
    metadata: Optional[Dict[str, Any]] = None

    def to_audit_dict(self) -> Dict[str, Any]:
        """Subset recorded in audit events."""
        return {
            "reason": self.reason,
            "applied_rules": [
                {
                    "rule_id": r.rule_id,
                    "effect": r.effect.value,
                    "matched": r.matched,
                }
                for r in self.applied_rules
            ],
        }
