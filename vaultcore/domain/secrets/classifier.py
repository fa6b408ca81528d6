"""Secret Classifier.

Derives security level, category, risk score, business impact and the
default rotation / retention / compliance posture of a secret from its name
and value. Pure apart from the ``auto-classified:<ts>`` tag; safe to call
from any number of concurrent callers.
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Pattern, Union

from pydantic import ValidationError as PydanticValidationError

from vaultcore.errors import ValidationError

from .models import (
    BusinessImpact,
    CompliancePolicy,
    RetentionPolicy,
    RotationPolicy,
    SecretCategory,
    SecretMetadata,
    SecurityLevel,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

HIGH_VALUE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"password", r"key", r"secret", r"token", r"credential", r"private")
]

CRITICAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"admin", r"root", r"master", r"production", r"prod", r"api.*key")
]

COMPLEXITY_SYMBOLS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")

CATEGORY_PATTERNS: Dict[SecretCategory, List[Pattern[str]]] = {
    category: [re.compile(p, re.IGNORECASE) for p in patterns]
    for category, patterns in (
        (SecretCategory.API_KEY, (r"api.*key", r"token", r"jwt", r"bearer", r"auth")),
        (SecretCategory.DATABASE, (
            r"database", r"db", r"mysql", r"postgres", r"mongodb", r"connection.*string",
        )),
        (SecretCategory.ENCRYPTION_KEY, (
            r"encryption", r"cipher", r"aes", r"rsa", r"private.*key", r"public.*key",
        )),
        (SecretCategory.CERTIFICATE, (r"certificate", r"cert", r"ssl", r"tls", r"pem", r"crt")),
        (SecretCategory.SERVICE, (r"service", r"microservice", r"application", r"app.*secret")),
        (SecretCategory.USER_CREDENTIALS, (r"user", r"password", r"login", r"auth")),
        (SecretCategory.CONFIGURATION, (r"config", r"setting", r"env", r"environment")),
        (SecretCategory.TEMPORARY, (r"temp", r"session", r"nonce", r"otp")),
    )
}

LEVEL_BASE_SCORES = {
    SecurityLevel.PUBLIC: 10,
    SecurityLevel.INTERNAL: 25,
    SecurityLevel.CONFIDENTIAL: 50,
    SecurityLevel.SECRET: 75,
    SecurityLevel.TOP_SECRET: 95,
}

CATEGORY_RISK_MODIFIERS = {
    SecretCategory.API_KEY: 10,
    SecretCategory.DATABASE: 15,
    SecretCategory.ENCRYPTION_KEY: 20,
    SecretCategory.CERTIFICATE: 5,
    SecretCategory.SERVICE: 5,
    SecretCategory.USER_CREDENTIALS: 15,
    SecretCategory.CONFIGURATION: 0,
    SecretCategory.TEMPORARY: -5,
}

# 0 = rotation disabled
ROTATION_INTERVAL_DAYS = {
    SecurityLevel.PUBLIC: 0,
    SecurityLevel.INTERNAL: 90,
    SecurityLevel.CONFIDENTIAL: 60,
    SecurityLevel.SECRET: 30,
    SecurityLevel.TOP_SECRET: 7,
}

RETENTION_DAYS = {
    SecurityLevel.PUBLIC: 30,
    SecurityLevel.INTERNAL: 90,
    SecurityLevel.CONFIDENTIAL: 365,
    SecurityLevel.SECRET: 2555,  # 7 years
    SecurityLevel.TOP_SECRET: 3650,  # 10 years
}

_PROD_NAME = re.compile(r"prod|production", re.IGNORECASE)
_ADMIN_NAME = re.compile(r"admin|root", re.IGNORECASE)

# Fields the classifier always recomputes; caller input for these is discarded.
_DERIVED_FIELDS = {
    "security_level", "category", "risk_score", "business_impact",
    "required_permissions", "rotation_policy", "retention_policy",
    "compliance", "classification_tags",
}

ExplicitMetadata = Union[SecretMetadata, Mapping[str, Any], None]


def _any_match(patterns: List[Pattern[str]], *texts: str) -> bool:
    return any(p.search(t) for p in patterns for t in texts)


class SecretClassifier:
    """Auto-classification engine for secrets."""

    def classify(
        self,
        name: str,
        value: str,
        explicit_metadata: ExplicitMetadata = None
    ) -> SecretMetadata:
        """
        Classify a secret.

        Args:
            name: Secret name/key.
            value: Plaintext secret value.
            explicit_metadata: Optional caller hints. ``securityLevel`` acts as
                an override; ownerId, acl and the restriction lists are passed
                through; every other derived field is recomputed.

        Returns:
            Fully populated SecretMetadata.

        Raises:
            ValidationError: explicit_metadata is malformed (unknown level,
                invalid passthrough field).
        """
        try:
            explicit = self._explicit_fields(explicit_metadata)
            security_level = self.determine_security_level(name, value, explicit.get("security_level"))
        except (ValueError, TypeError, AttributeError) as e:
            raise ValidationError(f"Invalid secret metadata: {e}", details={"secret": name})

        category = self.determine_category(name, value)
        risk_score = self.calculate_risk_score(name, value, security_level, category)
        business_impact = self.assess_business_impact(name, category, security_level)

        passthrough = {k: v for k, v in explicit.items() if k not in _DERIVED_FIELDS}

        try:
            metadata = SecretMetadata(
                **passthrough,
                security_level=security_level,
                category=category,
                risk_score=risk_score,
                business_impact=business_impact,
                required_permissions=self.required_permissions(security_level, category),
                rotation_policy=self.default_rotation_policy(security_level, category),
                retention_policy=self.default_retention_policy(security_level),
                compliance=self.compliance_requirements(security_level, category),
                classification_tags=self.classification_tags(security_level, category),
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid secret metadata: {e}", details={"secret": name})
        logger.debug(
            f"Classified secret name={name} level={security_level.value} "
            f"category={category.value} risk={metadata.risk_score}"
        )
        return metadata

    @staticmethod
    def _explicit_fields(explicit_metadata: ExplicitMetadata) -> Dict[str, Any]:
        if explicit_metadata is None:
            return {}
        if isinstance(explicit_metadata, SecretMetadata):
            return dict(explicit_metadata)
        # Accept camelCase or snake_case keys from callers.
        fields: Dict[str, Any] = {}
        by_alias = {f.alias: n for n, f in SecretMetadata.model_fields.items()}
        for key, val in explicit_metadata.items():
            if val is None:
                continue
            fields[by_alias.get(key, key)] = val
        return {k: v for k, v in fields.items() if k in SecretMetadata.model_fields}

    # ------------------------------------------------------------------
    # Level / category
    # ------------------------------------------------------------------

    @staticmethod
    def determine_security_level(
        name: str,
        value: str,
        explicit_level: Optional[Union[SecurityLevel, str]] = None
    ) -> SecurityLevel:
        if explicit_level:
            return SecurityLevel(explicit_level)

        has_high_value = _any_match(HIGH_VALUE_PATTERNS, name, value)
        has_critical = _any_match(CRITICAL_PATTERNS, name, value)
        is_complex = len(value) > 32 and COMPLEXITY_SYMBOLS.search(value) is not None

        if has_critical or (has_high_value and is_complex):
            return SecurityLevel.TOP_SECRET
        if has_high_value or is_complex:
            return SecurityLevel.SECRET
        if len(value) > 16:
            return SecurityLevel.CONFIDENTIAL
        if len(value) > 8:
            return SecurityLevel.INTERNAL
        return SecurityLevel.PUBLIC

    @staticmethod
    def determine_category(name: str, value: str) -> SecretCategory:
        for category, patterns in CATEGORY_PATTERNS.items():
            if _any_match(patterns, name, value):
                return category
        return SecretCategory.CONFIGURATION

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_risk_score(
        name: str,
        value: str,
        security_level: SecurityLevel,
        category: SecretCategory
    ) -> int:
        score = LEVEL_BASE_SCORES[security_level]
        score += CATEGORY_RISK_MODIFIERS[category]

        if len(value) > 50:
            score += 5
        if re.search(r"[A-Z]", value):
            score += 2
        if re.search(r"[0-9]", value):
            score += 2
        if re.search(r"[^A-Za-z0-9]", value):
            score += 3

        if _PROD_NAME.search(name):
            score += 10
        if _ADMIN_NAME.search(name):
            score += 15

        return min(100, max(0, score))

    @staticmethod
    def assess_business_impact(
        name: str,
        category: SecretCategory,
        security_level: SecurityLevel
    ) -> BusinessImpact:
        if category in (SecretCategory.DATABASE, SecretCategory.ENCRYPTION_KEY):
            return BusinessImpact.CRITICAL
        if security_level in (SecurityLevel.SECRET, SecurityLevel.TOP_SECRET):
            return BusinessImpact.HIGH
        if _PROD_NAME.search(name):
            return BusinessImpact.HIGH
        if security_level == SecurityLevel.CONFIDENTIAL:
            return BusinessImpact.MEDIUM
        return BusinessImpact.LOW

    # ------------------------------------------------------------------
    # Derived policies
    # ------------------------------------------------------------------

    @staticmethod
    def required_permissions(security_level: SecurityLevel, category: SecretCategory) -> List[str]:
        permissions = ["secrets:read"]

        if security_level >= SecurityLevel.CONFIDENTIAL:
            permissions.append("secrets:decrypt")
        if security_level >= SecurityLevel.SECRET:
            permissions.extend(["secrets:audit", "secrets:access_log"])
        if security_level == SecurityLevel.TOP_SECRET:
            permissions.extend(["secrets:approve", "secrets:monitor"])

        if category == SecretCategory.ENCRYPTION_KEY:
            permissions.append("crypto:use_key")
        if category == SecretCategory.CERTIFICATE:
            permissions.append("cert:verify")

        return permissions

    @staticmethod
    def default_rotation_policy(security_level: SecurityLevel, category: SecretCategory) -> RotationPolicy:
        interval = ROTATION_INTERVAL_DAYS[security_level]
        if interval == 0:
            return RotationPolicy(enabled=False)

        if category == SecretCategory.API_KEY:
            interval = min(interval, 30)
        if category == SecretCategory.TEMPORARY:
            interval = 1

        return RotationPolicy(
            enabled=True,
            interval_days=interval,
            auto_rotate=security_level >= SecurityLevel.CONFIDENTIAL,
            notify_before_days=max(7, interval // 4),
        )

    @staticmethod
    def default_retention_policy(security_level: SecurityLevel) -> RetentionPolicy:
        return RetentionPolicy(
            retain_after_deletion=security_level >= SecurityLevel.CONFIDENTIAL,
            retain_days=RETENTION_DAYS[security_level],
            permanent_archive=security_level == SecurityLevel.TOP_SECRET,
        )

    @staticmethod
    def compliance_requirements(security_level: SecurityLevel, category: SecretCategory) -> CompliancePolicy:
        standards: List[str] = []

        if security_level >= SecurityLevel.CONFIDENTIAL:
            standards.append("ISO27001")
        if security_level >= SecurityLevel.SECRET:
            standards.extend(["GDPR", "SOC2"])
        if security_level == SecurityLevel.TOP_SECRET:
            standards.extend(["PCI-DSS", "HIPAA"])
        if category == SecretCategory.ENCRYPTION_KEY:
            standards.append("FIPS140-2")

        return CompliancePolicy(
            standards=standards,
            audit_required=security_level >= SecurityLevel.SECRET,
            encryption_standard="AES-256" if security_level >= SecurityLevel.CONFIDENTIAL else "AES-128",
        )

    @staticmethod
    def classification_tags(security_level: SecurityLevel, category: SecretCategory) -> List[str]:
        return [
            f"level:{security_level.value}",
            f"category:{category.value}",
            f"auto-classified:{utc_now_iso()}",
        ]


# Singleton for dependency injection
_classifier_instance: Optional[SecretClassifier] = None


def get_secret_classifier() -> SecretClassifier:
    """Get or create the classifier singleton."""
    global _classifier_instance
    if _classifier_instance is None:
        _classifier_instance = SecretClassifier()
    return _classifier_instance


def classify(name: str, value: str, explicit_metadata: ExplicitMetadata = None) -> SecretMetadata:
    """Module-level shortcut for ``SecretClassifier().classify``."""
    return get_secret_classifier().classify(name, value, explicit_metadata)
