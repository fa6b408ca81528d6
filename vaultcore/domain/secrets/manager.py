"""Secrets orchestration.

``SecretsManager`` ties the classifier, policy engine, encryption engine and
audit logger together over a ``SecretBackend``. Every gated operation
evaluates policy and writes an audit event before touching ciphertext.
"""
import base64
import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from vaultcore.domain.audit import AuditAction, AuditLogger, AuditOutcome
from vaultcore.domain.policy.models import AccessContext, AccessDecision, AccessPolicy
from vaultcore.domain.policy.policy_engine import PolicyEngine
from vaultcore.errors import AccessDeniedError, IntegrityError, SecretNotFoundError, ValidationError

from .classifier import SecretClassifier, get_secret_classifier
from .encryption import MultiLevelEncryption
from .models import (
    AccessStats,
    SecretCategory,
    SecretMetadata,
    SecretPage,
    SecretRecord,
    SecretStatus,
    SecretVersion,
    SecurityLevel,
    to_iso,
)
from .ports import SecretBackend

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

_MIXED_CHARSET = string.ascii_letters + string.digits + "!@#$%^&*"
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")

MetadataInput = Union[SecretMetadata, Mapping[str, Any], None]


def generate_secret_value(category: SecretCategory, length: int = 32) -> str:
    """Random replacement value shaped for the secret's category."""
    if length < 1:
        raise ValidationError("Generated secret length must be positive")

    if category == SecretCategory.API_KEY:
        value = ""
        while len(value) < length:
            value += _NON_ALNUM.sub("", base64.b64encode(secrets.token_bytes(length)).decode("ascii"))
        return value[:length]

    if category == SecretCategory.ENCRYPTION_KEY:
        return secrets.token_hex((length + 1) // 2)[:length]

    return "".join(secrets.choice(_MIXED_CHARSET) for _ in range(length))


def _next_rotation(metadata: SecretMetadata, now: datetime) -> Optional[str]:
    policy = metadata.rotation_policy
    if not policy.enabled or not policy.interval_days:
        return None
    return to_iso(now + timedelta(days=policy.interval_days))


def _metadata_fields(metadata: MetadataInput) -> Dict[str, Any]:
    """Caller metadata as a snake_case field dict."""
    if metadata is None:
        return {}
    if isinstance(metadata, SecretMetadata):
        return dict(metadata)
    by_alias = {f.alias: n for n, f in SecretMetadata.model_fields.items()}
    return {by_alias.get(k, k): v for k, v in metadata.items()}


class SecretsManager:
    def __init__(
        self,
        backend: SecretBackend,
        classifier: Optional[SecretClassifier] = None,
        encryption: Optional[MultiLevelEncryption] = None,
        policy_engine: Optional[PolicyEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE
    ):
        self.backend = backend
        self.classifier = classifier or get_secret_classifier()
        self.encryption = encryption or MultiLevelEncryption()
        self.policy_engine = policy_engine or PolicyEngine()
        self.audit = audit_logger or AuditLogger()
        self.default_page_size = default_page_size

    # ------------------------------------------------------------------
    # Policy delegation
    # ------------------------------------------------------------------

    def set_policy(self, policy: AccessPolicy) -> None:
        self.policy_engine.add_policy(policy)

    def check_access(self, secret_id: str, metadata: SecretMetadata, context: AccessContext) -> AccessDecision:
        return self.policy_engine.evaluate_access(secret_id, metadata, context)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_secret(
        self,
        name: str,
        value: str,
        *,
        owner_id: Optional[str] = None,
        metadata: MetadataInput = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        expires_at: Optional[str] = None
    ) -> SecretRecord:
        """Classify, encrypt and store a new secret. The id is the name."""
        if not name:
            raise ValidationError("Secret name is required")
        if not isinstance(value, str):
            raise ValidationError("Secret value must be a string")
        if await self.backend.fetch_metadata(name) is not None:
            raise ValidationError(f"Secret {name} already exists", details={"secret_id": name})

        explicit = _metadata_fields(metadata)
        if owner_id:
            explicit["owner_id"] = owner_id

        classified = self.classifier.classify(name, value, explicit)
        result = await self.encryption.encrypt(value, name, classified.security_level)

        now = datetime.now(timezone.utc)
        now_iso = to_iso(now)
        record = SecretRecord(
            id=name,
            name=name,
            description=description,
            tags=list(tags or []),
            expires_at=expires_at,
            metadata=classified,
            encryption=result.metadata,
            version=SecretVersion(
                current=1,
                total=1,
                last_rotated=now_iso,
                next_rotation=_next_rotation(classified, now),
            ),
            access_stats=AccessStats(),
            status=SecretStatus.ACTIVE,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.backend.store(record, result.encrypted)

        context = AccessContext(
            user_id=owner_id or "system",
            request_method="POST",
            resource="/secrets",
        )
        await self.audit.log_secret_event(
            name, AuditAction.CREATE, AuditOutcome.GRANTED, context,
            reason="Secret created",
            details={"security_level": classified.security_level, "algorithm": result.metadata.algorithm},
        )
        logger.info(
            f"Created secret {name} (level={classified.security_level.value}, "
            f"category={classified.category.value}, alg={result.metadata.algorithm.value})"
        )
        return record

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_secret(
        self,
        secret_id: str,
        context: AccessContext,
        include_value: bool = False
    ) -> SecretRecord:
        """Policy-gated read. Every attempt is audited; denials and completed reads are counted."""
        record = await self._load(secret_id)
        decision = self.policy_engine.evaluate_access(secret_id, record.metadata, context)

        await self.audit.log_secret_event(
            secret_id,
            AuditAction.READ,
            AuditOutcome.GRANTED if decision.granted else AuditOutcome.DENIED,
            context,
            decision,
        )
        if not decision.granted:
            await self.backend.record_access(secret_id, context.user_id, False)
            logger.info(f"Access to {secret_id} denied for {context.user_id}: {decision.reason}")
            raise AccessDeniedError(decision.reason, decision)

        if include_value:
            record.value = await self._decrypt_current(record, context, AuditAction.READ)
        # Counted only once the read has fully succeeded
        record.access_stats = await self.backend.record_access(secret_id, context.user_id, True)
        return record

    async def list_secrets(
        self,
        context: AccessContext,
        *,
        security_levels: Optional[List[SecurityLevel]] = None,
        categories: Optional[List[SecretCategory]] = None,
        owner_ids: Optional[List[str]] = None,
        statuses: Optional[List[SecretStatus]] = None,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> SecretPage:
        """Metadata of the secrets ``context`` may access, filtered and paginated."""
        page_size = page_size or self.default_page_size
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")

        visible = []
        for record in await self.backend.list_records():
            meta = record.metadata
            if security_levels and meta.security_level not in security_levels:
                continue
            if categories and meta.category not in categories:
                continue
            if owner_ids and meta.owner_id not in owner_ids:
                continue
            if statuses and record.status not in statuses:
                continue
            if not self.policy_engine.evaluate_access(record.id, meta, context).granted:
                continue
            visible.append(record)

        start = (page - 1) * page_size
        return SecretPage(
            secrets=visible[start:start + page_size],
            total=len(visible),
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # Update / rotate / archive
    # ------------------------------------------------------------------

    async def update_secret(
        self,
        secret_id: str,
        context: AccessContext,
        *,
        value: Optional[str] = None,
        metadata: MetadataInput = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        expires_at: Optional[str] = None,
        status: Optional[SecretStatus] = None
    ) -> SecretRecord:
        """
        Update a secret.

        A new value or new metadata re-runs the classifier; the current
        security level is kept unless ``metadata`` overrides it. The secret is
        re-encrypted when the value or the level changes.
        """
        context = context.model_copy(update={"request_method": "PUT", "resource": f"/secrets/{secret_id}"})
        record = await self._authorize(secret_id, context, AuditAction.UPDATE)

        now = datetime.now(timezone.utc)
        ciphertext: Optional[str] = None

        if value is not None or metadata is not None:
            plaintext = value if value is not None else await self._decrypt_current(
                record, context, AuditAction.UPDATE
            )
            merged = dict(record.metadata)
            merged.update(_metadata_fields(metadata))
            new_meta = self.classifier.classify(record.name, plaintext, merged)

            level_changed = new_meta.security_level != record.metadata.security_level
            if value is not None or level_changed:
                result = await self.encryption.encrypt(plaintext, record.id, new_meta.security_level)
                ciphertext = result.encrypted
                record.encryption = result.metadata

            if value is not None:
                record.version.current += 1
                record.version.total += 1
                record.version.last_rotated = to_iso(now)
            record.version.next_rotation = _next_rotation(new_meta, now)
            record.metadata = new_meta

        if description is not None:
            record.description = description
        if tags is not None:
            record.tags = list(tags)
        if expires_at is not None:
            record.expires_at = expires_at
        if status is not None:
            record.status = SecretStatus(status)
        record.updated_at = to_iso(now)

        if ciphertext is not None:
            await self.backend.store(record, ciphertext)
        else:
            await self.backend.update_record(record)

        logger.info(f"Updated secret {secret_id} (v{record.version.current}, re-encrypted={ciphertext is not None})")
        return record

    async def rotate_secret(
        self,
        secret_id: str,
        context: Optional[AccessContext] = None,
        new_value: Optional[str] = None,
        length: int = 32
    ) -> SecretRecord:
        """Replace the value, rotate the key and re-encrypt."""
        resource = f"/secrets/{secret_id}/rotate"
        if context is None:
            context = AccessContext.system("POST", resource)
        else:
            context = context.model_copy(update={"request_method": "POST", "resource": resource})
        record = await self._authorize(secret_id, context, AuditAction.ROTATE)

        value = new_value if new_value is not None else generate_secret_value(record.metadata.category, length)
        level = record.metadata.security_level

        self.encryption.keys.ensure_key(record.id, level, version=record.encryption.key_version)
        self.encryption.rotate_key(record.id)
        result = await self.encryption.encrypt(value, record.id, level)

        now = datetime.now(timezone.utc)
        record.encryption = result.metadata
        record.version.current += 1
        record.version.total += 1
        record.version.last_rotated = to_iso(now)
        record.version.next_rotation = _next_rotation(record.metadata, now)
        record.updated_at = to_iso(now)

        await self.backend.store(record, result.encrypted)
        logger.info(f"Rotated secret {secret_id} to v{record.version.current} (key v{result.metadata.key_version})")
        return record

    async def archive_secret(self, secret_id: str, context: AccessContext) -> SecretRecord:
        """Move a secret to the terminal ``deprecated`` status."""
        context = context.model_copy(
            update={"request_method": "POST", "resource": f"/secrets/{secret_id}/archive"}
        )
        record = await self._authorize(secret_id, context, AuditAction.ARCHIVE)

        record.status = SecretStatus.DEPRECATED
        record.updated_at = to_iso(datetime.now(timezone.utc))
        await self.backend.update_record(record)
        logger.info(f"Archived secret {secret_id}")
        return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, secret_id: str) -> SecretRecord:
        record = await self.backend.fetch_metadata(secret_id)
        if record is None:
            raise SecretNotFoundError(secret_id)
        return record

    async def _authorize(self, secret_id: str, context: AccessContext, action: AuditAction) -> SecretRecord:
        record = await self._load(secret_id)
        decision = self.policy_engine.evaluate_access(secret_id, record.metadata, context)
        await self.audit.log_secret_event(
            secret_id,
            action,
            AuditOutcome.GRANTED if decision.granted else AuditOutcome.DENIED,
            context,
            decision,
        )
        if not decision.granted:
            logger.info(f"{action.value} on {secret_id} denied for {context.user_id}: {decision.reason}")
            raise AccessDeniedError(decision.reason, decision)
        return record

    async def _decrypt_current(self, record: SecretRecord, context: AccessContext, action: AuditAction) -> str:
        ciphertext = await self.backend.fetch_ciphertext(record.id)
        if ciphertext is None:
            raise SecretNotFoundError(record.id)
        try:
            return await self.encryption.decrypt(ciphertext, record.encryption)
        except IntegrityError as e:
            await self.audit.log_secret_event(
                record.id, action, AuditOutcome.INTEGRITY_FAILURE, context,
                reason=str(e),
                details={"key_id": record.encryption.key_id, "key_version": record.encryption.key_version},
            )
            raise
