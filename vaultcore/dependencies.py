"""Process-wide singletons built from Settings."""
import logging
from typing import Optional

from vaultcore.domain.audit import AuditLogger
from vaultcore.domain.policy.policy_engine import PolicyEngine
from vaultcore.domain.policy.registry import load_policies
from vaultcore.domain.secrets.encryption import MultiLevelEncryption
from vaultcore.domain.secrets.manager import SecretsManager
from vaultcore.domain.secrets.ports import SecretBackend
from vaultcore.domain.secrets.rotation import RotationService
from vaultcore.domain.sink import AuditSink, CompositeSink, HttpSink, StdOutSink
from vaultcore.logging_hardening import setup_logging_redaction
from vaultcore.settings import Settings

logger = logging.getLogger(__name__)

_settings: Optional[Settings] = None
_encryption_engine: Optional[MultiLevelEncryption] = None
_policy_engine: Optional[PolicyEngine] = None
_audit_logger: Optional[AuditLogger] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
        if _settings.log_redaction:
            setup_logging_redaction()
    return _settings


def get_encryption_engine() -> MultiLevelEncryption:
    """Factory for the encryption engine."""
    global _encryption_engine
    if _encryption_engine is None:
        settings = get_settings()
        if not settings.master_key:
            if settings.require_master_key and not settings.dev_mode:
                raise RuntimeError("VAULTCORE_MASTER_KEY must be set when a master key is required")
            logger.warning("No master key configured; using an ephemeral key. Secrets will not survive a restart.")
        _encryption_engine = MultiLevelEncryption(master_key=settings.master_key)
    return _encryption_engine


def get_policy_engine() -> PolicyEngine:
    global _policy_engine
    if _policy_engine is None:
        settings = get_settings()
        engine = PolicyEngine()
        if settings.policy_file:
            engine.load_policies(load_policies(settings.policy_file))
        _policy_engine = engine
    return _policy_engine


def _build_sink(settings: Settings) -> AuditSink:
    if settings.audit_sink_url:
        return CompositeSink([
            StdOutSink(),
            HttpSink(
                settings.audit_sink_url,
                api_key=settings.audit_sink_api_key,
                max_queue_size=settings.audit_queue_size,
            ),
        ])
    return StdOutSink()


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        settings = get_settings()
        _audit_logger = AuditLogger(
            sink=_build_sink(settings),
            ip_hmac_key=settings.audit_ip_hmac_key,
            ip_hmac_key_id=settings.audit_ip_hmac_key_id,
            require_ip_hmac_key=settings.require_master_key and not settings.dev_mode,
        )
    return _audit_logger


def build_secrets_manager(backend: SecretBackend) -> SecretsManager:
    """SecretsManager over ``backend`` sharing the process-wide engines."""
    return SecretsManager(
        backend,
        encryption=get_encryption_engine(),
        policy_engine=get_policy_engine(),
        audit_logger=get_audit_logger(),
        default_page_size=get_settings().default_page_size,
    )


def build_rotation_service(manager: SecretsManager) -> RotationService:
    return RotationService(manager, batch_size=get_settings().rotation_batch_size)


def reset_dependencies() -> None:
    """Drop all singletons (tests, settings reload)."""
    global _settings, _encryption_engine, _policy_engine, _audit_logger
    _settings = None
    _encryption_engine = None
    _policy_engine = None
    _audit_logger = None
