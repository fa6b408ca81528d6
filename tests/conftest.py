import pytest

from vaultcore.adapters.memory_store.stores import MemoryAuditSink, MemoryKeyStore, MemorySecretBackend
from vaultcore.domain.audit import AuditLogger
from vaultcore.domain.policy.models import (
    AccessCondition,
    AccessContext,
    AccessPolicy,
    AccessRule,
    ConditionType,
    Effect,
)
from vaultcore.domain.policy.policy_engine import PolicyEngine
from vaultcore.domain.secrets.encryption import MultiLevelEncryption
from vaultcore.domain.secrets.manager import SecretsManager

TEST_MASTER_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


@pytest.fixture
def engine():
    return MultiLevelEncryption(master_key=TEST_MASTER_KEY, key_store=MemoryKeyStore())


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def audit_logger(audit_sink):
    return AuditLogger(sink=audit_sink, ip_hmac_key="test-ip-key-secret", ip_hmac_key_id="test-ip-key-v1")


@pytest.fixture
def policy_engine():
    return PolicyEngine()


@pytest.fixture
def backend():
    return MemorySecretBackend()


@pytest.fixture
def manager(backend, engine, policy_engine, audit_logger):
    return SecretsManager(
        backend,
        encryption=engine,
        policy_engine=policy_engine,
        audit_logger=audit_logger,
    )


def allow_users_policy(*user_ids: str, policy_id: str = "allow-users") -> AccessPolicy:
    """Policy allowing the given users on every secret, denying everyone else."""
    return AccessPolicy(
        id=policy_id,
        name="Allow listed users",
        rules=[
            AccessRule(
                id=f"{policy_id}-rule",
                name="listed users",
                priority=10,
                effect=Effect.ALLOW,
                conditions=[AccessCondition(
                    type=ConditionType.STRING_EQUALS,
                    key="userId",
                    values=list(user_ids),
                )],
            )
        ],
        default_effect=Effect.DENY,
    )


def context_for(user_id: str, **kwargs) -> AccessContext:
    return AccessContext(user_id=user_id, source_ip=kwargs.pop("source_ip", "10.0.0.7"), **kwargs)


@pytest.fixture
def allow_users():
    return allow_users_policy


@pytest.fixture
def make_context():
    return context_for
