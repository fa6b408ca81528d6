import json

import pytest

from vaultcore import dependencies
from vaultcore.adapters.memory_store.stores import MemorySecretBackend
from vaultcore.domain.sink import CompositeSink, HttpSink, StdOutSink
from vaultcore.settings import Settings

MASTER_KEY = "ab" * 32


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "VAULTCORE_MASTER_KEY",
        "VAULTCORE_DEV_MODE",
        "VAULTCORE_REQUIRE_MASTER_KEY",
        "VAULTCORE_POLICY_FILE",
        "VAULTCORE_AUDIT_SINK_URL",
        "VAULTCORE_AUDIT_IP_HMAC_KEY",
        "VAULTCORE_LOG_REDACTION",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VAULTCORE_LOG_REDACTION", "false")
    dependencies.reset_dependencies()
    yield
    dependencies.reset_dependencies()


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("VAULTCORE_MASTER_KEY", MASTER_KEY)
    monkeypatch.setenv("VAULTCORE_DEFAULT_PAGE_SIZE", "10")

    settings = Settings()

    assert settings.master_key == MASTER_KEY
    assert settings.default_page_size == 10
    assert settings.audit_ip_hmac_key_id == "dev-key-v1"


@pytest.mark.parametrize("name,value", [
    ("VAULTCORE_MASTER_KEY", "not-hex"),
    ("VAULTCORE_DEFAULT_PAGE_SIZE", "0"),
    ("VAULTCORE_ROTATION_BATCH_SIZE", "-1"),
])
def test_invalid_settings(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Settings()


def test_singletons_are_cached(monkeypatch):
    monkeypatch.setenv("VAULTCORE_MASTER_KEY", MASTER_KEY)

    assert dependencies.get_encryption_engine() is dependencies.get_encryption_engine()
    assert dependencies.get_policy_engine() is dependencies.get_policy_engine()
    assert dependencies.get_audit_logger() is dependencies.get_audit_logger()


def test_required_master_key_missing(monkeypatch):
    monkeypatch.setenv("VAULTCORE_REQUIRE_MASTER_KEY", "true")
    with pytest.raises(RuntimeError):
        dependencies.get_encryption_engine()


def test_dev_mode_allows_ephemeral_key(monkeypatch, caplog):
    monkeypatch.setenv("VAULTCORE_REQUIRE_MASTER_KEY", "true")
    monkeypatch.setenv("VAULTCORE_DEV_MODE", "true")

    assert dependencies.get_encryption_engine() is not None
    assert "ephemeral key" in caplog.text


def test_required_ip_key_missing(monkeypatch):
    monkeypatch.setenv("VAULTCORE_MASTER_KEY", MASTER_KEY)
    monkeypatch.setenv("VAULTCORE_REQUIRE_MASTER_KEY", "true")
    with pytest.raises(RuntimeError):
        dependencies.get_audit_logger()


def test_audit_sink_selection(monkeypatch):
    assert isinstance(dependencies.get_audit_logger().sink, StdOutSink)

    dependencies.reset_dependencies()
    monkeypatch.setenv("VAULTCORE_AUDIT_SINK_URL", "http://audit.invalid")
    sink = dependencies.get_audit_logger().sink

    assert isinstance(sink, CompositeSink)
    assert [type(s) for s in sink.sinks] == [StdOutSink, HttpSink]


def test_policy_file_is_loaded(monkeypatch, tmp_path):
    path = tmp_path / "policies.json"
    path.write_text(json.dumps({"policies": [{"id": "p1", "defaultEffect": "allow"}]}))
    monkeypatch.setenv("VAULTCORE_POLICY_FILE", str(path))

    assert [p.id for p in dependencies.get_policy_engine().list_policies()] == ["p1"]


def test_build_secrets_manager(monkeypatch):
    monkeypatch.setenv("VAULTCORE_MASTER_KEY", MASTER_KEY)
    monkeypatch.setenv("VAULTCORE_DEFAULT_PAGE_SIZE", "7")

    manager = dependencies.build_secrets_manager(MemorySecretBackend())

    assert manager.encryption is dependencies.get_encryption_engine()
    assert manager.policy_engine is dependencies.get_policy_engine()
    assert manager.default_page_size == 7


def test_build_rotation_service(monkeypatch):
    monkeypatch.setenv("VAULTCORE_MASTER_KEY", MASTER_KEY)
    monkeypatch.setenv("VAULTCORE_ROTATION_BATCH_SIZE", "5")

    manager = dependencies.build_secrets_manager(MemorySecretBackend())
    service = dependencies.build_rotation_service(manager)

    assert service.manager is manager
    assert service.batch_size == 5
