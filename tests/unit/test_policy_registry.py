"""Tests for loading policies from a JSON file."""
import json

import pytest

from vaultcore.domain.policy.models import ConditionType, Effect, PolicyStatus
from vaultcore.domain.policy.registry import load_policies
from vaultcore.errors import ValidationError

POLICY_DOC = {
    "policies": [
        {
            "id": "db-ops",
            "name": "Database operators",
            "secretPattern": "db-*",
            "securityLevel": ["confidential", "secret"],
            "defaultEffect": "deny",
            "rules": [
                {
                    "id": "ops-read",
                    "name": "Ops can read",
                    "policyType": "rbac",
                    "effect": "allow",
                    "priority": 10,
                    "conditions": [
                        {"type": "ForAnyValue", "key": "userRoles", "values": ["ops"]}
                    ],
                    "timeRestrictions": {
                        "allowedHours": {"start": "08:00", "end": "20:00"},
                        "allowedDays": [1, 2, 3, 4, 5]
                    }
                }
            ]
        }
    ]
}


def test_load_policies(tmp_path):
    path = tmp_path / "policies.json"
    path.write_text(json.dumps(POLICY_DOC))

    policies = load_policies(str(path))

    assert len(policies) == 1
    policy = policies[0]
    assert policy.secret_pattern == "db-*"
    assert policy.default_effect == Effect.DENY
    assert policy.status == PolicyStatus.ACTIVE
    rule = policy.rules[0]
    assert rule.conditions[0].type == ConditionType.FOR_ANY_VALUE
    assert rule.time_restrictions.allowed_hours.start == "08:00"
    assert rule.time_restrictions.allowed_days == [1, 2, 3, 4, 5]


def test_missing_file_returns_empty(tmp_path, caplog):
    assert load_policies(str(tmp_path / "absent.json")) == []
    assert "Policy file not found" in caplog.text


@pytest.mark.parametrize("content", [
    "{not json",
    json.dumps({"policies": {"id": "x"}}),
    json.dumps({"policies": [{"id": "x", "defaultEffect": "maybe"}]}),
    json.dumps({"policies": [{"id": "x", "rules": [{"id": "r", "effect": "allow",
                                                    "timeRestrictions": {"allowedDays": [9]}}]}]}),
])
def test_malformed_file_raises(tmp_path, content):
    path = tmp_path / "policies.json"
    path.write_text(content)

    with pytest.raises(ValidationError) as exc:
        load_policies(str(path))
    assert exc.value.code == "VALIDATION_FAILED"
