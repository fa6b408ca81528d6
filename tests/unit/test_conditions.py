"""Tests for condition lookup and comparison."""
import pytest

from vaultcore.domain.policy.conditions import evaluate_condition, evaluate_conditions, resolve_value
from vaultcore.domain.policy.models import AccessCondition, AccessContext, ConditionType, Location
from vaultcore.domain.secrets.models import SecretCategory, SecretMetadata, SecurityLevel


@pytest.fixture
def context():
    return AccessContext(
        user_id="alice",
        user_roles=["dev", "oncall"],
        user_attributes={
            "department": "Platform Engineering",
            "clearance": 3,
            "mfa": "true",
            "team": {"name": "infra"},
            "hired_at": "2022-06-15T00:00:00Z",
        },
        source_ip="10.1.2.3",
        device_id="laptop-7",
        location=Location(country="DE", city="Berlin"),
        request_method="GET",
    )


@pytest.fixture
def metadata():
    return SecretMetadata(
        security_level=SecurityLevel.CONFIDENTIAL,
        category=SecretCategory.DATABASE,
        owner_id="alice",
        risk_score=65,
    )


def check(condition_type, key, values, context, metadata, negate=False):
    condition = AccessCondition(type=condition_type, key=key, values=values, negate=negate)
    return evaluate_condition(condition, context, metadata)


class TestLookup:

    @pytest.mark.parametrize("key,expected", [
        ("userId", "alice"),
        ("userRoles", ["dev", "oncall"]),
        ("sourceIp", "10.1.2.3"),
        ("ownerId", "alice"),
        ("user.department", "Platform Engineering"),
        ("user.team.name", "infra"),
        ("clearance", 3),
        ("context.deviceId", "laptop-7"),
        ("context.location.country", "DE"),
        ("secret.riskScore", 65),
    ])
    def test_keys(self, context, metadata, key, expected):
        assert resolve_value(key, context, metadata) == expected

    def test_enums_compare_by_value(self, context, metadata):
        assert check(ConditionType.STRING_EQUALS, "securityLevel", ["confidential"], context, metadata)
        assert check(ConditionType.STRING_EQUALS, "category", ["database"], context, metadata)
        assert check(ConditionType.STRING_EQUALS, "secret.businessImpact", ["low"], context, metadata)


class TestComparisons:

    def test_string_equals(self, context, metadata):
        assert check(ConditionType.STRING_EQUALS, "userId", ["bob", "alice"], context, metadata)
        assert not check(ConditionType.STRING_EQUALS, "userId", ["Alice"], context, metadata)

    def test_string_contains_is_case_insensitive(self, context, metadata):
        assert check(ConditionType.STRING_CONTAINS, "user.department", ["ENGINEERING"], context, metadata)
        assert not check(ConditionType.STRING_CONTAINS, "user.department", ["sales"], context, metadata)

    def test_numeric(self, context, metadata):
        assert check(ConditionType.NUMERIC_EQUALS, "clearance", [3], context, metadata)
        assert check(ConditionType.NUMERIC_EQUALS, "clearance", ["3"], context, metadata)
        assert check(ConditionType.NUMERIC_GREATER_THAN, "clearance", [2], context, metadata)
        assert not check(ConditionType.NUMERIC_GREATER_THAN, "clearance", [3], context, metadata)
        assert check(ConditionType.NUMERIC_LESS_THAN, "secret.riskScore", [70], context, metadata)

    def test_bool_coerces_strings(self, context, metadata):
        assert check(ConditionType.BOOL, "mfa", [True], context, metadata)
        assert not check(ConditionType.BOOL, "mfa", [False], context, metadata)

    @pytest.mark.parametrize("ranges,expected", [
        (["10.1.2.3"], True),
        (["10.0.0.0/8"], True),
        (["10.1.2.0/24", "192.168.0.0/16"], True),
        (["192.168.0.0/16"], False),
        (["fd00::/8"], False),
        (["bogus", "10.1.0.0/16"], True),
    ])
    def test_ip_address(self, context, metadata, ranges, expected):
        assert check(ConditionType.IP_ADDRESS, "sourceIp", ranges, context, metadata) is expected

    def test_ipv6(self, metadata):
        ctx = AccessContext(user_id="u", source_ip="fd00::1")
        assert check(ConditionType.IP_ADDRESS, "sourceIp", ["fd00::/8"], ctx, metadata)

    def test_datetime_range(self, context, metadata):
        assert check(
            ConditionType.DATE_TIME, "hired_at",
            ["2022-01-01T00:00:00Z,2022-12-31T23:59:59Z"], context, metadata,
        )
        assert not check(
            ConditionType.DATE_TIME, "hired_at",
            ["2023-01-01T00:00:00Z,2023-12-31T23:59:59Z"], context, metadata,
        )

    def test_for_all_values(self, context, metadata):
        assert check(ConditionType.FOR_ALL_VALUES, "userRoles", ["dev", "oncall"], context, metadata)
        assert not check(ConditionType.FOR_ALL_VALUES, "userRoles", ["dev", "admin"], context, metadata)

    def test_for_any_value(self, context, metadata):
        assert check(ConditionType.FOR_ANY_VALUE, "userRoles", ["admin", "oncall"], context, metadata)
        assert not check(ConditionType.FOR_ANY_VALUE, "userRoles", ["admin"], context, metadata)
        # Scalar falls back to membership
        assert check(ConditionType.FOR_ANY_VALUE, "userId", ["alice"], context, metadata)

    def test_negate(self, context, metadata):
        assert not check(ConditionType.STRING_EQUALS, "userId", ["alice"], context, metadata, negate=True)
        assert check(ConditionType.STRING_EQUALS, "userId", ["bob"], context, metadata, negate=True)


class TestMalformed:

    @pytest.mark.parametrize("condition_type,key,values", [
        (ConditionType.NUMERIC_GREATER_THAN, "user.department", [1]),
        (ConditionType.NUMERIC_LESS_THAN, "clearance", []),
        (ConditionType.IP_ADDRESS, "userId", ["10.0.0.0/8"]),
        (ConditionType.DATE_TIME, "user.department", ["2022-01-01T00:00:00Z,2023-01-01T00:00:00Z"]),
        (ConditionType.DATE_TIME, "hired_at", ["no-comma"]),
        (ConditionType.STRING_EQUALS, "user.missing", ["x"]),
        (ConditionType.STRING_EQUALS, "not_an_attribute", ["x"]),
    ])
    def test_malformed_is_false_even_when_negated(self, context, metadata, condition_type, key, values):
        assert check(condition_type, key, values, context, metadata) is False
        assert check(condition_type, key, values, context, metadata, negate=True) is False


def test_conditions_are_anded(context, metadata):
    conditions = [
        AccessCondition(type=ConditionType.STRING_EQUALS, key="userId", values=["alice"]),
        AccessCondition(type=ConditionType.FOR_ANY_VALUE, key="userRoles", values=["oncall"]),
    ]
    assert evaluate_conditions(conditions, context, metadata)
    conditions.append(AccessCondition(type=ConditionType.NUMERIC_GREATER_THAN, key="clearance", values=[5]))
    assert not evaluate_conditions(conditions, context, metadata)
    assert evaluate_conditions([], context, metadata)
