"""Condition evaluation.

Pure functions: resolve the actual value a condition refers to, then compare
it with the condition's expected values. A condition that cannot be
evaluated (unknown attribute, unparsable number, address or date) is simply
not satisfied.
"""
import ipaddress
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Mapping

from vaultcore.domain.secrets.models import SecretMetadata, parse_iso

from .models import AccessCondition, AccessContext, ConditionType

logger = logging.getLogger(__name__)

_MISSING = object()

_TRUE_STRINGS = {"true", "1", "yes"}

# Keys resolved directly, without a dot-path.
_CONTEXT_KEYS = {
    "userId": "user_id",
    "userRoles": "user_roles",
    "sourceIp": "source_ip",
}
_METADATA_KEYS = {
    "securityLevel": "security_level",
    "category": "category",
    "ownerId": "owner_id",
}


class ConditionError(ValueError):
    """The condition cannot be evaluated against the given inputs."""


def _scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _walk(root: Any, path: str) -> Any:
    current = root
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def resolve_value(key: str, context: AccessContext, metadata: SecretMetadata) -> Any:
    """Look up the value a condition key refers to.

    Returns the module-level ``_MISSING`` sentinel when nothing is found.
    """
    if key in _CONTEXT_KEYS:
        value = getattr(context, _CONTEXT_KEYS[key])
    elif key in _METADATA_KEYS:
        value = getattr(metadata, _METADATA_KEYS[key])
    elif key.startswith("user."):
        value = _walk(context.user_attributes, key[len("user."):])
    elif key.startswith("context."):
        value = _walk(context.model_dump(by_alias=True), key[len("context."):])
    elif key.startswith("secret."):
        value = _walk(metadata.model_dump(by_alias=True), key[len("secret."):])
    else:
        value = context.user_attributes.get(key, _MISSING)

    if value is None:
        return _MISSING
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    raise ConditionError(f"Cannot interpret {value!r} as a boolean")


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConditionError(f"Not a number: {value!r}") from e


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        return parse_iso(str(value).strip())
    except ValueError as e:
        raise ConditionError(f"Not an ISO-8601 timestamp: {value!r}") from e


def _ip_matches(actual: Any, expected: List[Any]) -> bool:
    try:
        address = ipaddress.ip_address(str(actual).strip())
    except ValueError as e:
        raise ConditionError(f"Not an IP address: {actual!r}") from e

    for candidate in expected:
        candidate = str(candidate).strip()
        if "/" in candidate:
            try:
                network = ipaddress.ip_network(candidate, strict=False)
            except ValueError:
                logger.debug(f"Skipping malformed network {candidate!r}")
                continue
            if address.version == network.version and address in network:
                return True
        else:
            try:
                if address == ipaddress.ip_address(candidate):
                    return True
            except ValueError:
                logger.debug(f"Skipping malformed address {candidate!r}")
    return False


def _datetime_in_ranges(actual: Any, expected: List[Any]) -> bool:
    moment = _to_datetime(actual)
    for window in expected:
        start, sep, end = str(window).partition(",")
        if not sep:
            raise ConditionError(f"DateTime range must be 'start,end': {window!r}")
        if _to_datetime(start) <= moment <= _to_datetime(end):
            return True
    return False


def _as_list(actual: Any) -> List[Any]:
    if isinstance(actual, (list, tuple, set)):
        return [_scalar(a) for a in actual]
    return [_scalar(actual)]


def compare(condition_type: ConditionType, actual: Any, expected: List[Any]) -> bool:
    """Compare ``actual`` with ``expected`` per ``condition_type``.

    Raises:
        ConditionError: inputs cannot be compared with this condition type.
    """
    expected = [_scalar(e) for e in expected]

    if condition_type == ConditionType.STRING_EQUALS:
        wanted = {str(e) for e in expected}
        return any(str(a) in wanted for a in _as_list(actual))

    if condition_type == ConditionType.STRING_CONTAINS:
        haystacks = [str(a).lower() for a in _as_list(actual)]
        return any(str(e).lower() in h for e in expected for h in haystacks)

    if condition_type == ConditionType.NUMERIC_EQUALS:
        number = _to_number(actual)
        return any(number == _to_number(e) for e in expected)

    if condition_type in (ConditionType.NUMERIC_GREATER_THAN, ConditionType.NUMERIC_LESS_THAN):
        if not expected:
            raise ConditionError("Numeric comparison needs a threshold")
        number = _to_number(actual)
        threshold = _to_number(expected[0])
        if condition_type == ConditionType.NUMERIC_GREATER_THAN:
            return number > threshold
        return number < threshold

    if condition_type == ConditionType.BOOL:
        flag = _to_bool(actual)
        return any(flag == _to_bool(e) for e in expected)

    if condition_type == ConditionType.IP_ADDRESS:
        return _ip_matches(actual, expected)

    if condition_type == ConditionType.DATE_TIME:
        return _datetime_in_ranges(actual, expected)

    if condition_type == ConditionType.FOR_ALL_VALUES:
        present = {str(a) for a in _as_list(actual)}
        return all(str(e) in present for e in expected)

    if condition_type == ConditionType.FOR_ANY_VALUE:
        present = {str(a) for a in _as_list(actual)}
        return any(str(e) in present for e in expected)

    raise ConditionError(f"Unsupported condition type: {condition_type}")


def evaluate_condition(
    condition: AccessCondition,
    context: AccessContext,
    metadata: SecretMetadata
) -> bool:
    """Evaluate one condition. Never raises.

    ``negate`` inverts a successful comparison; a condition that could not be
    evaluated is False whether or not it is negated.
    """
    actual = resolve_value(condition.key, context, metadata)
    if actual is _MISSING:
        logger.debug(f"Condition key {condition.key!r} not present in request")
        return False

    try:
        result = compare(condition.type, _scalar(actual), condition.values)
    except ConditionError as e:
        logger.debug(f"Condition {condition.type.value}({condition.key}) not evaluable: {e}")
        return False

    return not result if condition.negate else result


def evaluate_conditions(
    conditions: List[AccessCondition],
    context: AccessContext,
    metadata: SecretMetadata
) -> bool:
    """AND over all conditions; an empty list holds."""
    return all(evaluate_condition(c, context, metadata) for c in conditions)

