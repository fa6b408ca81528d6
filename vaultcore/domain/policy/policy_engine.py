"""Policy evaluation engine.

Decides whether an ``AccessContext`` may touch a secret with the given
metadata. Fail-closed: no applicable policy, or any internal error, means
deny.
"""
import logging
import re
import time
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from vaultcore.domain.secrets.models import SecretMetadata, parse_iso, utc_now_iso

from .conditions import evaluate_conditions
from .models import (
    AccessContext,
    AccessDecision,
    AccessPolicy,
    AccessRule,
    AllowedHours,
    AppliedRule,
    Effect,
    PolicyStatus,
    RuleStatus,
    TimeRestrictions,
)
from .ports import PolicyStore

logger = logging.getLogger(__name__)


def matches_pattern(secret_id: str, pattern: str) -> bool:
    """Anchored glob: ``*`` matches any run of characters, all else is literal."""
    if "*" not in pattern:
        return secret_id == pattern
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, secret_id, flags=re.DOTALL) is not None


def request_time(context: AccessContext) -> datetime:
    """The moment the request is evaluated at.

    Naive timestamps are local wall-clock time and are returned naive.
    """
    if context.timestamp:
        return datetime.fromisoformat(context.timestamp.replace("Z", "+00:00"))
    return datetime.now(timezone.utc).astimezone()


def check_time_restrictions(restrictions: TimeRestrictions, moment: datetime) -> Tuple[bool, Optional[str]]:
    """Returns (allowed, reason-if-not)."""
    if restrictions.valid_from or restrictions.valid_until:
        absolute = moment if moment.tzinfo else moment.astimezone()
        if restrictions.valid_from and parse_iso(restrictions.valid_from) > absolute:
            return False, "Rule not yet valid"
        if restrictions.valid_until and parse_iso(restrictions.valid_until) < absolute:
            return False, "Rule expired"

    local = moment
    if restrictions.timezone:
        aware = moment if moment.tzinfo else moment.astimezone()
        local = aware.astimezone(ZoneInfo(restrictions.timezone))
    elif moment.tzinfo:
        # No zone configured: windows are in the host's local time
        local = moment.astimezone()

    if restrictions.allowed_hours:
        current = local.hour * 60 + local.minute
        start = AllowedHours.to_minutes(restrictions.allowed_hours.start)
        end = AllowedHours.to_minutes(restrictions.allowed_hours.end)
        if start <= end:
            inside = start <= current <= end
        else:
            # Window wraps past midnight
            inside = current >= start or current <= end
        if not inside:
            return False, "Outside allowed hours"

    if restrictions.allowed_days is not None:
        # Python weekday(): Monday = 0; allowedDays: Sunday = 0
        day = (local.weekday() + 1) % 7
        if day not in restrictions.allowed_days:
            return False, "Outside allowed days"

    return True, None


class PolicyEngine:
    def __init__(self, store: Optional[PolicyStore] = None):
        if store is None:
            from vaultcore.adapters.memory_store.stores import MemoryPolicyStore
            store = MemoryPolicyStore()
        self.store = store

    def add_policy(self, policy: AccessPolicy) -> None:
        """Add or replace a policy."""
        self.store.put(policy)
        logger.info(f"Registered policy {policy.id} ({len(policy.rules)} rules, status={policy.status.value})")

    def load_policies(self, policies: List[AccessPolicy]) -> None:
        for policy in policies:
            self.add_policy(policy)

    def remove_policy(self, policy_id: str) -> bool:
        removed = self.store.remove(policy_id)
        if removed:
            logger.info(f"Removed policy {policy_id}")
        return removed

    def get_policy(self, policy_id: str) -> Optional[AccessPolicy]:
        return self.store.get(policy_id)

    def list_policies(self) -> List[AccessPolicy]:
        return self.store.list_policies()

    def find_applicable_policies(self, secret_id: str, metadata: SecretMetadata) -> List[AccessPolicy]:
        applicable = []
        for policy in self.store.list_policies():
            if policy.secret_id and policy.secret_id != secret_id:
                continue
            if policy.secret_pattern and not matches_pattern(secret_id, policy.secret_pattern):
                continue
            if policy.security_level is not None and metadata.security_level not in policy.security_level:
                continue
            if policy.category is not None and metadata.category not in policy.category:
                continue
            applicable.append(policy)
        return applicable

    def evaluate_access(
        self,
        secret_id: str,
        metadata: SecretMetadata,
        context: AccessContext
    ) -> AccessDecision:
        """
        Evaluate access to a secret.

        Rules of all active applicable policies are merged and tried in
        ascending priority; the first matching rule decides. With no match
        the first applicable policy's default effect applies.

        Never raises: internal errors become a deny decision.
        """
        start = time.perf_counter()
        applied: List[AppliedRule] = []

        def decide(granted: bool, reason: str) -> AccessDecision:
            return AccessDecision(
                granted=granted,
                reason=reason,
                applied_rules=applied,
                timestamp=utc_now_iso(),
                duration=(time.perf_counter() - start) * 1000.0,
            )

        try:
            policies = self.find_applicable_policies(secret_id, metadata)
            if not policies:
                return decide(False, "No applicable policies found")

            # Stable: active first, otherwise registration order
            policies.sort(key=lambda p: p.status != PolicyStatus.ACTIVE)

            rules: List[AccessRule] = [
                rule
                for policy in policies
                if policy.status == PolicyStatus.ACTIVE
                for rule in policy.rules
                if rule.status == RuleStatus.ACTIVE
            ]
            rules.sort(key=lambda r: r.priority)

            moment = request_time(context)

            for rule in rules:
                matched = self._evaluate_rule(rule, context, metadata, moment)
                applied.append(AppliedRule(
                    rule_id=rule.id,
                    rule_name=rule.name or rule.id,
                    effect=rule.effect,
                    matched=matched,
                ))
                if matched:
                    return decide(
                        rule.effect == Effect.ALLOW,
                        f'Rule "{rule.name or rule.id}" matched with effect "{rule.effect.value}"',
                    )

            default_effect = policies[0].default_effect
            return decide(
                default_effect == Effect.ALLOW,
                f'No rules matched, using default effect "{default_effect.value}"',
            )

        except Exception as e:
            logger.error(f"Policy evaluation failed for secret {secret_id}: {e}")
            return decide(False, f"Policy evaluation failed: {e}")

    def _evaluate_rule(
        self,
        rule: AccessRule,
        context: AccessContext,
        metadata: SecretMetadata,
        moment: datetime
    ) -> bool:
        if rule.time_restrictions:
            allowed, reason = check_time_restrictions(rule.time_restrictions, moment)
            if not allowed:
                logger.debug(f"Rule {rule.id} skipped: {reason}")
                return False
        return evaluate_conditions(rule.conditions, context, metadata)
