import hashlib
import hmac
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional

from uuid6 import uuid7

from vaultcore.domain.policy.models import AccessContext, AccessDecision
from vaultcore.domain.secrets.models import utc_now_iso
from vaultcore.domain.sink import AuditSink, StdOutSink

logger = logging.getLogger(__name__)

SCHEMA_ID = "vaultcore.secret_access_event"
SCHEMA_VERSION = "v1"

DEV_IP_HMAC_KEY = "dev-ip-key-secret-32-chars-long-!!!"

MAX_STRING_LEN = 1024


def _plain(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    # 1.0 and 1 must hash the same
    if isinstance(obj, float) and obj.is_integer():
        return int(obj)
    return obj


def canonical_hash(event: Dict[str, Any]) -> str:
    """SHA-256 over sorted-key, whitespace-free UTF-8 JSON."""
    payload = json.dumps(_plain(event), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class AuditOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    INTEGRITY_FAILURE = "integrity_failure"
    ERROR = "error"


class AuditAction(str, Enum):
    CREATE = "create"
    READ = "read"
    LIST = "list"
    UPDATE = "update"
    ROTATE = "rotate"
    ARCHIVE = "archive"


class AuditLogger:
    """Builds hash-sealed secret access events and hands them to a sink.

    Client IPs are HMAC-hashed; the raw address never leaves this class.
    """

    def __init__(
        self,
        sink: Optional[AuditSink] = None,
        ip_hmac_key: Optional[str] = None,
        ip_hmac_key_id: str = "dev-key-v1",
        require_ip_hmac_key: bool = False
    ):
        self.sink: AuditSink = sink or StdOutSink()
        self.ip_hmac_key_id = ip_hmac_key_id

        if not ip_hmac_key:
            if require_ip_hmac_key:
                raise RuntimeError("VAULTCORE_AUDIT_IP_HMAC_KEY must be set outside dev mode")
            ip_hmac_key = DEV_IP_HMAC_KEY
            logger.warning("Using insecure default audit IP HMAC key")
        self._ip_hmac_key = ip_hmac_key.encode("utf-8")

    async def log_secret_event(
        self,
        secret_id: str,
        action: AuditAction,
        outcome: AuditOutcome,
        context: AccessContext,
        decision: Optional[AccessDecision] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build an event, emit it and return it."""
        event = self.build_event(secret_id, action, outcome, context, decision, reason, details)
        await self.sink.emit(event)
        return event

    def hash_ip(self, ip: str) -> str:
        return hmac.new(self._ip_hmac_key, ip.encode("utf-8"), hashlib.sha256).hexdigest()

    def build_event(
        self,
        secret_id: str,
        action: AuditAction,
        outcome: AuditOutcome,
        context: AccessContext,
        decision: Optional[AccessDecision] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        principal: Dict[str, Any] = {"user_id": context.user_id}
        if context.session_id:
            principal["session_id"] = context.session_id

        # Absent, not null
        client: Dict[str, Any] = {}
        if context.source_ip:
            client["ip_hash"] = self.hash_ip(context.source_ip)
            client["ip_hash_alg"] = "hmac-sha256"
            client["ip_hash_key_id"] = self.ip_hmac_key_id
        if context.user_agent:
            client["user_agent"] = context.user_agent[:MAX_STRING_LEN]
        if context.device_id:
            client["device_id"] = context.device_id

        if decision is not None:
            decision_block = decision.to_audit_dict()
            if reason:
                decision_block["reason"] = reason
        else:
            decision_block = {"reason": reason or "", "applied_rules": []}

        event: Dict[str, Any] = {
            "schema_id": SCHEMA_ID,
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid7()),
            "ts": utc_now_iso(),
            "secret_id": secret_id,
            "action": AuditAction(action).value,
            "outcome": AuditOutcome(outcome).value,
            "principal": principal,
            "client": client,
            "decision": decision_block,
        }

        safe_details = self._sanitize(details)
        if safe_details:
            event["meta"] = safe_details

        event["event_hash"] = canonical_hash(event)
        return event

    def _sanitize(self, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Scalar values only; long strings truncated."""
        if not details:
            return {}

        safe: Dict[str, Any] = {}
        dropped = []
        for k, v in details.items():
            if isinstance(v, Enum):
                v = v.value
            if isinstance(v, str):
                safe[k] = v if len(v) <= MAX_STRING_LEN else v[:MAX_STRING_LEN - 3] + "..."
            elif isinstance(v, (int, float, bool)) or v is None:
                safe[k] = v
            else:
                dropped.append(k)

        if dropped:
            safe["meta_redacted_keys"] = sorted(dropped)
            logger.warning(f"AUDIT_META_REDACTION: keys={dropped}")
        return safe


def verify_event_hash(event: Dict[str, Any]) -> bool:
    """Recompute ``event_hash`` over the event minus the hash itself."""
    clean = {k: v for k, v in event.items() if k != "event_hash"}
    expected = canonical_hash(clean)
    return hmac.compare_digest(expected, event.get("event_hash", ""))
