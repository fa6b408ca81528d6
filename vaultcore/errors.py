"""Vaultcore error taxonomy.

Every error carries a stable ``code`` so callers can branch on it without
parsing messages, plus optional structured ``details``.
"""
from typing import Optional, Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from vaultcore.domain.policy.models import AccessDecision


class VaultError(Exception):
    """Base class for all vaultcore errors."""

    code: str = "VAULT_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Standardized error body."""
        error_body: Dict[str, Any] = {
            "code": self.code,
            "message": self.message
        }
        if self.details:
            error_body["details"] = self.details
        return {"error": error_body}


class ValidationError(VaultError):
    """Malformed metadata, unknown algorithm or missing required field."""
    code = "VALIDATION_FAILED"


class AccessDeniedError(VaultError):
    """Policy evaluation produced ``granted=False``.

    The message is the decision reason, verbatim.
    """
    code = "ACCESS_DENIED"

    def __init__(self, reason: str, decision: Optional["AccessDecision"] = None):
        super().__init__(reason)
        self.reason = reason
        self.decision = decision


class IntegrityError(VaultError):
    """Checksum or authentication tag mismatch on decrypt."""
    code = "INTEGRITY_FAILURE"


class KeyNotFoundError(VaultError):
    """A key id is not registered."""
    code = "KEY_NOT_FOUND"

    def __init__(self, key_id: str):
        super().__init__(f"Key {key_id} not found", details={"key_id": key_id})
        self.key_id = key_id


class EncryptionError(VaultError):
    """Underlying cipher failure while encrypting."""
    code = "ENCRYPTION_FAILED"


class DecryptionError(VaultError):
    """Underlying cipher failure while decrypting."""
    code = "DECRYPTION_FAILED"


class SecretNotFoundError(VaultError):
    """No secret is stored under the requested id."""
    code = "SECRET_NOT_FOUND"

    def __init__(self, secret_id: str):
        super().__init__(f"Secret {secret_id} not found", details={"secret_id": secret_id})
        self.secret_id = secret_id
