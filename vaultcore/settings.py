"""Settings and configuration."""
from typing import Optional

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env into the process environment if it exists
load_dotenv()


class Settings(BaseSettings):
    # Security
    master_key: Optional[str] = None  # hex
    dev_mode: bool = False
    # Production posture: refuse to start without a master key / audit IP key
    require_master_key: bool = False

    # Policies
    policy_file: Optional[str] = None

    # Audit
    audit_sink_url: Optional[str] = None
    audit_sink_api_key: Optional[str] = None
    audit_queue_size: int = 1000
    audit_ip_hmac_key: Optional[str] = None
    audit_ip_hmac_key_id: str = "dev-key-v1"

    # Listing / rotation
    default_page_size: int = 50
    rotation_batch_size: int = 100

    # Logging
    log_redaction: bool = True

    model_config = SettingsConfigDict(
        env_prefix="VAULTCORE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("master_key")
    @classmethod
    def validate_master_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError("master_key must be a hex string")
        return v

    @field_validator("default_page_size", "rotation_batch_size", "audit_queue_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be positive")
        return v
