"""Secret Rotation Service.

Rotates secrets whose rotation policy has come due.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from vaultcore.domain.policy.models import AccessContext
from vaultcore.errors import VaultError

from .models import SecretRecord, SecretStatus, parse_iso

if TYPE_CHECKING:
    from .manager import SecretsManager

logger = logging.getLogger(__name__)


@dataclass
class RotationStats:
    scanned: int = 0
    rotated: int = 0
    skipped: int = 0
    failed: int = 0


def is_due(record: SecretRecord, now: datetime) -> bool:
    policy = record.metadata.rotation_policy
    if record.status != SecretStatus.ACTIVE:
        return False
    if not policy.enabled or not policy.auto_rotate:
        return False
    if not record.version.next_rotation:
        return False
    return parse_iso(record.version.next_rotation) <= now


class RotationService:
    """Service for scheduled secret rotation."""

    def __init__(self, manager: "SecretsManager", batch_size: Optional[int] = None):
        self.manager = manager
        self.batch_size = batch_size

    async def rotate_due(self, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> RotationStats:
        """
        Rotate every secret that is due.

        Args:
            now: Reference time (default: current UTC time).
            batch_size: Max secrets rotated in this pass (default: the
                service's batch_size); the rest are skipped and picked up
                by the next pass.

        Returns:
            RotationStats for this pass. Failures are logged and counted.
        """
        now = now or datetime.now(timezone.utc)
        if batch_size is None:
            batch_size = self.batch_size
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        stats = RotationStats()
        for record in await self.manager.backend.list_records():
            stats.scanned += 1

            if not is_due(record, now):
                stats.skipped += 1
                continue
            if batch_size is not None and stats.rotated + stats.failed >= batch_size:
                stats.skipped += 1
                continue

            context = AccessContext.system("POST", f"/secrets/{record.id}/rotate")
            try:
                rotated = await self.manager.rotate_secret(record.id, context)
                stats.rotated += 1
                logger.info(f"Rotated secret: {record.id} (v{rotated.version.current})")
            except VaultError as e:
                stats.failed += 1
                logger.error(f"Failed to rotate secret {record.id}: [{e.code}] {e.message}")
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to rotate secret {record.id}: {e}")

        logger.info(
            f"Rotation pass: scanned={stats.scanned} rotated={stats.rotated} "
            f"skipped={stats.skipped} failed={stats.failed}"
        )
        return stats
