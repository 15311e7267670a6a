"""Trusted device ledger: devices exempt from repeated 2FA challenges."""

import logging
from datetime import UTC, datetime, timedelta
from typing import NamedTuple, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.config import TRUSTED_DEVICE_DURATION
from onesaas.models.trusted_device import TrustedDevice
from onesaas.utils.encryption import SecretCodec

logger = logging.getLogger(__name__)


class RememberedDevice(NamedTuple):
    device_token: str
    expires_at: datetime


class DeviceTrustLedger:
    """Create, check and purge trusted-device records.

    Methods add to the given session and flush; the caller owns the commit.
    """

    def __init__(self, duration: timedelta = TRUSTED_DEVICE_DURATION):
        self.duration = duration

    async def remember(self, db: AsyncSession, account_id: str,
                       now: Optional[datetime] = None) -> RememberedDevice:
        now = now or datetime.now(UTC)
        device = TrustedDevice(
            user_id=account_id,
            device_token=SecretCodec.random_token(),
            device_fingerprint="web",
            expires_at=TrustedDevice.get_expiry_time(now, self.duration),
            created_at=now,
        )
        db.add(device)
        await db.flush()
        logger.info("Trusted device registered for account %s", account_id)
        return RememberedDevice(device.device_token, device.expires_at)

    async def is_trusted(self, db: AsyncSession, account_id: str, device_token: Optional[str],
                         now: Optional[datetime] = None) -> bool:
        """True for an unexpired matching record; refreshes its last-used time."""
        if not device_token:
            return False

        now = now or datetime.now(UTC)
        result = await db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == account_id,
                TrustedDevice.device_token == device_token,
            )
        )
        device = result.scalars().first()
        if device is None or device.is_expired(now):
            return False

        device.last_used_at = now
        await db.flush()
        return True

    async def revoke_all(self, db: AsyncSession, account_id: str) -> int:
        result = await db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == account_id))
        await db.flush()
        if result.rowcount:
            logger.info("Revoked %d trusted device(s) for account %s", result.rowcount, account_id)
        return result.rowcount or 0
