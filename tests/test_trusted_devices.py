"""Tests for the device trust ledger (onesaas/services/trusted_devices.py)."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from onesaas.models import TrustedDevice
from onesaas.services.trusted_devices import DeviceTrustLedger


class TestDeviceTrustLedger:
    """Test suite for remember / is_trusted / revoke_all."""

    @pytest.fixture
    def ledger(self):
        return DeviceTrustLedger()

    async def test_remember_creates_seven_day_record(self, db, ledger, make_account):
        account = await make_account()
        now = datetime.now(UTC)

        remembered = await ledger.remember(db, account.id, now)
        await db.commit()

        assert len(remembered.device_token) == 64
        assert remembered.expires_at == now + timedelta(days=7)

    async def test_is_trusted_refreshes_last_used(self, db, ledger, make_account):
        account = await make_account()
        created = datetime.now(UTC)
        remembered = await ledger.remember(db, account.id, created)
        await db.commit()

        later = created + timedelta(days=1)
        assert await ledger.is_trusted(db, account.id, remembered.device_token, later) is True
        await db.commit()

        device = (await db.execute(select(TrustedDevice))).scalars().one()
        assert device.last_used_at.replace(tzinfo=UTC) == later

    async def test_expired_device_not_trusted(self, db, ledger, make_account):
        account = await make_account()
        created = datetime.now(UTC)
        remembered = await ledger.remember(db, account.id, created)
        await db.commit()

        assert await ledger.is_trusted(db, account.id, remembered.device_token, created + timedelta(days=8)) is False

    async def test_token_bound_to_account(self, db, ledger, make_account):
        alice = await make_account()
        bob = await make_account()
        remembered = await ledger.remember(db, alice.id)
        await db.commit()

        assert await ledger.is_trusted(db, bob.id, remembered.device_token) is False

    @pytest.mark.parametrize("token", [None, "", "unknown-token"])
    async def test_missing_or_unknown_token(self, db, ledger, make_account, token):
        account = await make_account()
        assert await ledger.is_trusted(db, account.id, token) is False

    async def test_revoke_all(self, db, ledger, make_account):
        alice = await make_account()
        bob = await make_account()
        first = await ledger.remember(db, alice.id)
        await ledger.remember(db, alice.id)
        kept = await ledger.remember(db, bob.id)
        await db.commit()

        assert await ledger.revoke_all(db, alice.id) == 2
        await db.commit()

        assert await ledger.is_trusted(db, alice.id, first.device_token) is False
        assert await ledger.is_trusted(db, bob.id, kept.device_token) is True
        count = await db.execute(select(func.count(TrustedDevice.id)))
        assert count.scalar_one() == 1
