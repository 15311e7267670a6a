"""Tests for the plan catalogue and subscription lifecycle."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from onesaas.db import create_engine as create_db_engine
from onesaas.db import create_sessionmaker, init_db
from onesaas.exceptions import DuplicateResourceError, InsufficientRoleError, InvalidStateError, NotFoundError
from onesaas.models import Account, Role
from onesaas.models.account import as_utc
from onesaas.models.subscription import Subscription, SubscriptionStatus
from onesaas.services import subscriptions
from onesaas.services.access_policy import get_active_subscriptions
from onesaas.services.seed import seed_services


class TestCatalogue:
    """Test suite for list_services and get_service."""

    async def test_services_ordered_by_price(self, db, services):
        listed = await subscriptions.list_services(db)

        assert [s.name for s in listed] == ["Basic Plan", "Pro Plan", "Enterprise Plan"]

    async def test_inactive_services_hidden(self, db, services):
        services["BASIC"].is_active = False
        await db.commit()

        listed = await subscriptions.list_services(db)

        assert "Basic Plan" not in [s.name for s in listed]

    async def test_unknown_service(self, db, services):
        with pytest.raises(NotFoundError):
            await subscriptions.get_service(db, "missing")

    async def test_seeding_is_idempotent(self, db, services):
        assert await seed_services(db) == 0
        assert len(await subscriptions.list_services(db)) == 3


class TestSubscribe:
    """Test suite for subscribe_to_service."""

    async def test_guest_promoted_and_mailed(self, db, ctx, mailer, make_account, services):
        guest = await make_account(role=Role.GUEST)

        subscription = await subscriptions.subscribe_to_service(db, ctx, guest, services["PRO"].id)
        await ctx.tasks.drain()

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.service.name == "Pro Plan"
        assert guest.role == Role.SUBSCRIBED_USER.value
        assert guest.guest_access_expires_at is None
        mailer.send_subscription_email.assert_awaited_once_with(
            guest.email, guest.username, "Pro Plan", 29.99
        )

    async def test_staff_role_unchanged(self, db, ctx, make_account, services):
        admin = await make_account(role=Role.ADMIN)

        await subscriptions.subscribe_to_service(db, ctx, admin, services["BASIC"].id)

        assert admin.role == Role.ADMIN.value

    async def test_second_active_subscription_rejected(self, db, ctx, make_account, services):
        account = await make_account(role=Role.GUEST)
        await subscriptions.subscribe_to_service(db, ctx, account, services["BASIC"].id)

        with pytest.raises(DuplicateResourceError):
            await subscriptions.subscribe_to_service(db, ctx, account, services["PRO"].id)

        assert len(await get_active_subscriptions(db, account.id)) == 1

    async def test_inactive_service_rejected(self, db, ctx, make_account, services):
        account = await make_account()
        services["PRO"].is_active = False
        await db.commit()

        with pytest.raises(NotFoundError):
            await subscriptions.subscribe_to_service(db, ctx, account, services["PRO"].id)

    async def test_active_index_is_the_real_guard(self, db, ctx, make_account, services):
        account = await make_account(role=Role.SUBSCRIBED_USER)
        db.add(Subscription(
            user_id=account.id,
            service_id=services["BASIC"].id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=datetime.now(UTC),
        ))
        await db.commit()
        account_id = account.id

        db.add(Subscription(
            user_id=account_id,
            service_id=services["PRO"].id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=datetime.now(UTC),
        ))
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()


class TestConcurrentSubscribe:
    """Two subscribe calls racing for the same account."""

    @pytest.fixture
    async def file_engine(self, tmp_path):
        engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'subscribe.db'}", timeout_seconds=10)
        await init_db(engine)
        yield engine
        await engine.dispose()

    async def test_exactly_one_succeeds(self, file_engine, ctx, password_hash):
        factory = create_sessionmaker(file_engine)
        async with factory() as setup:
            await seed_services(setup)
            service_id = (await subscriptions.list_services(setup))[0].id
            account = Account(
                username="racer",
                email="racer@example.com",
                encrypted_email=ctx.codec.encrypt("racer@example.com"),
                password_hash=password_hash,
                is_email_verified=True,
                role=Role.SUBSCRIBED_USER.value,
            )
            setup.add(account)
            await setup.commit()
            account_id = account.id

        async with factory() as first_db, factory() as second_db:
            first = await first_db.get(Account, account_id)
            second = await second_db.get(Account, account_id)

            results = await asyncio.gather(
                subscriptions.subscribe_to_service(first_db, ctx, first, service_id),
                subscriptions.subscribe_to_service(second_db, ctx, second, service_id),
                return_exceptions=True,
            )

        assert sum(isinstance(r, Subscription) for r in results) == 1
        assert sum(isinstance(r, DuplicateResourceError) for r in results) == 1

        async with factory() as check:
            assert len(await get_active_subscriptions(check, account_id)) == 1


class TestCancel:
    """Test suite for cancel_subscription and the resulting role changes."""

    async def test_cancel_last_demotes_subscriber(self, db, ctx, make_account, services):
        account = await make_account(role=Role.GUEST)
        subscription = await subscriptions.subscribe_to_service(db, ctx, account, services["BASIC"].id)
        now = datetime.now(UTC)

        cancelled = await subscriptions.cancel_subscription(db, account, subscription.id, now=now)

        assert cancelled.status == SubscriptionStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        assert account.role == Role.GUEST.value
        assert as_utc(account.guest_access_expires_at) == now + timedelta(hours=5)

    async def test_cancel_keeps_staff_role(self, db, ctx, make_account, services):
        maintainer = await make_account(role=Role.MAINTAINER)
        subscription = await subscriptions.subscribe_to_service(db, ctx, maintainer, services["PRO"].id)

        await subscriptions.cancel_subscription(db, maintainer, subscription.id)

        assert maintainer.role == Role.MAINTAINER.value

    async def test_cancelled_is_terminal(self, db, ctx, make_account, services):
        account = await make_account()
        subscription = await subscriptions.subscribe_to_service(db, ctx, account, services["BASIC"].id)
        await subscriptions.cancel_subscription(db, account, subscription.id)

        with pytest.raises(InvalidStateError):
            await subscriptions.cancel_subscription(db, account, subscription.id)

    async def test_resubscribe_after_cancel(self, db, ctx, make_account, services):
        account = await make_account()
        first = await subscriptions.subscribe_to_service(db, ctx, account, services["BASIC"].id)
        await subscriptions.cancel_subscription(db, account, first.id)

        second = await subscriptions.subscribe_to_service(db, ctx, account, services["PRO"].id)

        assert second.id != first.id
        assert account.role == Role.SUBSCRIBED_USER.value

    async def test_only_owner_or_staff_may_cancel(self, db, ctx, make_account, services):
        holder = await make_account()
        stranger = await make_account()
        admin = await make_account(role=Role.ADMIN)
        subscription = await subscriptions.subscribe_to_service(db, ctx, holder, services["BASIC"].id)

        with pytest.raises(InsufficientRoleError):
            await subscriptions.cancel_subscription(db, stranger, subscription.id)

        await subscriptions.cancel_subscription(db, admin, subscription.id)
        await db.refresh(holder)
        assert holder.role == Role.GUEST.value
        assert admin.role == Role.ADMIN.value

    async def test_unknown_subscription(self, db, make_account):
        account = await make_account()

        with pytest.raises(NotFoundError):
            await subscriptions.cancel_subscription(db, account, "missing")


class TestHistory:
    """Test suite for my_subscriptions and subscription_history."""

    async def test_history_counts(self, db, ctx, make_account, services):
        account = await make_account()
        first = await subscriptions.subscribe_to_service(db, ctx, account, services["BASIC"].id)
        await subscriptions.cancel_subscription(db, account, first.id)
        await subscriptions.subscribe_to_service(db, ctx, account, services["PRO"].id)

        history = await subscriptions.subscription_history(db, account)
        mine = await subscriptions.my_subscriptions(db, account)

        assert history == subscriptions.SubscriptionHistory(total=2, active=1, cancelled=1, expired=0)
        assert len(mine) == 2

    async def test_empty_history(self, db, make_account):
        account = await make_account()

        history = await subscriptions.subscription_history(db, account)

        assert history.total == 0
