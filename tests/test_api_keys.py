"""Tests for API key management and authentication."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from onesaas.db import create_engine as create_db_engine
from onesaas.db import create_sessionmaker, init_db
from onesaas.exceptions import (
    DuplicateResourceError,
    EmailNotVerifiedError,
    InsufficientRoleError,
    InvalidApiKeyError,
    InvalidStateError,
    NoActiveSubscriptionError,
    NotFoundError,
    ValidationFailedError,
)
from onesaas.models import Account, Role
from onesaas.models.api_key import ApiKey
from onesaas.services import api_keys, subscriptions
from onesaas.utils.encryption import SecretCodec


@pytest.fixture
def make_subscriber(db, ctx, make_account, services):
    async def _make(**kwargs):
        account = await make_account(role=Role.GUEST, **kwargs)
        await subscriptions.subscribe_to_service(db, ctx, account, services["BASIC"].id)
        return account

    return _make


class TestCreateApiKey:
    """Test suite for create_api_key."""

    async def test_raw_key_returned_once_digest_stored(self, db, make_subscriber):
        account = await make_subscriber()

        created = await api_keys.create_api_key(db, account, "  ci  ")

        assert created.key.startswith("sk_live_")
        assert len(created.key) == len("sk_live_") + 64
        assert created.api_key.name == "ci"
        assert created.api_key.key_hash == SecretCodec.hash(created.key)
        assert created.api_key.key_prefix == created.key[:15] + "..."
        assert created.key not in (created.api_key.key_hash, created.api_key.key_prefix)

    async def test_name_validation(self, db, make_subscriber):
        account = await make_subscriber()

        with pytest.raises(ValidationFailedError):
            await api_keys.create_api_key(db, account, "   ")
        with pytest.raises(ValidationFailedError):
            await api_keys.create_api_key(db, account, "x" * 101)

    async def test_guest_cannot_create(self, db, make_account):
        guest = await make_account(role=Role.GUEST)

        with pytest.raises(InsufficientRoleError):
            await api_keys.create_api_key(db, guest, "nope")

    async def test_subscriber_without_plan_cannot_create(self, db, make_account):
        subscriber = await make_account(role=Role.SUBSCRIBED_USER)

        with pytest.raises(NoActiveSubscriptionError):
            await api_keys.create_api_key(db, subscriber, "nope")

    async def test_staff_without_plan_can_create(self, db, make_account):
        maintainer = await make_account(role=Role.MAINTAINER)

        created = await api_keys.create_api_key(db, maintainer, "ops")

        assert created.api_key.user_id == maintainer.id

    async def test_duplicate_live_name_rejected(self, db, make_subscriber):
        account = await make_subscriber()
        first = await api_keys.create_api_key(db, account, "ci")

        with pytest.raises(DuplicateResourceError):
            await api_keys.create_api_key(db, account, "ci")

        await api_keys.revoke_api_key(db, account, first.api_key.id)
        await api_keys.create_api_key(db, account, "ci")
        assert len(await api_keys.list_api_keys(db, account)) == 2

    async def test_live_name_index_guards_direct_inserts(self, db, make_account):
        account = await make_account(role=Role.MAINTAINER)
        account_id = account.id
        db.add(ApiKey(user_id=account_id, name="ci", key_hash="a" * 64, key_prefix="sk_live_aaaaaaa..."))
        db.add(ApiKey(user_id=account_id, name="ci", key_hash="b" * 64, key_prefix="sk_live_bbbbbbb...", is_revoked=True))
        await db.commit()

        db.add(ApiKey(user_id=account_id, name="ci", key_hash="c" * 64, key_prefix="sk_live_ccccccc..."))
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()


class TestConcurrentCreateApiKey:
    """Two creates racing for the same key name."""

    @pytest.fixture
    async def file_engine(self, tmp_path):
        engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'api_keys.db'}", timeout_seconds=10)
        await init_db(engine)
        yield engine
        await engine.dispose()

    async def test_exactly_one_succeeds(self, file_engine, ctx, password_hash):
        factory = create_sessionmaker(file_engine)
        async with factory() as setup:
            account = Account(
                username="racer",
                email="racer@example.com",
                encrypted_email=ctx.codec.encrypt("racer@example.com"),
                password_hash=password_hash,
                is_email_verified=True,
                role=Role.MAINTAINER.value,
            )
            setup.add(account)
            await setup.commit()
            account_id = account.id

        async with factory() as first_db, factory() as second_db:
            first = await first_db.get(Account, account_id)
            second = await second_db.get(Account, account_id)

            results = await asyncio.gather(
                api_keys.create_api_key(first_db, first, "deploy"),
                api_keys.create_api_key(second_db, second, "deploy"),
                return_exceptions=True,
            )

        assert sum(isinstance(r, api_keys.CreatedApiKey) for r in results) == 1
        assert sum(isinstance(r, DuplicateResourceError) for r in results) == 1

        async with factory() as check:
            keys = (await check.execute(select(ApiKey).where(ApiKey.user_id == account_id))).scalars().all()
            assert [key.name for key in keys] == ["deploy"]


class TestManageApiKey:
    """Test suite for revoke, delete and ownership checks."""

    async def test_revoke_twice(self, db, make_subscriber):
        account = await make_subscriber()
        created = await api_keys.create_api_key(db, account, "ci")

        revoked = await api_keys.revoke_api_key(db, account, created.api_key.id)

        assert revoked.is_revoked is True
        with pytest.raises(InvalidStateError):
            await api_keys.revoke_api_key(db, account, created.api_key.id)

    async def test_other_users_key_is_off_limits(self, db, make_subscriber, make_account):
        owner = await make_subscriber()
        stranger = await make_subscriber()
        maintainer = await make_account(role=Role.MAINTAINER)
        created = await api_keys.create_api_key(db, owner, "ci")

        with pytest.raises(InsufficientRoleError):
            await api_keys.revoke_api_key(db, stranger, created.api_key.id)
        with pytest.raises(InsufficientRoleError):
            await api_keys.delete_api_key(db, stranger, created.api_key.id)

        await api_keys.revoke_api_key(db, maintainer, created.api_key.id)

    async def test_deleted_key_is_gone(self, db, ctx, make_subscriber):
        account = await make_subscriber()
        created = await api_keys.create_api_key(db, account, "ci")

        await api_keys.delete_api_key(db, account, created.api_key.id)

        assert await api_keys.list_api_keys(db, account) == []
        with pytest.raises(InvalidApiKeyError):
            await api_keys.authenticate_api_key(db, ctx, created.key)
        with pytest.raises(NotFoundError):
            await api_keys.delete_api_key(db, account, created.api_key.id)


class TestAuthenticateApiKey:
    """Test suite for authenticate_api_key."""

    async def test_valid_key_resolves_account_and_counts_usage(self, db, ctx, make_subscriber):
        account = await make_subscriber()
        created = await api_keys.create_api_key(db, account, "ci")
        now = datetime.now(UTC)

        resolved = await api_keys.authenticate_api_key(db, ctx, created.key, now=now)
        await ctx.tasks.drain()

        assert resolved.id == account.id
        await db.refresh(created.api_key)
        assert created.api_key.usage_count == 1
        assert created.api_key.last_used_at is not None

    @pytest.mark.parametrize("raw", [None, "", "sk_live_short", "pk_live_" + "a" * 64, "sk_live_" + "G" * 64])
    async def test_malformed_key(self, db, ctx, raw):
        with pytest.raises(InvalidApiKeyError):
            await api_keys.authenticate_api_key(db, ctx, raw)

    async def test_unknown_key(self, db, ctx):
        with pytest.raises(InvalidApiKeyError):
            await api_keys.authenticate_api_key(db, ctx, "sk_live_" + "a" * 64)

    async def test_revoked_key_fails_with_correct_secret(self, db, ctx, make_subscriber):
        account = await make_subscriber()
        created = await api_keys.create_api_key(db, account, "ci")
        await api_keys.revoke_api_key(db, account, created.api_key.id)

        with pytest.raises(InvalidApiKeyError):
            await api_keys.authenticate_api_key(db, ctx, created.key)

    async def test_expired_key(self, db, ctx, make_subscriber):
        account = await make_subscriber()
        created = await api_keys.create_api_key(db, account, "ci")
        created.api_key.expires_at = datetime.now(UTC) - timedelta(minutes=1)
        await db.commit()

        with pytest.raises(InvalidApiKeyError):
            await api_keys.authenticate_api_key(db, ctx, created.key)

    async def test_unverified_owner(self, db, ctx, make_account):
        maintainer = await make_account(role=Role.MAINTAINER, verified=False)
        created = await api_keys.create_api_key(db, maintainer, "ops")

        with pytest.raises(EmailNotVerifiedError):
            await api_keys.authenticate_api_key(db, ctx, created.key)

    async def test_usage_failure_is_swallowed(self, ctx):
        await ctx.engine.dispose()

        await api_keys.record_api_key_usage(ctx, "missing", datetime.now(UTC))

    async def test_usage_for_missing_key_is_noop(self, db, ctx):
        await api_keys.record_api_key_usage(ctx, "missing", datetime.now(UTC))

        assert (await db.get(ApiKey, "missing")) is None
