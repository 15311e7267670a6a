"""Pytest configuration and fixtures."""

import os
from datetime import UTC, datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

# Disable IP rate limiting during tests
os.environ["ONESAAS_TESTING"] = "true"

from onesaas.config import Settings
from onesaas.context import build_context
from onesaas.db import Base, create_engine, create_sessionmaker
from onesaas.models import Account, Role
from onesaas.services.accounts import apply_role
from onesaas.services.mailer import Mailer
from onesaas.services.passwords import hash_password
from onesaas.services.seed import seed_services
from onesaas.services.tokens import TokenClaims

TEST_ENCRYPTION_KEY = "0f1e2d3c4b5a69788796a5b4c3d2e1f00112233445566778899aabbccddeeff0"
TEST_PASSWORD = "CorrectHorse1!"


@pytest.fixture(scope="session")
def password_hash() -> str:
    """Argon2 is deliberately slow, so hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_access_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        encryption_key=TEST_ENCRYPTION_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
        testing=True,
    )


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with create_sessionmaker(db_engine)() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mailer():
    """Mailer double; every send reports success."""
    mock = AsyncMock(spec=Mailer)
    mock.send_verification_email.return_value = True
    mock.send_2fa_enabled_email.return_value = True
    mock.send_subscription_email.return_value = True
    return mock


@pytest.fixture
async def ctx(settings, db_engine, mailer):
    """Application context sharing the test engine and capturing mail."""
    context = build_context(settings, engine=db_engine, mailer=mailer)
    yield context
    await context.tasks.drain()


@pytest.fixture
async def services(db):
    """Seed the plan catalogue and return services keyed by tier (BASIC/PRO/ENTERPRISE)."""
    from onesaas.config import SERVICE_TIERS
    from onesaas.services.subscriptions import list_services

    await seed_services(db)
    by_name = {s.name: s for s in await list_services(db)}
    return {key: by_name[tier.name] for key, tier in SERVICE_TIERS.items()}


@pytest.fixture
def make_account(db, ctx, password_hash):
    """Factory fixture to create verified accounts.

    Usage:
        account = await make_account(role=Role.ADMIN, username="alice")

    Defaults: verified email, password ``TEST_PASSWORD``, role GUEST with a
    fresh guest window.
    """
    counter = {"n": 0}

    async def _make_account(role: Role = Role.GUEST, verified: bool = True, **kwargs) -> Account:
        counter["n"] += 1
        username = kwargs.pop("username", f"user{counter['n']}")
        email = kwargs.pop("email", f"{username}@example.com")
        account = Account(
            username=username,
            email=email,
            encrypted_email=ctx.codec.encrypt(email),
            password_hash=password_hash,
            is_email_verified=verified,
            created_at=datetime.now(UTC),
        )
        apply_role(account, role)
        for key, value in kwargs.items():
            setattr(account, key, value)
        db.add(account)
        await db.commit()
        await db.refresh(account)
        return account

    return _make_account


@pytest.fixture
def auth_headers(ctx):
    """Build Bearer headers for an account."""

    def _auth_headers(account: Account) -> dict:
        token = ctx.tokens.issue_access(
            TokenClaims(user_id=account.id, email=account.email, role=account.role)
        )
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
async def app(ctx):
    """Create FastAPI app for testing."""
    from onesaas.main import create_app

    return create_app(ctx=ctx)


@pytest.fixture
async def client(app, db):
    """Create async test client bound to the test database session."""
    from httpx import ASGITransport, AsyncClient

    from onesaas.db import get_db

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
