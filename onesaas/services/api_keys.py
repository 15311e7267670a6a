"""API key management and authentication.

The raw key is returned exactly once, from ``create_api_key``. Afterwards only
its SHA-256 digest is available, so a lost key has to be replaced.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.context import AppContext
from onesaas.exceptions import (
    DuplicateResourceError,
    EmailNotVerifiedError,
    InsufficientRoleError,
    InvalidApiKeyError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from onesaas.models.account import STAFF_ROLES, Account
from onesaas.models.api_key import ApiKey
from onesaas.services.access_policy import ensure_can_create_api_key
from onesaas.utils.api_key import generate_api_key, is_valid_api_key_format
from onesaas.utils.encryption import SecretCodec
from onesaas.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

MAX_KEY_NAME_LENGTH = 100


@dataclass
class CreatedApiKey:
    api_key: ApiKey
    key: str


async def create_api_key(db: AsyncSession, account: Account, name: str) -> CreatedApiKey:
    """Create a key for ``account``.

    Raises:
        ValidationFailedError: Blank or over-long name
        InsufficientRoleError: Guests cannot hold keys
        NoActiveSubscriptionError: Non-staff account without an ACTIVE subscription
        DuplicateResourceError: The account already has a live key with this name
    """
    name = (name or "").strip()
    if not name:
        raise ValidationFailedError("API key name is required")
    if len(name) > MAX_KEY_NAME_LENGTH:
        raise ValidationFailedError(f"API key name must be {MAX_KEY_NAME_LENGTH} characters or less")

    await ensure_can_create_api_key(db, account)

    existing = await db.execute(
        select(ApiKey.id).where(
            ApiKey.user_id == account.id,
            ApiKey.name == name,
            ApiKey.is_revoked.is_(False),
        )
    )
    if existing.first() is not None:
        raise DuplicateResourceError("An API key with this name already exists")

    generated = generate_api_key()
    api_key = ApiKey(
        user_id=account.id,
        name=name,
        key_hash=generated.key_hash,
        key_prefix=generated.key_prefix,
    )
    account_id = account.id
    db.add(api_key)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Concurrent API key create with a duplicate name rejected for account %s", account_id)
        raise DuplicateResourceError("An API key with this name already exists")
    await db.refresh(api_key)

    logger.info("API key %s (%s) created for account %s", api_key.id, sanitize_log_message(name), account.id)
    return CreatedApiKey(api_key=api_key, key=generated.key)


async def list_api_keys(db: AsyncSession, account: Account) -> List[ApiKey]:
    result = await db.execute(
        select(ApiKey).where(ApiKey.user_id == account.id).order_by(ApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def _get_managed_key(db: AsyncSession, account: Account, key_id: str) -> ApiKey:
    result = await db.execute(select(ApiKey).where(ApiKey.id == key_id))
    api_key = result.scalars().first()
    if api_key is None:
        raise NotFoundError("API key not found")
    if api_key.user_id != account.id and account.role_enum not in STAFF_ROLES:
        raise InsufficientRoleError("You can only manage your own API keys")
    return api_key


async def revoke_api_key(db: AsyncSession, account: Account, key_id: str) -> ApiKey:
    """Mark a key revoked. There is no way back."""
    api_key = await _get_managed_key(db, account, key_id)
    if api_key.is_revoked:
        raise InvalidStateError("API key is already revoked")

    api_key.is_revoked = True
    await db.commit()
    await db.refresh(api_key)
    logger.info("API key %s revoked by account %s", api_key.id, account.id)
    return api_key


async def delete_api_key(db: AsyncSession, account: Account, key_id: str) -> None:
    api_key = await _get_managed_key(db, account, key_id)
    await db.delete(api_key)
    await db.commit()
    logger.info("API key %s deleted by account %s", key_id, account.id)


async def authenticate_api_key(db: AsyncSession, ctx: AppContext, raw_key: Optional[str],
                               now: Optional[datetime] = None) -> Account:
    """Resolve the account behind an ``X-API-Key`` value.

    Usage tracking runs in the background on its own session and cannot
    fail the request.

    Raises:
        InvalidApiKeyError: Malformed, unknown, revoked or expired key
        EmailNotVerifiedError: The owning account has not verified its email
    """
    now = now or datetime.now(UTC)
    if not raw_key or not is_valid_api_key_format(raw_key):
        raise InvalidApiKeyError("Invalid API key format")

    result = await db.execute(select(ApiKey).where(ApiKey.key_hash == SecretCodec.hash(raw_key)))
    api_key = result.scalars().first()
    if api_key is None:
        raise InvalidApiKeyError()
    if api_key.is_revoked:
        raise InvalidApiKeyError("API key has been revoked")
    if api_key.is_expired(now):
        raise InvalidApiKeyError("API key has expired")

    account = await db.get(Account, api_key.user_id)
    if account is None:
        raise InvalidApiKeyError()
    if not account.is_email_verified:
        raise EmailNotVerifiedError()

    ctx.tasks.spawn(record_api_key_usage(ctx, api_key.id, now), name="api-key-usage")
    return account


async def record_api_key_usage(ctx: AppContext, key_id: str, used_at: datetime) -> None:
    """Best-effort usage counter update; errors are logged and dropped."""
    try:
        async with ctx.session_factory() as db:
            await db.execute(
                update(ApiKey)
                .where(ApiKey.id == key_id)
                .values(usage_count=ApiKey.usage_count + 1, last_used_at=used_at)
            )
            await db.commit()
    except SQLAlchemyError:
        logger.error("Failed to record usage for API key %s", key_id, exc_info=True)
