"""Startup bootstrap: plan catalogue and the first OWNER account."""

import logging
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.config import SERVICE_TIERS, Settings
from onesaas.models.account import Account, Role
from onesaas.models.service import Service
from onesaas.services.accounts import apply_role, normalize_email
from onesaas.services.passwords import hash_password, validate_password
from onesaas.utils.encryption import SecretCodec
from onesaas.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


async def seed_services(db: AsyncSession) -> int:
    """Insert or update one ``Service`` row per configured tier, keyed by name."""
    changed = 0
    for tier in SERVICE_TIERS.values():
        result = await db.execute(select(Service).where(Service.name == tier.name))
        service = result.scalars().first()
        if service is None:
            service = Service(name=tier.name)
            db.add(service)

        algorithms = sorted(a.value for a in tier.allowed_algorithms)
        if (
            service.description != tier.description
            or service.price != tier.price
            or sorted(service.allowed_algorithms or []) != algorithms
            or service.rate_limit != tier.rate_limit
            or service.rate_period != tier.rate_period
        ):
            service.description = tier.description
            service.price = tier.price
            service.allowed_algorithms = algorithms
            service.rate_limit = tier.rate_limit
            service.rate_period = tier.rate_period
            service.is_active = True
            changed += 1

    await db.commit()
    if changed:
        logger.info("Seeded %d service tier(s)", changed)
    return changed


async def seed_owner(db: AsyncSession, settings: Settings, codec: SecretCodec,
                     now: Optional[datetime] = None) -> Optional[Account]:
    """Create the OWNER account from settings unless one already exists.

    Skipped when no owner password is configured.
    """
    existing = await db.execute(select(Account.id).where(Account.role == Role.OWNER.value))
    if existing.first() is not None:
        return None

    if not settings.owner_password:
        logger.warning("No OWNER account exists and OWNER_PASSWORD is not set; skipping owner bootstrap")
        return None

    check = validate_password(settings.owner_password)
    if not check.valid:
        logger.warning("OWNER_PASSWORD does not meet the password policy: %s", check.reason)

    email = normalize_email(settings.owner_email)
    owner = Account(
        username=settings.owner_username,
        email=email,
        encrypted_email=codec.encrypt(email),
        password_hash=hash_password(settings.owner_password),
        is_email_verified=True,
        created_at=now or datetime.now(UTC),
    )
    apply_role(owner, Role.OWNER)
    db.add(owner)
    await db.commit()
    await db.refresh(owner)

    logger.info("Created OWNER account %s", sanitize_log_message(owner.username))
    return owner
