"""Account lifecycle, two-factor management and user administration."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.config import GUEST_ACCESS_DURATION
from onesaas.context import AppContext
from onesaas.exceptions import (
    DuplicateResourceError,
    InsufficientRoleError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidStateError,
    InvalidTwoFactorCodeError,
    NotFoundError,
    ValidationFailedError,
)
from onesaas.models.account import Account, Role
from onesaas.models.api_key import ApiKey
from onesaas.models.subscription import Subscription
from onesaas.services import backup_codes, totp
from onesaas.services.access_policy import can_change_role, can_manage_user, get_active_subscription
from onesaas.services.login import LoginResult, LoginStateMachine
from onesaas.services.passwords import hash_password, validate_password, verify_password
from onesaas.services.tokens import TokenClaims, TokenPair
from onesaas.services.trusted_devices import DeviceTrustLedger
from onesaas.utils.security import mask_email, sanitize_log_message

logger = logging.getLogger(__name__)

RESEND_VERIFICATION_MESSAGE = (
    "If an account with that email exists and is not yet verified, a verification email has been sent."
)


@dataclass
class TwoFactorSetup:
    secret: str
    otpauth_url: str
    qr_code: str


@dataclass
class AccountProfile:
    account: Account
    subscription: Optional[Subscription] = None
    api_keys: List[ApiKey] = field(default_factory=list)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def apply_role(account: Account, role: Role, now: Optional[datetime] = None) -> None:
    """Set ``role`` keeping the guest expiry in step with it.

    Moving to GUEST always starts a fresh guest window; moving away clears it.
    """
    now = now or datetime.now(UTC)
    account.role = role.value
    if role is Role.GUEST:
        account.guest_access_expires_at = now + GUEST_ACCESS_DURATION
    else:
        account.guest_access_expires_at = None


async def get_account(db: AsyncSession, account_id: str) -> Optional[Account]:
    result = await db.execute(select(Account).where(Account.id == account_id))
    return result.scalars().first()


async def _require_account(db: AsyncSession, account_id: str) -> Account:
    account = await get_account(db, account_id)
    if account is None:
        raise NotFoundError("User not found")
    return account


# --- Registration and verification -------------------------------------------


async def register(db: AsyncSession, ctx: AppContext, username: str, email: str, password: str,
                   now: Optional[datetime] = None) -> Account:
    """Create a GUEST account and send the verification email.

    Raises:
        ValidationFailedError: Password fails the strength policy
        DuplicateResourceError: Email or username already taken
    """
    now = now or datetime.now(UTC)
    username = username.strip()
    email = normalize_email(email)

    check = validate_password(password)
    if not check.valid:
        raise ValidationFailedError(check.reason)

    existing = await db.execute(
        select(Account.id).where(
            or_(func.lower(Account.email) == email, Account.username == username)
        )
    )
    if existing.first() is not None:
        raise DuplicateResourceError("An account with this email or username already exists")

    account = Account(
        username=username,
        email=email,
        encrypted_email=ctx.codec.encrypt(email),
        password_hash=hash_password(password),
        is_email_verified=False,
        email_verification_token=ctx.codec.random_token(),
        created_at=now,
    )
    apply_role(account, Role.GUEST, now)
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateResourceError("An account with this email or username already exists")
    await db.refresh(account)

    logger.info("Registered account %s (%s)", account.id, mask_email(email))
    ctx.tasks.spawn(
        ctx.mailer.send_verification_email(account.email, account.username, account.email_verification_token),
        name="send-verification-email",
    )
    return account


async def verify_email(db: AsyncSession, token: str) -> Account:
    if not token:
        raise InvalidOrExpiredTokenError("Invalid or expired verification token")

    result = await db.execute(select(Account).where(Account.email_verification_token == token))
    account = result.scalars().first()
    if account is None:
        raise InvalidOrExpiredTokenError("Invalid or expired verification token")

    account.is_email_verified = True
    account.email_verification_token = None
    await db.commit()
    await db.refresh(account)
    logger.info("Email verified for account %s", account.id)
    return account


async def resend_verification(db: AsyncSession, ctx: AppContext, email: str) -> str:
    """Reissue the verification email. Always returns the same message."""
    result = await db.execute(select(Account).where(func.lower(Account.email) == normalize_email(email)))
    account = result.scalars().first()

    if account is not None and not account.is_email_verified:
        account.email_verification_token = ctx.codec.random_token()
        await db.commit()
        ctx.tasks.spawn(
            ctx.mailer.send_verification_email(account.email, account.username, account.email_verification_token),
            name="send-verification-email",
        )
        logger.info("Verification email reissued for account %s", account.id)

    return RESEND_VERIFICATION_MESSAGE


# --- Sessions ----------------------------------------------------------------


async def login(db: AsyncSession, ctx: AppContext, email: str, password: str,
                two_factor_code: Optional[str] = None, device_token: Optional[str] = None,
                remember_device: bool = False) -> LoginResult:
    machine = LoginStateMachine(db, ctx.codec, ctx.tokens)
    return await machine.login(
        email,
        password,
        two_factor_code=two_factor_code,
        device_token=device_token,
        remember_device=remember_device,
    )


async def refresh_tokens(db: AsyncSession, ctx: AppContext, refresh_token: str) -> TokenPair:
    """Mint a new pair from a refresh token, using the account's current role."""
    claims = ctx.tokens.verify_refresh(refresh_token)
    account = await get_account(db, claims.user_id)
    if account is None:
        raise InvalidOrExpiredTokenError()
    return ctx.tokens.issue_pair(TokenClaims(user_id=account.id, email=account.email, role=account.role))


async def get_profile(db: AsyncSession, account: Account) -> AccountProfile:
    keys = await db.execute(
        select(ApiKey)
        .where(ApiKey.user_id == account.id, ApiKey.is_revoked.is_(False))
        .order_by(ApiKey.created_at.desc())
    )
    return AccountProfile(
        account=account,
        subscription=await get_active_subscription(db, account.id),
        api_keys=list(keys.scalars().all()),
    )


# --- Two-factor authentication -----------------------------------------------


async def setup_2fa(db: AsyncSession, ctx: AppContext, account: Account) -> TwoFactorSetup:
    """Store a fresh secret without enabling 2FA.

    The secret only takes effect once ``enable_2fa`` confirms a code from it.
    """
    if account.two_factor_enabled:
        raise InvalidStateError("2FA is already enabled")

    secret = totp.generate_secret()
    uri = totp.provisioning_uri(account.email, secret, issuer=ctx.settings.app_name)
    account.two_factor_secret = ctx.codec.encrypt(secret)
    await db.commit()

    logger.info("2FA setup started for account %s", account.id)
    return TwoFactorSetup(secret=secret, otpauth_url=uri, qr_code=totp.qr_code_data_url(uri))


async def enable_2fa(db: AsyncSession, ctx: AppContext, account: Account, token: str) -> List[str]:
    """Confirm the pending secret, enable 2FA and return fresh backup codes.

    Raises:
        InvalidStateError: Already enabled, or setup was never run
        InvalidTwoFactorCodeError: The code does not match the pending secret
    """
    if account.two_factor_enabled:
        raise InvalidStateError("2FA is already enabled")
    if not account.two_factor_secret:
        raise InvalidStateError("2FA setup not initiated")

    secret = ctx.codec.decrypt(account.two_factor_secret)
    if not totp.verify_token(token, secret):
        raise InvalidTwoFactorCodeError()

    codes = backup_codes.generate()
    account.two_factor_enabled = True
    account.backup_codes = backup_codes.hash_all(codes)
    account.security_version = account.security_version + 1
    await db.commit()

    logger.info("2FA enabled for account %s", account.id)
    ctx.tasks.spawn(
        ctx.mailer.send_2fa_enabled_email(account.email, account.username),
        name="send-2fa-enabled-email",
    )
    return codes


async def disable_2fa(db: AsyncSession, ctx: AppContext, account: Account, password: str, token: str) -> None:
    """Turn 2FA off and forget every trusted device."""
    if not account.two_factor_enabled:
        raise InvalidStateError("2FA is not enabled")
    if not verify_password(password, account.password_hash):
        raise InvalidCredentialsError()

    secret = ctx.codec.decrypt(account.two_factor_secret)
    if not totp.verify_token(token, secret):
        raise InvalidTwoFactorCodeError()

    account.two_factor_enabled = False
    account.two_factor_secret = None
    account.backup_codes = None
    account.security_version = account.security_version + 1
    await DeviceTrustLedger().revoke_all(db, account.id)
    await db.commit()
    logger.info("2FA disabled for account %s", account.id)


async def generate_backup_codes(db: AsyncSession, account: Account, password: str) -> List[str]:
    """Replace the whole backup-code set; old codes stop working."""
    if not account.two_factor_enabled:
        raise InvalidStateError("2FA is not enabled")
    if not verify_password(password, account.password_hash):
        raise InvalidCredentialsError()

    codes = backup_codes.generate()
    account.backup_codes = backup_codes.hash_all(codes)
    account.security_version = account.security_version + 1
    await db.commit()
    logger.info("Backup codes regenerated for account %s", account.id)
    return codes


# --- Guest access ------------------------------------------------------------


async def renew_guest_access(db: AsyncSession, account: Account, now: Optional[datetime] = None) -> Account:
    if account.role_enum is not Role.GUEST:
        raise InvalidStateError("Only guest accounts can renew guest access")

    apply_role(account, Role.GUEST, now)
    await db.commit()
    await db.refresh(account)
    logger.info("Guest access renewed for account %s until %s", account.id, account.guest_access_expires_at)
    return account


# --- Administration ----------------------------------------------------------


async def list_users(db: AsyncSession, viewer: Account) -> List[Account]:
    """OWNER and ADMIN see everyone; anyone else sees only themselves."""
    if viewer.role_enum not in (Role.OWNER, Role.ADMIN):
        return [viewer]
    result = await db.execute(select(Account).order_by(Account.created_at.desc()))
    return list(result.scalars().all())


async def get_user(db: AsyncSession, viewer: Account, user_id: str) -> Account:
    if user_id != viewer.id and viewer.role_enum not in (Role.OWNER, Role.ADMIN):
        raise InsufficientRoleError()
    return await _require_account(db, user_id)


async def update_user_role(db: AsyncSession, manager: Account, target_id: str, role: Role,
                           now: Optional[datetime] = None) -> Account:
    """Change another account's role.

    Raises:
        ValidationFailedError: Attempt to change one's own role
        NotFoundError: Unknown target
        InsufficientRoleError: Manager may not make this change
    """
    if target_id == manager.id:
        raise ValidationFailedError("You cannot change your own role")

    target = await _require_account(db, target_id)
    current = target.role_enum
    if not can_manage_user(manager.role, current) or not can_change_role(manager.role, current, role):
        logger.warning(
            "Account %s (%s) denied role change of %s from %s to %s",
            manager.id, manager.role, target.id, current.value, role.value,
        )
        raise InsufficientRoleError()

    apply_role(target, role, now)
    await db.commit()
    await db.refresh(target)
    logger.info("Account %s changed role of %s from %s to %s", manager.id, target.id, current.value, role.value)
    return target


async def count_owners(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(Account.id)).where(Account.role == Role.OWNER.value))
    return result.scalar_one()


async def delete_user(db: AsyncSession, manager: Account, target_id: str) -> None:
    """Delete another account. The last OWNER can never be deleted.

    The owner count is taken after the delete inside the same transaction, so
    two concurrent deletions cannot both remove an owner and leave none.
    """
    if target_id == manager.id:
        raise ValidationFailedError("You cannot delete your own account")

    target = await _require_account(db, target_id)
    if not can_manage_user(manager.role, target.role):
        raise InsufficientRoleError()

    was_owner = target.role_enum is Role.OWNER
    await db.delete(target)
    await db.flush()

    if was_owner and await count_owners(db) == 0:
        await db.rollback()
        raise InvalidStateError("Cannot delete the last OWNER account")

    await db.commit()
    logger.info("Account %s deleted account %s (%s)", manager.id, target_id, sanitize_log_message(target.username))
