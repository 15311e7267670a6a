"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.api.dependencies import get_ctx, get_current_account
from onesaas.context import AppContext
from onesaas.db import get_db
from onesaas.models.account import Account
from onesaas.schemas.api_keys import ApiKeySchema
from onesaas.schemas.auth import (
    BackupCodesRequest,
    BackupCodesResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    TokenResponse,
    TwoFactorDisableRequest,
    TwoFactorEnableRequest,
    TwoFactorSetupResponse,
    VerifyEmailRequest,
)
from onesaas.schemas.subscriptions import SubscriptionSchema
from onesaas.schemas.users import ProfileResponse, UserSchema
from onesaas.services import accounts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ============================================================================
# Public Endpoints (No Auth Required)
# ============================================================================


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    """Create a guest account and send the verification email."""
    account = await accounts.register(db, ctx, data.username, data.email, data.password)
    return RegisterResponse(id=account.id, username=account.username, email=account.email)


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(data: VerifyEmailRequest, db: AsyncSession = Depends(get_db)):
    await accounts.verify_email(db, data.token)
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.get("/verify-email", response_model=MessageResponse)
async def verify_email_link(token: str = Query(..., min_length=1, max_length=128),
                            db: AsyncSession = Depends(get_db)):
    """Target of the link in the verification email."""
    await accounts.verify_email(db, token)
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    data: ResendVerificationRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    message = await accounts.resend_verification(db, ctx, data.email)
    return MessageResponse(message=message)


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    """Log in with email and password, plus a 2FA code when enabled.

    When 2FA is required and no code was sent, the response carries
    ``requires_two_factor=true`` and no tokens.
    """
    result = await accounts.login(
        db,
        ctx,
        data.email,
        data.password,
        two_factor_code=data.two_factor_code,
        device_token=data.device_token,
        remember_device=data.remember_device,
    )
    if result.requires_two_factor:
        return LoginResponse(requires_two_factor=True, message="Two-factor authentication code required")

    return LoginResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=result.tokens.expires_in,
        device_token=result.device_token,
        device_expires_at=result.device_expires_at,
        used_backup_code=result.used_backup_code,
        backup_codes_remaining=result.backup_codes_remaining,
        backup_codes_low=result.backup_codes_low,
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    pair = await accounts.refresh_tokens(db, ctx, data.refresh_token)
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


# ============================================================================
# Protected Endpoints (Auth Required)
# ============================================================================


@router.post("/logout", response_model=MessageResponse)
async def logout(account: Account = Depends(get_current_account)):
    """Tokens are stateless; the client discards them."""
    logger.info("Account %s logged out", account.id)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=ProfileResponse)
async def me(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    profile = await accounts.get_profile(db, account)
    remaining = None
    if account.two_factor_enabled and account.backup_codes is not None:
        remaining = len(account.backup_codes)
    return ProfileResponse(
        user=UserSchema.model_validate(profile.account),
        subscription=SubscriptionSchema.model_validate(profile.subscription) if profile.subscription else None,
        api_keys=[ApiKeySchema.model_validate(key) for key in profile.api_keys],
        backup_codes_remaining=remaining,
    )


@router.post("/2fa/setup", response_model=TwoFactorSetupResponse)
async def setup_2fa(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    setup = await accounts.setup_2fa(db, ctx, account)
    return TwoFactorSetupResponse(secret=setup.secret, otpauth_url=setup.otpauth_url, qr_code=setup.qr_code)


@router.post("/2fa/enable", response_model=BackupCodesResponse)
async def enable_2fa(
    data: TwoFactorEnableRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    codes = await accounts.enable_2fa(db, ctx, account, data.token)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/2fa/disable", response_model=MessageResponse)
async def disable_2fa(
    data: TwoFactorDisableRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    await accounts.disable_2fa(db, ctx, account, data.password, data.token)
    return MessageResponse(message="2FA disabled. All trusted devices have been removed.")


@router.post("/2fa/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    data: BackupCodesRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    codes = await accounts.generate_backup_codes(db, account, data.password)
    return BackupCodesResponse(backup_codes=codes)
