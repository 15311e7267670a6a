"""Request-scoped dependencies: context, database session and caller identity."""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.context import AppContext
from onesaas.db import get_db
from onesaas.exceptions import EmailNotVerifiedError, InvalidOrExpiredTokenError
from onesaas.models.account import Account, Role
from onesaas.services.access_policy import require_role
from onesaas.services.accounts import get_account
from onesaas.services.api_keys import authenticate_api_key

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"

security = HTTPBearer(auto_error=False)


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


async def _account_from_bearer(db: AsyncSession, ctx: AppContext,
                               credentials: Optional[HTTPAuthorizationCredentials]) -> Account:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise InvalidOrExpiredTokenError("Not authenticated")

    claims = ctx.tokens.verify_access(credentials.credentials)

    # Authorization always uses the stored role, never the one in the token
    account = await get_account(db, claims.user_id)
    if account is None:
        raise InvalidOrExpiredTokenError()
    if not account.is_email_verified:
        raise EmailNotVerifiedError()
    return account


async def get_current_account(
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Account:
    """Caller identified by a Bearer access token."""
    return await _account_from_bearer(db, ctx, credentials)


async def get_api_caller(
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Account:
    """Caller identified by ``X-API-Key`` if present, otherwise by Bearer token."""
    raw_key = request.headers.get(API_KEY_HEADER)
    if raw_key:
        return await authenticate_api_key(db, ctx, raw_key)
    return await _account_from_bearer(db, ctx, credentials)


def require_minimum_role(required: Role):
    """Dependency factory: the caller must hold at least ``required``."""

    async def dependency(account: Account = Depends(get_current_account)) -> Account:
        require_role(account, required)
        return account

    return dependency
