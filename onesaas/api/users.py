"""User management API endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.api.dependencies import get_current_account, require_minimum_role
from onesaas.db import get_db
from onesaas.models.account import Account, Role
from onesaas.schemas.users import UpdateRoleRequest, UserSchema
from onesaas.services import accounts

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=List[UserSchema])
async def list_users(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await accounts.list_users(db, account)


@router.post("/renew-guest", response_model=UserSchema)
async def renew_guest_access(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await accounts.renew_guest_access(db, account)


@router.get("/{user_id}", response_model=UserSchema)
async def get_user(
    user_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await accounts.get_user(db, account, user_id)


@router.put("/{user_id}/role", response_model=UserSchema)
async def update_user_role(
    user_id: str,
    data: UpdateRoleRequest,
    manager: Account = Depends(require_minimum_role(Role.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await accounts.update_user_role(db, manager, user_id, data.role)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    manager: Account = Depends(require_minimum_role(Role.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    await accounts.delete_user(db, manager, user_id)
