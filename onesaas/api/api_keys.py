"""API key management endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.api.dependencies import get_current_account
from onesaas.db import get_db
from onesaas.models.account import Account
from onesaas.schemas.api_keys import ApiKeySchema, CreateApiKeyRequest, CreateApiKeyResponse
from onesaas.services import api_keys

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.post("", response_model=CreateApiKeyResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    data: CreateApiKeyRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Create a key. The raw ``key`` appears in this response only."""
    created = await api_keys.create_api_key(db, account, data.name)
    return CreateApiKeyResponse(api_key=ApiKeySchema.model_validate(created.api_key), key=created.key)


@router.get("", response_model=List[ApiKeySchema])
async def list_api_keys(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await api_keys.list_api_keys(db, account)


@router.post("/{key_id}/revoke", response_model=ApiKeySchema)
async def revoke_api_key(
    key_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await api_keys.revoke_api_key(db, account, key_id)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(
    key_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    await api_keys.delete_api_key(db, account, key_id)
