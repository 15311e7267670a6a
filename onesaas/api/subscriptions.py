"""Service catalogue and subscription API endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.api.dependencies import get_ctx, get_current_account
from onesaas.context import AppContext
from onesaas.db import get_db
from onesaas.models.account import Account
from onesaas.schemas.subscriptions import (
    ServiceSchema,
    SubscribeRequest,
    SubscriptionHistoryResponse,
    SubscriptionSchema,
)
from onesaas.services import subscriptions

services_router = APIRouter(prefix="/services", tags=["Services"])
router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@services_router.get("", response_model=List[ServiceSchema])
async def list_services(db: AsyncSession = Depends(get_db)):
    return await subscriptions.list_services(db)


@services_router.get("/{service_id}", response_model=ServiceSchema)
async def get_service(service_id: str, db: AsyncSession = Depends(get_db)):
    return await subscriptions.get_service(db, service_id)


@router.post("", response_model=SubscriptionSchema, status_code=status.HTTP_201_CREATED)
async def subscribe(
    data: SubscribeRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    return await subscriptions.subscribe_to_service(db, ctx, account, data.service_id)


@router.get("/me", response_model=List[SubscriptionSchema])
async def my_subscriptions(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await subscriptions.my_subscriptions(db, account)


@router.get("/history", response_model=SubscriptionHistoryResponse)
async def subscription_history(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    history = await subscriptions.subscription_history(db, account)
    return SubscriptionHistoryResponse(
        total=history.total,
        active=history.active,
        cancelled=history.cancelled,
        expired=history.expired,
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionSchema)
async def cancel_subscription(
    subscription_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await subscriptions.cancel_subscription(db, account, subscription_id)
