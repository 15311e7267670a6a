"""Plan catalogue and subscription lifecycle.

A subscription's status drives the account's role: the first ACTIVE
subscription promotes a GUEST to SUBSCRIBED_USER, and losing the last one
demotes a SUBSCRIBED_USER back to GUEST with a fresh guest window. Staff roles
are never changed by subscription events.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.context import AppContext
from onesaas.exceptions import DuplicateResourceError, InsufficientRoleError, InvalidStateError, NotFoundError
from onesaas.models.account import STAFF_ROLES, Account, Role
from onesaas.models.service import Service
from onesaas.models.subscription import Subscription, SubscriptionStatus
from onesaas.services.access_policy import get_active_subscriptions
from onesaas.services.accounts import apply_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionHistory:
    total: int
    active: int
    cancelled: int
    expired: int


async def list_services(db: AsyncSession) -> List[Service]:
    result = await db.execute(
        select(Service).where(Service.is_active.is_(True)).order_by(Service.price)
    )
    return list(result.scalars().all())


async def get_service(db: AsyncSession, service_id: str) -> Service:
    result = await db.execute(select(Service).where(Service.id == service_id))
    service = result.scalars().first()
    if service is None:
        raise NotFoundError("Service not found")
    return service


async def subscribe_to_service(db: AsyncSession, ctx: AppContext, account: Account, service_id: str,
                               now: Optional[datetime] = None) -> Subscription:
    """Create an ACTIVE subscription.

    The pre-check gives a friendly error; the partial unique index on
    ``(user_id) WHERE status = 'ACTIVE'`` is what actually guarantees that
    concurrent calls cannot both succeed.

    Raises:
        NotFoundError: Unknown or inactive service
        DuplicateResourceError: The account already has an ACTIVE subscription
    """
    now = now or datetime.now(UTC)
    service = await get_service(db, service_id)
    if not service.is_active:
        raise NotFoundError("Service not found")

    if await get_active_subscriptions(db, account.id):
        raise DuplicateResourceError("You already have an active subscription. Cancel it first.")

    subscription = Subscription(
        user_id=account.id,
        service_id=service.id,
        status=SubscriptionStatus.ACTIVE.value,
        start_date=now,
        payment_method="manual",
    )
    account_id = account.id
    db.add(subscription)
    if account.role_enum is Role.GUEST:
        apply_role(account, Role.SUBSCRIBED_USER, now)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Concurrent subscribe rejected for account %s", account_id)
        raise DuplicateResourceError("You already have an active subscription. Cancel it first.")

    await db.refresh(subscription)
    await db.refresh(account)
    logger.info("Account %s subscribed to %s", account.id, service.name)

    ctx.tasks.spawn(
        ctx.mailer.send_subscription_email(account.email, account.username, service.name, service.price),
        name="send-subscription-email",
    )
    return subscription


async def cancel_subscription(db: AsyncSession, account: Account, subscription_id: str,
                              now: Optional[datetime] = None) -> Subscription:
    """Cancel a subscription (own, or anyone's for staff).

    Raises:
        NotFoundError: Unknown subscription
        InsufficientRoleError: Not the owner and not staff
        InvalidStateError: Subscription is not ACTIVE
    """
    now = now or datetime.now(UTC)
    result = await db.execute(select(Subscription).where(Subscription.id == subscription_id))
    subscription = result.scalars().first()
    if subscription is None:
        raise NotFoundError("Subscription not found")

    if subscription.user_id != account.id and account.role_enum not in STAFF_ROLES:
        raise InsufficientRoleError("You can only cancel your own subscription")
    if subscription.status != SubscriptionStatus.ACTIVE.value:
        raise InvalidStateError("Only active subscriptions can be cancelled")

    subscription.status = SubscriptionStatus.CANCELLED.value
    subscription.cancelled_at = now
    await db.flush()

    holder = account if subscription.user_id == account.id else await db.get(Account, subscription.user_id)
    remaining = await get_active_subscriptions(db, subscription.user_id)
    if holder is not None and not remaining and holder.role_enum is Role.SUBSCRIBED_USER:
        apply_role(holder, Role.GUEST, now)
        logger.info("Account %s demoted to GUEST after cancelling its last subscription", holder.id)

    await db.commit()
    await db.refresh(subscription)
    if holder is not None:
        await db.refresh(holder)
    logger.info("Subscription %s cancelled by account %s", subscription.id, account.id)
    return subscription


async def my_subscriptions(db: AsyncSession, account: Account) -> List[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == account.id)
        .order_by(Subscription.start_date.desc())
    )
    return list(result.scalars().unique().all())


async def subscription_history(db: AsyncSession, account: Account) -> SubscriptionHistory:
    result = await db.execute(
        select(Subscription.status, func.count(Subscription.id))
        .where(Subscription.user_id == account.id)
        .group_by(Subscription.status)
    )
    counts = {status: count for status, count in result.all()}
    return SubscriptionHistory(
        total=sum(counts.values()),
        active=counts.get(SubscriptionStatus.ACTIVE.value, 0),
        cancelled=counts.get(SubscriptionStatus.CANCELLED.value, 0),
        expired=counts.get(SubscriptionStatus.EXPIRED.value, 0),
    )
