"""Role hierarchy and algorithm capability resolution.

Every decision here fails closed: an unknown role, a guest without a future
expiry, zero or several ACTIVE subscriptions all resolve to a denial. Store
errors propagate unchanged and are never read as a grant.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import FrozenSet, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.config import GUEST_TIER, AlgorithmName, ConfigError, parse_algorithm_names
from onesaas.exceptions import (
    AlgorithmNotInPlanError,
    GuestAccessExpiredError,
    InsufficientRoleError,
    NoActiveSubscriptionError,
)
from onesaas.models.account import STAFF_ROLES, Account, Role
from onesaas.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

RoleLike = Union[Role, str]

# Roles an ADMIN may move accounts between
ADMIN_ASSIGNABLE_ROLES = frozenset({Role.MAINTAINER, Role.SUBSCRIBED_USER, Role.GUEST})


def _role(value: RoleLike) -> Role:
    return value if isinstance(value, Role) else Role(value)


def has_minimum_role(role: RoleLike, required: RoleLike) -> bool:
    return _role(role).level >= _role(required).level


def can_manage_user(manager_role: RoleLike, target_role: RoleLike) -> bool:
    """OWNER manages anyone, ADMIN manages anyone below OWNER, nobody else manages."""
    manager = _role(manager_role)
    target = _role(target_role)
    if manager is Role.OWNER:
        return True
    if manager is Role.ADMIN:
        return target is not Role.OWNER
    return False


def can_change_role(manager_role: RoleLike, from_role: RoleLike, to_role: RoleLike) -> bool:
    """Whether ``manager_role`` may move an account from ``from_role`` to ``to_role``.

    Any change touching OWNER requires an OWNER. ADMIN may only reassign
    among MAINTAINER, SUBSCRIBED_USER and GUEST.

    Examples:
        >>> can_change_role("ADMIN", "GUEST", "OWNER")
        False
        >>> can_change_role("OWNER", "ADMIN", "MAINTAINER")
        True
    """
    manager = _role(manager_role)
    source = _role(from_role)
    target = _role(to_role)

    if Role.OWNER in (source, target):
        return manager is Role.OWNER
    if manager is Role.OWNER:
        return True
    if manager is Role.ADMIN:
        return source in ADMIN_ASSIGNABLE_ROLES and target in ADMIN_ASSIGNABLE_ROLES
    return False


def require_role(account: Account, required: RoleLike) -> None:
    if not has_minimum_role(account.role, required):
        raise InsufficientRoleError()


@dataclass(frozen=True)
class AlgorithmGrant:
    """What a caller may run right now, and under which rate budget."""

    plan_name: str
    allowed: FrozenSet[AlgorithmName]
    rate_limit: int
    rate_period: int
    subscription_id: Optional[str] = None

    def permits(self, algorithm: AlgorithmName) -> bool:
        return algorithm in self.allowed


async def get_active_subscriptions(db: AsyncSession, account_id: str) -> List[Subscription]:
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == account_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
    )
    return list(result.scalars().unique().all())


async def get_active_subscription(db: AsyncSession, account_id: str) -> Optional[Subscription]:
    """The single ACTIVE subscription, or None.

    More than one ACTIVE row breaks the data invariant; it is logged and
    treated as having none.
    """
    active = await get_active_subscriptions(db, account_id)
    if len(active) > 1:
        logger.error("Account %s has %d ACTIVE subscriptions; denying plan access", account_id, len(active))
        return None
    return active[0] if active else None


async def resolve_allowed_algorithms(
    db: AsyncSession, account: Account, now: Optional[datetime] = None
) -> AlgorithmGrant:
    """Resolve the caller's algorithm allow-list.

    Guests get the fixed guest allow-list while their grant is unexpired,
    whatever subscriptions they may hold. Everyone else needs exactly one
    ACTIVE subscription and gets that plan's allow-list.

    Raises:
        GuestAccessExpiredError: Guest without a future expiry
        NoActiveSubscriptionError: Non-guest without exactly one ACTIVE subscription
    """
    now = now or datetime.now(UTC)
    role = _role(account.role)

    if role is Role.GUEST:
        if not account.guest_access_active(now):
            raise GuestAccessExpiredError()
        return AlgorithmGrant(
            plan_name=GUEST_TIER.name,
            allowed=GUEST_TIER.allowed_algorithms,
            rate_limit=GUEST_TIER.rate_limit,
            rate_period=GUEST_TIER.rate_period,
        )

    subscription = await get_active_subscription(db, account.id)
    if subscription is None or subscription.service is None:
        raise NoActiveSubscriptionError()

    service = subscription.service
    try:
        allowed = parse_algorithm_names(service.allowed_algorithms)
    except ConfigError:
        logger.error("Service %s carries an unknown algorithm name; denying", service.id)
        raise NoActiveSubscriptionError()

    return AlgorithmGrant(
        plan_name=service.name,
        allowed=allowed,
        rate_limit=service.rate_limit,
        rate_period=service.rate_period,
        subscription_id=subscription.id,
    )


async def authorize_algorithm(
    db: AsyncSession, account: Account, algorithm: Union[AlgorithmName, str],
    now: Optional[datetime] = None,
) -> AlgorithmGrant:
    """Resolve the grant and require it to include ``algorithm``.

    Raises:
        AlgorithmNotInPlanError: The algorithm is unknown or outside the allow-list
    """
    grant = await resolve_allowed_algorithms(db, account, now)
    try:
        name = algorithm if isinstance(algorithm, AlgorithmName) else AlgorithmName(algorithm)
    except ValueError:
        raise AlgorithmNotInPlanError()

    if not grant.permits(name):
        raise AlgorithmNotInPlanError(
            f"Algorithm '{name.value}' is not available in your plan ({grant.plan_name})",
            algorithm=name.value,
        )
    return grant


async def ensure_can_create_api_key(db: AsyncSession, account: Account) -> None:
    """Guests never; staff always; everyone else with an ACTIVE subscription."""
    role = _role(account.role)
    if role is Role.GUEST:
        raise InsufficientRoleError("Guest users cannot create API keys. Please subscribe to a plan.")
    if role in STAFF_ROLES:
        return
    if await get_active_subscription(db, account.id) is None:
        raise NoActiveSubscriptionError("An active subscription is required to create API keys")
