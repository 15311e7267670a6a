"""Gated algorithm execution: policy, then plan rate budget, then dispatch."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.algorithms import AlgorithmResult, run_algorithm
from onesaas.context import AppContext
from onesaas.models.account import Account
from onesaas.services.access_policy import authorize_algorithm

logger = logging.getLogger(__name__)


async def execute_algorithm(db: AsyncSession, ctx: AppContext, account: Account, request,
                            now: Optional[datetime] = None) -> AlgorithmResult:
    """Run ``request`` on behalf of ``account``.

    Raises:
        GuestAccessExpiredError, NoActiveSubscriptionError, AlgorithmNotInPlanError:
            The caller may not run this algorithm
        RateLimitExceededError: The caller's plan budget is spent
    """
    grant = await authorize_algorithm(db, account, request.algorithm, now)
    ctx.plan_limiter.check(account.id, grant.plan_name, grant.rate_limit, grant.rate_period)

    result = run_algorithm(request)
    logger.info(
        "Account %s ran %s on %s (success=%s, %.1fms)",
        account.id, request.algorithm, grant.plan_name, result.success, result.execution_time_ms,
    )
    return result
