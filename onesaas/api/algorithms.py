"""Algorithm catalogue and execution endpoints.

Execution accepts either a Bearer access token or an ``X-API-Key`` header.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.algorithms import DESCRIPTIONS, AlgorithmResult, algorithm_request_adapter
from onesaas.api.dependencies import get_api_caller, get_ctx
from onesaas.config import AlgorithmName
from onesaas.context import AppContext
from onesaas.db import get_db
from onesaas.exceptions import NotFoundError, ValidationFailedError
from onesaas.models.account import Account
from onesaas.schemas.algorithms import AlgorithmCatalogResponse, AlgorithmInfo
from onesaas.services.access_policy import resolve_allowed_algorithms
from onesaas.services.algorithm_runner import execute_algorithm

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/algorithms", tags=["Algorithms"])


def _parse_request(payload: Dict[str, Any]):
    try:
        return algorithm_request_adapter.validate_python(payload)
    except ValidationError as e:
        errors = [
            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationFailedError("Invalid algorithm input", errors=errors)


@router.get("", response_model=AlgorithmCatalogResponse)
async def list_algorithms(
    account: Account = Depends(get_api_caller),
    db: AsyncSession = Depends(get_db),
):
    """Algorithms the caller's plan unlocks, with every known algorithm listed."""
    grant = await resolve_allowed_algorithms(db, account)
    return AlgorithmCatalogResponse(
        plan=grant.plan_name,
        rate_limit=grant.rate_limit,
        rate_period=grant.rate_period,
        algorithms=[
            AlgorithmInfo(name=name.value, description=DESCRIPTIONS[name], available=grant.permits(name))
            for name in AlgorithmName
        ],
    )


@router.post("/execute", response_model=AlgorithmResult)
async def execute(
    payload: Dict[str, Any] = Body(...),
    account: Account = Depends(get_api_caller),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    """Run an algorithm; the body's ``algorithm`` field selects which."""
    return await execute_algorithm(db, ctx, account, _parse_request(payload))


@router.post("/{name}", response_model=AlgorithmResult)
async def execute_named(
    name: str,
    payload: Dict[str, Any] = Body(...),
    account: Account = Depends(get_api_caller),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_ctx),
):
    try:
        algorithm = AlgorithmName(name)
    except ValueError:
        raise NotFoundError(f"Unknown algorithm '{name}'")
    return await execute_algorithm(db, ctx, account, _parse_request({**payload, "algorithm": algorithm.value}))
