"""Shared plumbing for algorithm plugins."""

import logging
import math
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class AlgorithmInputError(ValueError):
    """Input that is well-typed but not usable by the algorithm."""


class AlgorithmResult(BaseModel):
    """Outcome of one run. Bad input is a failed result, not an exception."""

    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    execution_time_ms: float = 0.0


def round_half_up(value: float, digits: int = 2) -> float:
    """Round the way dashboards expect (0.125 -> 0.13), not banker's rounding.

    Raises:
        AlgorithmInputError: If an intermediate result overflowed to inf or NaN
    """
    if not math.isfinite(value):
        raise AlgorithmInputError("Invalid input: values too large")
    factor = 10 ** digits
    scaled = value * factor + 0.5
    if not math.isfinite(scaled):
        # Already far beyond the requested precision
        return value
    return math.floor(scaled) / factor


def run_timed(func: Callable[[Any], BaseModel], request: Any) -> AlgorithmResult:
    """Run ``func`` and wrap its output or input error in an ``AlgorithmResult``."""
    started = time.perf_counter()
    try:
        output = func(request)
    except (AlgorithmInputError, ArithmeticError) as e:
        return AlgorithmResult(
            success=False,
            error=str(e) or "Algorithm execution failed",
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )
    return AlgorithmResult(
        success=True,
        result=output.model_dump(),
        execution_time_ms=(time.perf_counter() - started) * 1000,
    )
