"""Ordinary least squares fit of ``y = mx + b``."""

import math
from typing import List, Literal

from pydantic import BaseModel, Field, FiniteFloat

from onesaas.algorithms.base import AlgorithmInputError, round_half_up


class LinearRegressionRequest(BaseModel):
    algorithm: Literal["linearRegression"] = "linearRegression"
    x: List[FiniteFloat] = Field(..., max_length=100000)
    y: List[FiniteFloat] = Field(..., max_length=100000)


class LinearRegressionResult(BaseModel):
    slope: float
    intercept: float
    equation: str
    r_squared: float


def format_equation(slope: float, intercept: float) -> str:
    """``y = 2.00x + 1.00`` / ``y = -0.50x - 3.25``."""
    sign = "+" if intercept >= 0 else "-"
    return f"y = {slope:.2f}x {sign} {abs(intercept):.2f}"


def run(request: LinearRegressionRequest) -> LinearRegressionResult:
    x, y = request.x, request.y
    if not x or not y:
        raise AlgorithmInputError("Invalid input: x and y cannot be empty")
    if len(x) != len(y):
        raise AlgorithmInputError("Invalid input: x and y must have the same length")
    if len(x) < 2:
        raise AlgorithmInputError("Invalid input: at least 2 data points required")

    n = len(x)
    sum_x = sum(x)
    sum_y = sum(y)
    sum_xy = sum(a * b for a, b in zip(x, y))
    sum_xx = sum(a * a for a in x)

    denominator = n * sum_xx - sum_x * sum_x
    if not math.isfinite(denominator):
        raise AlgorithmInputError("Invalid input: values too large")
    if denominator == 0:
        raise AlgorithmInputError("Invalid input: x values must not all be equal")

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_total = sum((v - mean_y) ** 2 for v in y)
    ss_residual = sum((b - (slope * a + intercept)) ** 2 for a, b in zip(x, y))
    r_squared = 1 - ss_residual / ss_total if ss_total > 0 else 0.0

    return LinearRegressionResult(
        slope=round_half_up(slope),
        intercept=round_half_up(intercept),
        equation=format_equation(slope, intercept),
        r_squared=round_half_up(r_squared, 4),
    )
