"""Trend detection and Holt linear exponential smoothing forecast."""

import math
from typing import List, Literal

from pydantic import BaseModel, Field, FiniteFloat

from onesaas.algorithms.base import AlgorithmInputError, round_half_up

MIN_POINTS = 3
MAX_PERIODS = 10
TREND_THRESHOLD = 0.1
LEVEL_SMOOTHING = 0.3  # alpha
TREND_SMOOTHING = 0.1  # beta


class TimeSeriesRequest(BaseModel):
    algorithm: Literal["timeSeriesAnalysis"] = "timeSeriesAnalysis"
    values: List[FiniteFloat] = Field(..., max_length=100000)
    periods: int


class TimeSeriesResult(BaseModel):
    trend: Literal["increasing", "decreasing", "stable"]
    forecast: List[float]


def _slope(values: List[float]) -> float:
    n = len(values)
    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_xx = sum(i * i for i in range(n))
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    if not math.isfinite(slope):
        raise AlgorithmInputError("Invalid input: values too large")
    return slope


def _trend(values: List[float]) -> str:
    slope = _slope(values)
    if slope > TREND_THRESHOLD:
        return "increasing"
    if slope < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


def _forecast(values: List[float], periods: int) -> List[float]:
    # Level starts at the mean of the first three points, trend at their mean step
    level = sum(values[:3]) / 3
    steps = min(3, len(values) - 1)
    trend = sum(values[i] - values[i - 1] for i in range(1, steps + 1)) / steps

    for value in values:
        previous_level = level
        level = LEVEL_SMOOTHING * value + (1 - LEVEL_SMOOTHING) * (level + trend)
        trend = TREND_SMOOTHING * (level - previous_level) + (1 - TREND_SMOOTHING) * trend

    return [level + i * trend for i in range(1, periods + 1)]


def run(request: TimeSeriesRequest) -> TimeSeriesResult:
    values = request.values
    if len(values) < MIN_POINTS:
        raise AlgorithmInputError(
            f"Invalid input: at least {MIN_POINTS} data points required for time series analysis"
        )
    if not 1 <= request.periods <= MAX_PERIODS:
        raise AlgorithmInputError(f"Invalid input: periods must be a number between 1 and {MAX_PERIODS}")

    return TimeSeriesResult(
        trend=_trend(values),
        forecast=[round_half_up(v) for v in _forecast(values, request.periods)],
    )
