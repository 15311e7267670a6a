"""Descriptive statistics over a list of numbers."""

import math
from typing import List, Literal

from pydantic import BaseModel, Field, FiniteFloat

from onesaas.algorithms.base import AlgorithmInputError, round_half_up


class DataAnalysisRequest(BaseModel):
    algorithm: Literal["dataAnalysis"] = "dataAnalysis"
    numbers: List[FiniteFloat] = Field(..., max_length=100000)


class DataAnalysisResult(BaseModel):
    sum: float
    average: float
    min: float
    max: float
    count: int
    median: float
    std_dev: float


def run(request: DataAnalysisRequest) -> DataAnalysisResult:
    numbers = request.numbers
    if not numbers:
        raise AlgorithmInputError("Invalid input: numbers array is required and must not be empty")

    count = len(numbers)
    total = sum(numbers)
    average = total / count

    ordered = sorted(numbers)
    middle = count // 2
    if count % 2 == 0:
        median = (ordered[middle - 1] + ordered[middle]) / 2
    else:
        median = ordered[middle]

    # Population standard deviation
    variance = sum((n - average) ** 2 for n in numbers) / count

    return DataAnalysisResult(
        sum=round_half_up(total),
        average=round_half_up(average),
        min=min(numbers),
        max=max(numbers),
        count=count,
        median=round_half_up(median),
        std_dev=round_half_up(math.sqrt(variance)),
    )
