"""Content-based recommendation by cosine similarity."""

import math
from typing import List, Literal

from pydantic import BaseModel, Field, FiniteFloat

from onesaas.algorithms.base import AlgorithmInputError, round_half_up


class RecommendationRequest(BaseModel):
    algorithm: Literal["recommendation"] = "recommendation"
    user_preferences: List[FiniteFloat] = Field(..., max_length=1000)
    item_features: List[List[FiniteFloat]] = Field(..., max_length=10000)
    top_n: int


class ScoredItem(BaseModel):
    item_index: int
    score: float


class RecommendationResult(BaseModel):
    recommendations: List[ScoredItem]


def cosine_similarity(a: List[float], b: List[float]) -> float:
    magnitude_a = math.sqrt(sum(v * v for v in a))
    magnitude_b = math.sqrt(sum(v * v for v in b))
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0
    return sum(p * q for p, q in zip(a, b)) / (magnitude_a * magnitude_b)


def run(request: RecommendationRequest) -> RecommendationResult:
    preferences, items = request.user_preferences, request.item_features
    if not preferences:
        raise AlgorithmInputError("Invalid input: user_preferences must be a non-empty array")
    if not items:
        raise AlgorithmInputError("Invalid input: item_features must be a non-empty array")

    dimension = len(preferences)
    if any(len(item) != dimension for item in items):
        raise AlgorithmInputError(
            f"Invalid input: all items must have {dimension} features to match user preferences"
        )
    if not 1 <= request.top_n <= len(items):
        raise AlgorithmInputError(f"Invalid input: top_n must be between 1 and {len(items)}")

    scored = [(index, cosine_similarity(preferences, item)) for index, item in enumerate(items)]
    # Stable sort keeps the original order among equal scores
    scored.sort(key=lambda pair: pair[1], reverse=True)

    return RecommendationResult(
        recommendations=[
            ScoredItem(item_index=index, score=round_half_up(score, 3))
            for index, score in scored[: request.top_n]
        ]
    )
