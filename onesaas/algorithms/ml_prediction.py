"""Linear model prediction with a heuristic confidence score.

Confidence blends how evenly the weights are spread (normalised entropy) with
how tightly the features cluster, clamped to [0.3, 0.95].
"""

import math
from typing import List, Literal

from pydantic import BaseModel, Field, FiniteFloat

from onesaas.algorithms.base import AlgorithmInputError, round_half_up

MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95


class MLPredictionRequest(BaseModel):
    algorithm: Literal["mlPrediction"] = "mlPrediction"
    features: List[FiniteFloat] = Field(..., max_length=10000)
    weights: List[FiniteFloat] = Field(..., max_length=10000)


class MLPredictionResult(BaseModel):
    prediction: float
    confidence: float


def _variance(values: List[float]) -> float:
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def _normalized_entropy(weights: List[float]) -> float:
    """Entropy of |weights| as a distribution, scaled to [0, 1].

    A single weight, or all-zero weights, carry no spread and score 0.
    """
    total = sum(abs(w) for w in weights)
    if total == 0 or len(weights) < 2:
        return 0.0
    entropy = 0.0
    for w in weights:
        p = abs(w) / total
        if p > 0:
            entropy -= p * math.log2(p)
    return entropy / math.log2(len(weights))


def run(request: MLPredictionRequest) -> MLPredictionResult:
    features, weights = request.features, request.weights
    if not features or not weights:
        raise AlgorithmInputError("Invalid input: features and weights cannot be empty")
    if len(features) != len(weights):
        raise AlgorithmInputError("Invalid input: features and weights must have the same length")

    prediction = sum(f * w for f, w in zip(features, weights))
    confidence = _normalized_entropy(weights) * 0.6 + (1 / (1 + _variance(features))) * 0.4
    confidence = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))

    return MLPredictionResult(
        prediction=round_half_up(prediction, 3),
        confidence=round_half_up(confidence, 2),
    )
