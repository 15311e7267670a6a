"""Pluggable computational algorithms.

Each plugin module defines a request model tagged by ``algorithm``, a result
model and a ``run`` function. ``AlgorithmRequest`` is the tagged union of all
request models, so a payload is resolved to its concrete type once, at the
boundary.
"""

from typing import Annotated, Callable, Dict, Union

from pydantic import Field, TypeAdapter

from onesaas.algorithms import (
    data_analysis,
    linear_regression,
    ml_prediction,
    recommendation,
    sentiment_analysis,
    text_analysis,
    time_series,
)
from onesaas.algorithms.base import AlgorithmInputError, AlgorithmResult, run_timed
from onesaas.config import AlgorithmName, ConfigError

AlgorithmRequest = Annotated[
    Union[
        data_analysis.DataAnalysisRequest,
        text_analysis.TextAnalysisRequest,
        ml_prediction.MLPredictionRequest,
        sentiment_analysis.SentimentAnalysisRequest,
        time_series.TimeSeriesRequest,
        linear_regression.LinearRegressionRequest,
        recommendation.RecommendationRequest,
    ],
    Field(discriminator="algorithm"),
]

algorithm_request_adapter = TypeAdapter(AlgorithmRequest)

ALGORITHMS: Dict[AlgorithmName, Callable] = {
    AlgorithmName.DATA_ANALYSIS: data_analysis.run,
    AlgorithmName.TEXT_ANALYSIS: text_analysis.run,
    AlgorithmName.ML_PREDICTION: ml_prediction.run,
    AlgorithmName.SENTIMENT_ANALYSIS: sentiment_analysis.run,
    AlgorithmName.TIME_SERIES_ANALYSIS: time_series.run,
    AlgorithmName.LINEAR_REGRESSION: linear_regression.run,
    AlgorithmName.RECOMMENDATION: recommendation.run,
}

# Every capability a tier can grant must have an implementation
if set(ALGORITHMS) != set(AlgorithmName):
    raise ConfigError("Algorithm registry is out of sync with AlgorithmName")

DESCRIPTIONS: Dict[AlgorithmName, str] = {
    AlgorithmName.DATA_ANALYSIS: "Sum, average, min, max, median and standard deviation of numbers",
    AlgorithmName.TEXT_ANALYSIS: "Word, character and sentence counts with average word length",
    AlgorithmName.ML_PREDICTION: "Weighted linear prediction with a confidence score",
    AlgorithmName.SENTIMENT_ANALYSIS: "Positive, negative or neutral sentiment of text",
    AlgorithmName.TIME_SERIES_ANALYSIS: "Trend detection and forecasting with exponential smoothing",
    AlgorithmName.LINEAR_REGRESSION: "Least squares line fit with R-squared",
    AlgorithmName.RECOMMENDATION: "Top-N items by cosine similarity to user preferences",
}


def run_algorithm(request) -> AlgorithmResult:
    """Dispatch a resolved request to its plugin."""
    return run_timed(ALGORITHMS[AlgorithmName(request.algorithm)], request)


__all__ = [
    "ALGORITHMS",
    "DESCRIPTIONS",
    "AlgorithmInputError",
    "AlgorithmRequest",
    "AlgorithmResult",
    "algorithm_request_adapter",
    "run_algorithm",
]
