"""Lexicon-based sentiment scoring.

Intensifiers multiply the next sentiment word by 1.5; negations flip it. Both
modifiers reset after each sentiment word.
"""

import re
from typing import Literal

from pydantic import BaseModel, Field

from onesaas.algorithms.base import AlgorithmInputError, round_half_up

POSITIVE_WORDS = frozenset({
    "good", "great", "excellent", "amazing", "wonderful", "fantastic", "awesome",
    "love", "best", "perfect", "beautiful", "brilliant", "outstanding", "superb",
    "happy", "joy", "delighted", "pleased", "satisfied", "thrilled", "excited",
    "positive", "nice", "pleasant", "lovely", "fabulous", "terrific", "incredible",
    "extraordinary", "exceptional", "magnificent", "marvelous", "splendid", "fun",
})

NEGATIVE_WORDS = frozenset({
    "bad", "terrible", "awful", "horrible", "poor", "worst", "hate", "dislike",
    "disappointing", "disappointed", "sad", "angry", "frustrated", "annoyed",
    "unhappy", "negative", "problem", "issue", "fail", "failed", "wrong", "broken",
    "useless", "worthless", "waste", "disgusting", "pathetic", "ridiculous",
    "annoying", "boring", "dull", "mediocre", "inferior", "subpar", "inadequate",
})

INTENSIFIERS = frozenset({"very", "extremely", "really", "absolutely", "totally", "completely"})
NEGATIONS = frozenset({"not", "no", "never", "nothing", "nowhere", "neither", "nobody"})

INTENSIFIER_MULTIPLIER = 1.5
NEUTRAL_BAND = 0.1

_NON_WORD = re.compile(r"[^\w]")


class SentimentAnalysisRequest(BaseModel):
    algorithm: Literal["sentimentAnalysis"] = "sentimentAnalysis"
    text: str = Field(..., max_length=1_000_000)


class SentimentAnalysisResult(BaseModel):
    sentiment: Literal["positive", "negative", "neutral"]
    score: float


def _is_negation(raw: str, word: str) -> bool:
    return word in NEGATIONS or raw.endswith("n't")


def run(request: SentimentAnalysisRequest) -> SentimentAnalysisResult:
    tokens = request.text.lower().split()
    if not tokens:
        raise AlgorithmInputError("Invalid input: text cannot be empty")

    positive = 0.0
    negative = 0.0
    multiplier = 1.0
    negated = False

    for raw in tokens:
        word = _NON_WORD.sub("", raw)

        if word in INTENSIFIERS:
            multiplier = INTENSIFIER_MULTIPLIER
            continue
        if _is_negation(raw, word):
            negated = True
            continue

        if word in POSITIVE_WORDS or word in NEGATIVE_WORDS:
            is_positive = (word in POSITIVE_WORDS) != negated
            if is_positive:
                positive += multiplier
            else:
                negative += multiplier
            multiplier = 1.0
            negated = False

    total = positive + negative
    if total == 0:
        return SentimentAnalysisResult(sentiment="neutral", score=0.0)

    net = (positive - negative) / total
    if net > NEUTRAL_BAND:
        return SentimentAnalysisResult(sentiment="positive", score=round_half_up(min(1.0, abs(net))))
    if net < -NEUTRAL_BAND:
        return SentimentAnalysisResult(sentiment="negative", score=round_half_up(min(1.0, abs(net))))
    return SentimentAnalysisResult(sentiment="neutral", score=0.0)
