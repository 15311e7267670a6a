"""Word, character and sentence counts."""

import re
from typing import Literal

from pydantic import BaseModel, Field

from onesaas.algorithms.base import AlgorithmInputError, round_half_up

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


class TextAnalysisRequest(BaseModel):
    algorithm: Literal["textAnalysis"] = "textAnalysis"
    text: str = Field(..., max_length=1_000_000)


class TextAnalysisResult(BaseModel):
    word_count: int
    character_count: int
    sentence_count: int
    average_word_length: float


def run(request: TextAnalysisRequest) -> TextAnalysisResult:
    text = request.text.strip()
    if not text:
        raise AlgorithmInputError("Invalid input: text cannot be empty")

    words = text.split()
    sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    average = sum(len(w) for w in words) / len(words) if words else 0.0

    return TextAnalysisResult(
        word_count=len(words),
        character_count=len(text),
        sentence_count=len(sentences),
        average_word_length=round_half_up(average),
    )
