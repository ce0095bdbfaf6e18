"""Relevance gate deciding whether retrieval is good enough to answer from."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from groundedqa.models import SearchResult

FALLBACK_ANSWER = "I don't know"


@dataclass(frozen=True)
class RelevanceGate:
    """Compares the best similarity score against a configured threshold."""

    threshold: float = 0.75

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")

    @staticmethod
    def top_score(results: Sequence[SearchResult]) -> float:
        # An empty result set scores 0 and therefore never clears a positive threshold.
        return results[0].score if results else 0.0

    def passes(self, results: Sequence[SearchResult]) -> bool:
        return self.top_score(results) >= self.threshold
