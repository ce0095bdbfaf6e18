"""Token-budgeted context assembly over ranked search results."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from groundedqa.models import SearchResult

CHUNK_SEPARATOR = "\n\n"


def estimate_tokens(text: str) -> int:
    """Rough token estimate of roughly four characters per token."""

    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class AssembledContext:
    text: str
    included: Sequence[SearchResult]

    @property
    def included_count(self) -> int:
        return len(self.included)

    @property
    def is_empty(self) -> bool:
        return not self.included


class ContextAssembler:
    """Concatenates ranked chunks until the next one would exceed the budget.

    Results are consumed in the order given; assembly stops at the first chunk
    that does not fit, so a lower-ranked chunk is never used in place of a
    higher-ranked one and no chunk is cut mid-text.
    """

    def __init__(self, token_budget: int = 3000) -> None:
        if token_budget < 1:
            raise ValueError("token_budget must be >= 1")
        self._token_budget = token_budget

    @property
    def token_budget(self) -> int:
        return self._token_budget

    def assemble(self, results: Sequence[SearchResult]) -> AssembledContext:
        context = ""
        included: list[SearchResult] = []
        for result in results:
            text = result.text.strip()
            if not text:
                continue
            candidate = f"{context}{CHUNK_SEPARATOR}{text}" if context else text
            if estimate_tokens(candidate) > self._token_budget:
                break
            context = candidate
            included.append(result)
        return AssembledContext(text=context, included=tuple(included))
