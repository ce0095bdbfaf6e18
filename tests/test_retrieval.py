"""Tests for relevance gating and token-budgeted context assembly."""

from __future__ import annotations

import pytest

from groundedqa.models import SearchResult
from groundedqa.retrieval.context import ContextAssembler, estimate_tokens
from groundedqa.retrieval.gate import RelevanceGate


def _result(text: str, score: float = 0.9, index: int = 0) -> SearchResult:
    return SearchResult(id=f"doc_{index}", text=text, score=score, metadata={"chunk_index": index})


def test_gate_uses_top_score_against_threshold():
    gate = RelevanceGate(0.75)
    assert gate.passes([_result("a", 0.80), _result("b", 0.10)])
    assert gate.passes([_result("a", 0.75)])
    assert not gate.passes([_result("a", 0.60)])


def test_gate_refuses_empty_results():
    gate = RelevanceGate(0.75)
    assert RelevanceGate.top_score([]) == 0.0
    assert not gate.passes([])


def test_gate_rejects_threshold_outside_unit_interval():
    with pytest.raises(ValueError):
        RelevanceGate(1.5)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_assembler_joins_chunks_in_rank_order():
    results = [_result("  first  ", index=0), _result("second", index=1)]
    context = ContextAssembler(100).assemble(results)
    assert context.text == "first\n\nsecond"
    assert context.included_count == 2


def test_assembler_stops_at_first_chunk_over_budget():
    # 20 + 2 + 20 chars = 11 tokens; the third chunk overflows and the tiny
    # fourth one must not be pulled forward in its place.
    results = [
        _result("a" * 20, index=0),
        _result("b" * 20, index=1),
        _result("c" * 40, index=2),
        _result("d", index=3),
    ]
    context = ContextAssembler(12).assemble(results)
    assert context.text == f"{'a' * 20}\n\n{'b' * 20}"
    assert [result.id for result in context.included] == ["doc_0", "doc_1"]


def test_assembler_returns_empty_context_when_first_chunk_is_oversized():
    context = ContextAssembler(5).assemble([_result("x" * 100), _result("y")])
    assert context.is_empty
    assert context.text == ""
    assert context.included_count == 0


def test_assembler_skips_blank_chunks():
    context = ContextAssembler(100).assemble([_result("   "), _result("kept", index=1)])
    assert context.text == "kept"
    assert context.included_count == 1


def test_assembler_requires_positive_budget():
    with pytest.raises(ValueError):
        ContextAssembler(0)
