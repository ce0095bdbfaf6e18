"""Retrieval helpers: relevance gating and context assembly."""

from .context import AssembledContext, ContextAssembler, estimate_tokens
from .gate import FALLBACK_ANSWER, RelevanceGate

__all__ = ["AssembledContext", "ContextAssembler", "FALLBACK_ANSWER", "RelevanceGate", "estimate_tokens"]
