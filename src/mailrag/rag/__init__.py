"""Retrieval, context assembly and prompt templates."""

from mailrag.rag.context import NO_CONTEXT, build_citations, build_context
from mailrag.rag.prompts import DEFAULT_PROMPTS, PromptTemplate
from mailrag.rag.retriever import Retriever, clamp_top_k, sort_chronologically

__all__ = [
    "DEFAULT_PROMPTS",
    "NO_CONTEXT",
    "PromptTemplate",
    "Retriever",
    "build_citations",
    "build_context",
    "clamp_top_k",
    "sort_chronologically",
]
