"""Tests for the dense retriever and chronological ordering."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fakes import FakeEmbedder, InMemoryVectorIndex
from mailrag.models import IndexedVector, VectorMatch
from mailrag.rag.retriever import (
    DEFAULT_FILTER,
    ORDER_CHRONOLOGICAL,
    Retriever,
    clamp_top_k,
    parse_date,
    sort_chronologically,
    wants_chronological_order,
)


@pytest.fixture
def index():
    idx = InMemoryVectorIndex()
    idx.upsert(
        "emails",
        [
            IndexedVector("e1", [0.1] * 8, {"docType": "email", "date": "2024-03-02T09:00:00Z"}),
            IndexedVector("e2", [0.2] * 8, {"docType": "email", "date": "Fri, 01 Mar 2024 09:00:00 +0000"}),
            IndexedVector("a1", [0.3] * 8, {"docType": "attachment", "date": ""}),
            IndexedVector("n1", [0.4] * 8, {"docType": "note"}),
        ],
    )
    return idx


# ------------------------------------------------------------------
# clamp_top_k
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "value,expected",
    [(None, 6), (0, 6), ("abc", 6), (3, 3), ("4", 4), (-2, 1), (50, 20), (20, 20)],
)
def test_clamp_top_k(value, expected):
    assert clamp_top_k(value) == expected


# ------------------------------------------------------------------
# retrieve()
# ------------------------------------------------------------------


def test_blank_question_skips_embedder(index):
    embedder = FakeEmbedder()
    assert Retriever(embedder, index).retrieve("  ") == []
    assert embedder.calls == []


def test_default_filter_excludes_other_doc_types(index):
    matches = Retriever(FakeEmbedder(), index).retrieve("budget", top_k=10)
    assert {m.id for m in matches} == {"e1", "e2", "a1"}


def test_caller_filter_replaces_default(index):
    matches = Retriever(FakeEmbedder(), index).retrieve("x", filter={"docType": "note"})
    assert [m.id for m in matches] == ["n1"]


def test_only_question_is_embedded(index):
    embedder = FakeEmbedder()
    Retriever(embedder, index).retrieve("  what was approved?  ")
    assert embedder.calls == [["what was approved?"]]


def test_top_k_clamped_before_query():
    vector_index = MagicMock()
    vector_index.query.return_value = []
    Retriever(FakeEmbedder(), vector_index, namespace="ns").retrieve("q", top_k=99)
    namespace, _, top_k, flt = vector_index.query.call_args[0]
    assert namespace == "ns"
    assert top_k == 20
    assert flt == DEFAULT_FILTER


def test_chronological_order(index):
    matches = Retriever(FakeEmbedder(), index).retrieve(
        "timeline", top_k=10, order_by=ORDER_CHRONOLOGICAL
    )
    assert [m.id for m in matches] == ["e2", "e1", "a1"]


# ------------------------------------------------------------------
# Dates and ordering helpers
# ------------------------------------------------------------------


def test_parse_date_formats():
    iso = parse_date("2024-03-01T09:00:00Z")
    rfc = parse_date("Fri, 01 Mar 2024 09:00:00 +0000")
    assert iso == rfc
    assert parse_date("2024-03-01").tzinfo is not None
    assert parse_date("not a date") is None
    assert parse_date(None) is None


def test_sort_is_stable_for_equal_dates():
    same = "2024-01-01T00:00:00Z"
    matches = [
        VectorMatch("b", 0.9, {"date": same}),
        VectorMatch("undated", 0.8, {}),
        VectorMatch("a", 0.7, {"date": same}),
        VectorMatch("early", 0.6, {"date": "2023-01-01T00:00:00Z"}),
    ]
    assert [m.id for m in sort_chronologically(matches)] == ["early", "b", "a", "undated"]


@pytest.mark.parametrize(
    "question,expected",
    [
        ("Give me a timeline of the Acme deal", True),
        ("What is the most recent invoice?", True),
        ("When did Bob reply?", True),
        ("Summarise the chronology", True),
        ("Who approved the budget?", False),
        ("Draft a reply to Carol", False),
    ],
)
def test_wants_chronological_order(question, expected):
    assert wants_chronological_order(question) is expected
