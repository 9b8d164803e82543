"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Keep litellm from fetching its model cost map in a background thread at
# import time; in an offline sandbox that thread races the import and can
# deadlock test collection.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest

from fakes import FakeEmbedder, InlineExecutor, InMemoryVectorIndex, ScriptedChatModel
from mailrag.db.connection import Database


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    conn = Database(tmp_path / ".mailrag.db").open_shared()
    yield conn
    conn.close()


# ------------------------------------------------------------------
# Fixtures over the fakes
# ------------------------------------------------------------------


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def chat_model():
    return ScriptedChatModel()


@pytest.fixture
def inline_executor():
    return InlineExecutor()
