"""Tests for the conversation engine: one streamed turn end to end."""

from __future__ import annotations

from concurrent.futures import Future

import pytest

from fakes import FakeEmbedder, InlineExecutor, InMemoryVectorIndex, ScriptedChatModel, make_message
from mailrag.chat.engine import ChatSettings, ConversationEngine
from mailrag.chat.stream import ChunkEvent, DoneEvent, ErrorEvent, MetadataEvent, TitleEvent
from mailrag.config import ConversationCfg
from mailrag.db.repository import ConversationRepository
from mailrag.errors import NotFoundError, ValidationError
from mailrag.ingest.pipeline import IngestionPipeline
from mailrag.rag.retriever import Retriever


class HeldExecutor(InlineExecutor):
    """Queues work until release() so background jobs finish after the stream."""

    def __init__(self) -> None:
        self.pending: list[tuple[Future, object, tuple]] = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.pending.append((future, fn, args))
        return future

    def release(self) -> None:
        while self.pending:
            future, fn, args = self.pending.pop(0)
            future.set_result(fn(*args))


@pytest.fixture
def repo(tmp_db):
    return ConversationRepository(tmp_db)


@pytest.fixture
def index():
    idx = InMemoryVectorIndex()
    pipeline = IngestionPipeline(FakeEmbedder(), idx)
    pipeline.ingest(
        [
            make_message("m1", "The Q1 budget was approved.", date="2024-03-02T10:00:00Z"),
            make_message(
                "m2",
                "Following up on the budget.",
                sender="Me <me@example.com>",
                date="2024-03-03T10:00:00Z",
            ),
        ],
        mailbox_email="me@example.com",
    )
    return idx


def _engine(repo, index, chat=None, executor=None, **settings):
    return ConversationEngine(
        repo,
        Retriever(FakeEmbedder(), index),
        chat or ScriptedChatModel(),
        settings=ChatSettings(**settings),
        mailbox_email="me@example.com",
        executor=executor or InlineExecutor(),
    )


def _kinds(events):
    return [type(e).__name__ for e in events]


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


@pytest.mark.parametrize("message", [None, "", "   "])
def test_empty_message_rejected_without_writes(repo, index, message):
    engine = _engine(repo, index)
    with pytest.raises(ValidationError, match="Message is required"):
        engine.prepare_turn("u1", message)
    assert repo.list_conversations("u1") == []


def test_unknown_conversation(repo, index):
    with pytest.raises(NotFoundError, match="Conversation not found"):
        _engine(repo, index).prepare_turn("u1", "hi", "missing")


def test_foreign_conversation(repo, index):
    conv = repo.create_conversation("owner")
    with pytest.raises(NotFoundError):
        _engine(repo, index).prepare_turn("intruder", "hi", conv.id)
    assert repo.list_turns(conv.id, "owner") == []


# ------------------------------------------------------------------
# Streaming
# ------------------------------------------------------------------


def test_stream_shape_and_persistence(repo, index):
    engine = _engine(repo, index)
    events = engine.answer("u1", "Who approved the budget?")

    assert isinstance(events[0], MetadataEvent)
    assert isinstance(events[-1], DoneEvent)
    chunks = "".join(e.content for e in events if isinstance(e, ChunkEvent))
    assert chunks == "Hello there"

    conv_id = events[0].conversation_id
    turns = repo.list_turns(conv_id, "u1")
    assert [(t.role, t.sequence) for t in turns] == [("user", 1), ("assistant", 2)]
    assert turns[1].message == chunks


def test_metadata_carries_citations(repo, index):
    events = _engine(repo, index).answer("u1", "budget")
    meta = events[0]
    assert meta.match_count == 2
    assert {c["id"] for c in meta.citations} == {"m1", "m2"}


def test_first_turn_titles_conversation(repo, index):
    events = _engine(repo, index).answer("u1", "Who approved the budget?")
    titles = [e for e in events if isinstance(e, TitleEvent)]
    assert [t.title for t in titles] == ["Budget Review"]
    conv = repo.get_conversation(events[0].conversation_id, "u1")
    assert conv.title == "Budget Review"


def test_title_not_regenerated_on_later_turns(repo, index):
    chat = ScriptedChatModel()
    engine = _engine(repo, index, chat)
    first = engine.answer("u1", "first question")
    conv_id = first[0].conversation_id
    second = engine.answer("u1", "second question", conv_id)
    assert not any(isinstance(e, TitleEvent) for e in second)
    title_calls = [c for c in chat.once_calls if "conversation title" in c[0]["content"]]
    assert len(title_calls) == 1


def test_title_sent_once_when_ready_late(repo, index):
    held = HeldExecutor()
    engine = _engine(repo, index, executor=held)
    turn = engine.prepare_turn("u1", "hello")
    events = list(engine.stream_turn(turn))
    assert not any(isinstance(e, TitleEvent) for e in events)
    held.release()
    assert repo.get_conversation(turn.conversation.id, "u1").title == "Budget Review"


def test_three_exchanges_have_sequences_one_to_six(repo, index):
    engine = _engine(repo, index)
    conv_id = None
    for question in ("q1", "q2", "q3"):
        events = engine.answer("u1", question, conv_id)
        conv_id = events[0].conversation_id
    assert [t.sequence for t in repo.list_turns(conv_id, "u1")] == [1, 2, 3, 4, 5, 6]


def test_history_excludes_current_question(repo, index):
    chat = ScriptedChatModel()
    engine = _engine(repo, index, chat, history_limit=15)
    conv_id = engine.answer("u1", "first")[0].conversation_id
    engine.answer("u1", "second", conv_id)
    messages = chat.stream_calls[-1]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[1]["content"] == "first"
    assert messages[-1]["content"].startswith("Question: second")


def test_memory_summary_saved_and_used(repo, index):
    chat = ScriptedChatModel(summary="Talked about the Q1 budget.")
    engine = _engine(repo, index, chat)
    conv_id = engine.answer("u1", "first")[0].conversation_id
    assert repo.get_memory(conv_id, "u1").summary == "Talked about the Q1 budget."
    engine.answer("u1", "again", conv_id)
    assert "Talked about the Q1 budget." in chat.stream_calls[-1][0]["content"]


def test_empty_generation_falls_back(repo, index):
    engine = _engine(repo, index, ScriptedChatModel(tokens=[]), fallback_answer="No answer available.")
    events = engine.answer("u1", "anything")
    chunks = [e.content for e in events if isinstance(e, ChunkEvent)]
    assert chunks == ["No answer available."]
    turns = repo.list_turns(events[0].conversation_id, "u1")
    assert turns[-1].message == "No answer available."


def test_generation_error_emits_error_event(repo, index):
    engine = _engine(repo, index, ScriptedChatModel(tokens=["partial"], fail_after=1))
    events = engine.answer("u1", "anything")
    assert isinstance(events[0], MetadataEvent)
    assert isinstance(events[-1], ErrorEvent)
    assert not any(isinstance(e, DoneEvent) for e in events)
    turns = repo.list_turns(events[0].conversation_id, "u1")
    assert [t.role for t in turns] == ["user", "assistant"]
    assert turns[-1].message == engine.settings.error_answer


def test_consumer_leaving_early_persists_partial_answer(repo, index):
    engine = _engine(repo, index, ScriptedChatModel(tokens=["one", " two", " three"]))
    turn = engine.prepare_turn("u1", "question")
    stream = engine.stream_turn(turn)
    assert isinstance(next(stream), MetadataEvent)
    assert next(stream).content == "one"
    stream.close()
    turns = repo.list_turns(turn.conversation.id, "u1")
    assert turns[-1].role == "assistant"
    assert turns[-1].message == "one"


def test_closed_consumer_stops_silently_and_keeps_text(repo, index):
    engine = _engine(
        repo, index, ScriptedChatModel(tokens=["one", " two", " three"]), executor=HeldExecutor()
    )
    turn = engine.prepare_turn("u1", "question")
    checks = iter([True, False])
    events = list(engine.stream_turn(turn, is_open=lambda: next(checks)))
    assert _kinds(events) == ["MetadataEvent", "ChunkEvent"]
    turns = repo.list_turns(turn.conversation.id, "u1")
    assert turns[-1].role == "assistant"
    assert turns[-1].message == "one two"


def test_chronological_question_orders_context(repo, index):
    chat = ScriptedChatModel()
    engine = _engine(repo, index, chat)
    events = engine.answer("u1", "Give me the timeline of the budget")
    assert [c["id"] for c in events[0].citations] == ["m1", "m2"]


def test_outbound_mail_marked_in_context(repo, index):
    chat = ScriptedChatModel()
    _engine(repo, index, chat).answer("u1", "draft a follow-up about the budget")
    assert "(sent by you)" in chat.stream_calls[-1][-1]["content"]


def test_settings_from_config():
    cfg = ConversationCfg(history_limit=4, memory_summary_messages=2, memory_max_chars=50, fallback_answer="n/a")
    settings = ChatSettings.from_config(cfg)
    assert (settings.history_limit, settings.memory_summary_messages) == (4, 2)
    assert settings.memory_max_chars == 50
    assert settings.fallback_answer == "n/a"
