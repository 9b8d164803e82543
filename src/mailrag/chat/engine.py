"""Conversation engine: one chat turn from question to persisted answer.

Per turn: RECEIVED → RETRIEVING → STREAMING → PERSISTED. Titling (first user
turn only) and memory summarising (every turn) run on a background executor
and never gate the stream.

``prepare_turn()`` does everything that can fail with a plain error response
(validation, lookup, retrieval). ``stream_turn()`` is the generator that runs
once the response has started; from then on failures become an ``error``
event and whatever was generated is still persisted.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from mailrag.capabilities import ChatMessage, ChatModel
from mailrag.chat.stream import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    StreamEvent,
    TitleEvent,
)
from mailrag.config import ConversationCfg
from mailrag.db.models import ROLE_ASSISTANT, ROLE_USER, ChatTurn, Conversation
from mailrag.db.repository import ConversationRepository
from mailrag.errors import MailragError, NotFoundError, StreamInterrupted, ValidationError
from mailrag.models import VectorMatch
from mailrag.rag.context import build_citations, build_context
from mailrag.rag.prompts import DEFAULT_PROMPTS, PromptTemplate
from mailrag.rag.retriever import ORDER_CHRONOLOGICAL, Retriever, wants_chronological_order

logger = logging.getLogger(__name__)

_QUOTES_RE = re.compile(r"^[\"']|[\"']$")


@dataclass
class ChatSettings:
    history_limit: int = 15
    memory_summary_messages: int = 8
    memory_max_chars: int = 2_000
    fallback_answer: str = "No answer available."
    error_answer: str = "Sorry, something went wrong while generating the answer. Please try again."
    title_max_chars: int = 100
    title_max_tokens: int = 30
    title_temperature: float = 0.3
    summary_max_tokens: int = 150
    summary_temperature: float = 0.2

    @classmethod
    def from_config(cls, cfg: ConversationCfg) -> ChatSettings:
        return cls(
            history_limit=cfg.history_limit,
            memory_summary_messages=cfg.memory_summary_messages,
            memory_max_chars=cfg.memory_max_chars,
            fallback_answer=cfg.fallback_answer,
        )


@dataclass
class PreparedTurn:
    """State carried from prepare_turn() into stream_turn()."""

    conversation: Conversation
    user_id: str
    question: str
    user_turn: ChatTurn
    is_first_turn: bool
    created: bool
    matches: list[VectorMatch]
    messages: list[ChatMessage]
    title_future: Future | None = None
    title_sent: bool = False
    citations: list[dict[str, Any]] = field(default_factory=list)


class ConversationEngine:
    """Stateful chat over the mail index.

    Args:
        repository: Conversation / chat / memory store.
        retriever: Question → matches.
        chat_model: Streaming and one-shot completion capability.
        prompts: Prompt template (versioned data).
        settings: History, memory and fallback limits.
        mailbox_email: The mailbox owner's address, quoted in the reply policy.
        executor: Runs titling and summarising; a small thread pool by default.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        retriever: Retriever,
        chat_model: ChatModel,
        *,
        prompts: PromptTemplate = DEFAULT_PROMPTS,
        settings: ChatSettings | None = None,
        mailbox_email: str = "",
        executor: Executor | None = None,
    ) -> None:
        self._repo = repository
        self._retriever = retriever
        self._chat = chat_model
        self._prompts = prompts
        self.settings = settings or ChatSettings()
        self.mailbox_email = mailbox_email
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="mailrag-bg"
        )

    def close(self) -> None:
        """Wait for pending background work, then release the executor."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # RECEIVED / RETRIEVING
    # ------------------------------------------------------------------

    def prepare_turn(
        self,
        user_id: str,
        message: str | None,
        conversation_id: str | None = None,
        top_k: Any = None,
    ) -> PreparedTurn:
        """Validate, persist the user turn and retrieve context.

        Without *conversation_id* a new conversation is created first.

        Raises:
            ValidationError: empty message (nothing is written).
            NotFoundError: conversation missing or owned by someone else.
        """
        question = (message or "").strip()
        if not question:
            raise ValidationError("Message is required")

        created = False
        if conversation_id:
            conversation = self._repo.get_conversation(conversation_id, user_id)
            if conversation is None:
                raise NotFoundError("Conversation not found")
        else:
            conversation = self._repo.create_conversation(user_id)
            created = True

        user_turn, is_first_turn = self._repo.append_turn(
            conversation.id, user_id, ROLE_USER, question
        )
        title_future = None
        if is_first_turn:
            title_future = self._executor.submit(
                self._generate_title, conversation.id, user_id, question
            )

        recent = self._repo.recent_turns(conversation.id, user_id, self.settings.history_limit)
        history = [t for t in recent if t.sequence < user_turn.sequence]
        memory = self._repo.get_memory(conversation.id, user_id).summary

        order_by = ORDER_CHRONOLOGICAL if wants_chronological_order(question) else None
        matches = self._retriever.retrieve(question, top_k=top_k, order_by=order_by)
        messages = self._prompts.build_answer_messages(
            question,
            build_context(matches),
            history=history,
            memory=memory,
            mailbox_email=self.mailbox_email,
        )
        return PreparedTurn(
            conversation=conversation,
            user_id=user_id,
            question=question,
            user_turn=user_turn,
            is_first_turn=is_first_turn,
            created=created,
            matches=matches,
            messages=messages,
            title_future=title_future,
            citations=build_citations(matches),
        )

    # ------------------------------------------------------------------
    # STREAMING / PERSISTED
    # ------------------------------------------------------------------

    def stream_turn(self, turn: PreparedTurn, is_open: Callable[[], bool] | None = None):
        """Yield stream events for a prepared turn.

        *is_open* is checked before each chunk; once it reports the consumer
        gone, no further events are produced. Either way (closed check or the
        consumer simply stopping iteration) the text generated so far is
        persisted as the assistant turn.
        """
        accumulated: list[str] = []
        persisted = False
        stream = None
        try:
            yield MetadataEvent(
                citations=turn.citations,
                match_count=len(turn.matches),
                conversation_id=turn.conversation.id,
            )
            stream = self._chat.chat_stream(turn.messages)
            for token in stream:
                if not token:
                    continue
                accumulated.append(token)
                if is_open is not None and not is_open():
                    raise StreamInterrupted("Consumer disconnected")
                yield ChunkEvent(content=token)
                title = self._ready_title(turn)
                if title is not None:
                    yield title

            answer = "".join(accumulated)
            if not answer:
                answer = self.settings.fallback_answer
                yield ChunkEvent(content=answer)
            self._persist_answer(turn, answer)
            persisted = True

            title = self._ready_title(turn)
            if title is not None:
                yield title
            yield DoneEvent()
        except StreamInterrupted:
            pass
        except Exception as exc:
            logger.warning(
                "Answer generation failed for conversation %s: %s", turn.conversation.id, exc
            )
            if not persisted:
                self._persist_answer(turn, self.settings.error_answer)
                persisted = True
            message = exc.message if isinstance(exc, MailragError) and exc.message else str(exc)
            yield ErrorEvent(message=message or "Failed to send message")
        finally:
            if stream is not None and hasattr(stream, "close"):
                stream.close()
            if not persisted:
                logger.info(
                    "Consumer left conversation %s mid-stream; keeping %d chunks",
                    turn.conversation.id,
                    len(accumulated),
                )
                self._persist_answer(
                    turn, "".join(accumulated) or self.settings.fallback_answer
                )

    def answer(
        self,
        user_id: str,
        message: str | None,
        conversation_id: str | None = None,
        top_k: Any = None,
    ) -> list[StreamEvent]:
        """Run a whole turn and collect its events (non-streaming callers)."""
        return list(self.stream_turn(self.prepare_turn(user_id, message, conversation_id, top_k)))

    def _persist_answer(self, turn: PreparedTurn, answer: str) -> None:
        self._repo.append_turn(turn.conversation.id, turn.user_id, ROLE_ASSISTANT, answer)
        self._executor.submit(self._summarize, turn.conversation.id, turn.user_id)

    def _ready_title(self, turn: PreparedTurn) -> TitleEvent | None:
        """A title event, once, if background titling has already finished."""
        future = turn.title_future
        if turn.title_sent or future is None or not future.done():
            return None
        turn.title_sent = True
        title = future.result()
        return TitleEvent(title=title) if title else None

    # ------------------------------------------------------------------
    # TITLING / SUMMARIZING (background)
    # ------------------------------------------------------------------

    def _generate_title(self, conversation_id: str, user_id: str, first_message: str) -> str | None:
        try:
            raw = self._chat.chat_once(
                self._prompts.build_title_messages(first_message),
                max_tokens=self.settings.title_max_tokens,
                temperature=self.settings.title_temperature,
            )
            title = _QUOTES_RE.sub("", (raw or "").strip())[: self.settings.title_max_chars]
            title = title.strip()
            if not title:
                return None
            self._repo.update_title(conversation_id, user_id, title)
            return title
        except Exception as exc:
            logger.warning("Title generation failed for %s: %s", conversation_id, exc)
            return None

    def _summarize(self, conversation_id: str, user_id: str) -> None:
        try:
            turns = self._repo.recent_turns(
                conversation_id, user_id, self.settings.memory_summary_messages
            )
            if not turns:
                return
            summary = self._chat.chat_once(
                self._prompts.build_summary_messages(turns),
                max_tokens=self.settings.summary_max_tokens,
                temperature=self.settings.summary_temperature,
            )
            self._repo.save_memory(
                conversation_id, user_id, summary, max_chars=self.settings.memory_max_chars
            )
        except Exception as exc:
            logger.warning("Memory update failed for %s: %s", conversation_id, exc)
