"""Versioned prompt templates for answering, titling and memory summaries.

Prompt text is data: the engine only fills the templates, so tone and
drafting rules can change (and be tested) without touching streaming code.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from mailrag.capabilities import ChatMessage
from mailrag.db.models import ROLE_USER, ChatTurn
from mailrag.rag.context import NO_CONTEXT

_BASE_SYSTEM = (
    "You are a helpful assistant that answers questions using the provided context, "
    "which may include emails and documents (attachments such as PDFs, Word files, or "
    "text files). Use both email content and document excerpts to answer. If the "
    "context does not contain the answer, say you do not have enough information."
)

_REPLY_POLICY = (
    "When asked to draft an email about a thread in the context:\n"
    "- Find the most recent message of that thread. If it is marked \"(sent by you)\" "
    "or its From address is the mailbox owner's ({mailbox}), the owner is waiting on "
    "the other party: write a polite follow-up. Otherwise someone else wrote last: "
    "write a reply to them.\n"
    "- Address the right recipient, keep the original subject (prefix \"Re:\" for "
    "replies), and structure the draft as greeting, body, and sign-off.\n"
    "- If the recipient, the thread, or the topic cannot be determined from the "
    "context, do not draft. Ask exactly one short clarifying question instead."
)

_TITLE = (
    "Create a short, specific conversation title (2-5 words) based on the user's "
    "first message below.\n"
    "Requirements:\n"
    "- Capture the main topic or intent.\n"
    "- Use natural, human-like phrasing.\n"
    "- No quotes, punctuation at the end, or explanations.\n"
    "- Output title only.\n"
    "\n"
    "First message: {message}"
)

_SUMMARY = (
    "Summarize this conversation in 1-2 short sentences for context in future turns. "
    "Only output the summary, no preamble."
)


@dataclass(frozen=True)
class PromptTemplate:
    version: str = "1"
    system: str = _BASE_SYSTEM
    reply_policy: str = _REPLY_POLICY
    memory_prefix: str = "Conversation memory (use for context only): "
    title: str = _TITLE
    title_message_chars: int = 200
    summary: str = _SUMMARY
    summary_turn_chars: int = 500

    def system_prompt(self, memory: str = "", mailbox_email: str = "") -> str:
        parts = [self.system, self.reply_policy.format(mailbox=mailbox_email or "unknown")]
        if memory and memory.strip():
            parts.append(self.memory_prefix + memory.strip())
        return "\n\n".join(parts)

    def build_answer_messages(
        self,
        question: str,
        context: str,
        history: Sequence[ChatTurn] = (),
        memory: str = "",
        mailbox_email: str = "",
    ) -> list[ChatMessage]:
        """[system, ...history, question + context]. Non-user turns map to assistant."""
        messages: list[ChatMessage] = [
            {"role": "system", "content": self.system_prompt(memory, mailbox_email)}
        ]
        for turn in history:
            role = "user" if turn.role == ROLE_USER else "assistant"
            messages.append({"role": role, "content": turn.message or ""})
        messages.append(
            {
                "role": "user",
                "content": f"Question: {question}\n\nContext:\n{context or NO_CONTEXT}",
            }
        )
        return messages

    def build_title_messages(self, first_message: str) -> list[ChatMessage]:
        text = self.title.format(message=first_message[: self.title_message_chars])
        return [{"role": "user", "content": text}]

    def build_summary_messages(self, turns: Sequence[ChatTurn]) -> list[ChatMessage]:
        lines = [self.summary, ""]
        lines.extend(f"{t.role}: {t.message[: self.summary_turn_chars]}" for t in turns)
        return [{"role": "user", "content": "\n".join(lines)}]


DEFAULT_PROMPTS = PromptTemplate()
