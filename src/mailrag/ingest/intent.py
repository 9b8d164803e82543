"""Lightweight intent flags scanned from cleaned message text."""

from __future__ import annotations

import re

from mailrag.models import IntentFlags

_ACTION_RE = re.compile(
    r"action required|please respond|waiting for your response"
    r"|please (?:confirm|review|advise)|let me know by",
    re.IGNORECASE,
)
_DECISION_RE = re.compile(
    r"we decided|final decision|approved|we(?:'ve| have) agreed", re.IGNORECASE
)
_CONFIRMATION_RE = re.compile(r"confirmed|successfully|completed", re.IGNORECASE)


def tag_intent(text: str) -> IntentFlags:
    """Return independent action / decision / confirmation flags for *text*."""
    if not text:
        return IntentFlags()
    return IntentFlags(
        has_action=bool(_ACTION_RE.search(text)),
        has_decision=bool(_DECISION_RE.search(text)),
        has_confirmation=bool(_CONFIRMATION_RE.search(text)),
    )
