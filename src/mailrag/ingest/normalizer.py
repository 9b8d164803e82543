"""Message body normalisation: signatures, HTML, entities, whitespace."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_SIGNATURE_RE = re.compile(r"\n--\s*\n[\s\S]*$")
_SENT_FROM_RE = re.compile(r"\nSent from my .*$", re.IGNORECASE)
_HTML_HINT_RE = re.compile(
    r"<\s*/?\s*(html|body|div|p|br|table|span|style|head)\b", re.IGNORECASE
)
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")

_ENTITIES: dict[str, str] = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&apos;": "'",
    "&#39;": "'",
}


def strip_signature(text: str) -> str:
    """Drop a trailing ``--`` signature block and a "Sent from my ..." line."""
    text = _SIGNATURE_RE.sub("", text)
    return _SENT_FROM_RE.sub("", text)


def strip_html(text: str) -> str:
    """Remove markup.

    Real HTML documents go through BeautifulSoup, which also decodes their
    entities; stray tags in plain text are stripped with a regex.
    """
    if _HTML_HINT_RE.search(text):
        soup = BeautifulSoup(text, "html.parser")
        for tag in soup(["script", "style", "head"]):
            tag.decompose()
        return soup.get_text(" ")
    return _TAG_RE.sub(" ", text)


def decode_entities(text: str) -> str:
    """Replace the standard HTML entities in order, ``&amp;`` first.

    Sequential, so a double-escaped ``&amp;lt;`` ends up as ``<``.
    """
    for entity, char in _ENTITIES.items():
        text = text.replace(entity, char)
    return text


def normalize_body(body: str | None) -> str:
    """Return clean single-spaced plain text for *body*. Never raises."""
    if not body:
        return ""
    text = body.replace("\r\n", "\n")
    text = strip_signature(text)
    is_html = bool(_HTML_HINT_RE.search(text))
    text = strip_html(text)
    if not is_html:
        text = decode_entities(text)
    return _WS_RE.sub(" ", text).strip()
