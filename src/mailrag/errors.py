"""Error taxonomy shared by the ingestion pipeline, chat engine and HTTP layer.

Each error carries the HTTP status it maps to when it escapes before a stream
has started: 400 for bad input, 404 for a missing conversation, 500 for
everything else. Errors raised after the first stream line is written are reported
as a terminal ``error`` event instead.
"""

from __future__ import annotations


class MailragError(Exception):
    """Base class for all mailrag errors."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MailragError):
    """User-correctable input problem (empty question, empty title, ...)."""

    status_code = 400


class NotFoundError(MailragError):
    """Conversation missing or not owned by the caller."""

    status_code = 404


class UpstreamRetryable(MailragError):
    """Rate-limit / 5xx / transport failure from an embedding or chat provider.

    Retried internally; surfaced only once the retry budget is exhausted.
    """


class UpstreamFatal(MailragError):
    """Auth, configuration or request errors from a provider. Never retried."""

    status_code = 500


class StreamInterrupted(MailragError):
    """The consumer went away mid-stream. Not an error for the producer."""


class UnsupportedMimeType(MailragError):
    """An attachment's MIME type has no text extractor."""
