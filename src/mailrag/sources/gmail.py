"""Gmail REST API adapter (google-api-python-client).

Implements the MailApi capability: paged listing, full message detail parsed
into RawMessage, metadata previews, and attachment bytes.
"""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailrag.capabilities import MailPage, MailSummary, MessagePreview
from mailrag.errors import MailragError, NotFoundError, UpstreamFatal, UpstreamRetryable
from mailrag.ingest.attachments import is_rag_mime_type
from mailrag.models import AttachmentPayload, RawMessage

logger = logging.getLogger(__name__)

GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def decode_base64url(data: str | None) -> bytes:
    """Decode Gmail's unpadded base64url encoding."""
    if not data:
        return b""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


def get_header(headers: list[dict[str, Any]], name: str) -> str:
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return header.get("value") or ""
    return ""


def _find_part_data(payload: dict[str, Any] | None, mime_type: str) -> str | None:
    if not payload:
        return None
    body = payload.get("body") or {}
    if payload.get("mimeType") == mime_type and body.get("data") and not payload.get("filename"):
        return body["data"]
    for part in payload.get("parts") or []:
        found = _find_part_data(part, mime_type)
        if found:
            return found
    return None


def extract_body(payload: dict[str, Any]) -> str:
    """Prefer text/plain, then text/html, then the top-level body."""
    data = (
        _find_part_data(payload, "text/plain")
        or _find_part_data(payload, "text/html")
        or (payload.get("body") or {}).get("data")
    )
    return decode_base64url(data).decode("utf-8", errors="replace")


def collect_attachment_parts(payload: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Return the RAG-relevant attachment parts of a message payload, depth first."""
    found: list[dict[str, Any]] = []
    if not payload:
        return found
    body = payload.get("body") or {}
    if payload.get("filename") and (body.get("attachmentId") or body.get("data")):
        if is_rag_mime_type(payload.get("mimeType", "")):
            found.append(payload)
    for part in payload.get("parts") or []:
        found.extend(collect_attachment_parts(part))
    return found


def parse_gmail_message(
    message: dict[str, Any], attachments: tuple[AttachmentPayload, ...] = ()
) -> RawMessage:
    """Map a ``format=full`` Gmail message resource onto RawMessage.

    ``messageId`` is the RFC 822 Message-ID header, falling back to the API id.
    """
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    return RawMessage(
        message_id=get_header(headers, "Message-ID") or message.get("id", ""),
        subject=get_header(headers, "Subject"),
        sender=get_header(headers, "From"),
        date=get_header(headers, "Date"),
        body=extract_body(payload),
        in_reply_to=get_header(headers, "In-Reply-To"),
        source="gmail",
        attachments=attachments,
    )


# ---------------------------------------------------------------------------
# API adapter
# ---------------------------------------------------------------------------


def _map_http_error(exc: HttpError) -> MailragError:
    status = getattr(exc.resp, "status", None)
    try:
        status = int(status)
    except (TypeError, ValueError):
        status = 0
    if status == 404:
        return NotFoundError(f"Gmail resource not found: {exc}")
    if status == 429 or status >= 500:
        return UpstreamRetryable(f"Gmail API error {status}: {exc}")
    return UpstreamFatal(f"Gmail API error {status}: {exc}")


class GmailMailApi:
    """MailApi over the Gmail v1 REST API.

    The discovery client is not thread-safe, so each thread builds its own
    service from *service_factory*.
    """

    def __init__(self, service_factory: Callable[[], Any], user_id: str = "me") -> None:
        self._factory = service_factory
        self._user_id = user_id
        self._local = threading.local()

    @classmethod
    def from_token_file(cls, token_file: Path | str) -> GmailMailApi:
        """Build from an authorized-user token JSON (refresh token included)."""
        path = Path(token_file).expanduser()
        if not path.exists():
            raise NotFoundError(f"Gmail token file not found: {path}")
        creds = Credentials.from_authorized_user_file(str(path), [GMAIL_READONLY_SCOPE])
        return cls(lambda: build("gmail", "v1", credentials=creds, cache_discovery=False))

    @property
    def _service(self) -> Any:
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._factory()
            self._local.service = service
        return service

    def _execute(self, request: Any) -> dict[str, Any]:
        try:
            return request.execute()
        except HttpError as exc:
            raise _map_http_error(exc) from exc

    def list_page(
        self,
        *,
        max_results: int,
        page_token: str | None = None,
        query: str | None = None,
        label_ids: list[str] | None = None,
    ) -> MailPage:
        kwargs: dict[str, Any] = {"userId": self._user_id, "maxResults": max_results}
        if page_token:
            kwargs["pageToken"] = page_token
        if query:
            kwargs["q"] = query
        if label_ids:
            kwargs["labelIds"] = label_ids
        data = self._execute(self._service.users().messages().list(**kwargs))
        return MailPage(
            summaries=[
                MailSummary(id=m["id"], thread_id=m.get("threadId", ""))
                for m in data.get("messages") or []
            ],
            next_page_token=data.get("nextPageToken"),
            result_size_estimate=int(data.get("resultSizeEstimate") or 0),
        )

    def get_message(self, message_id: str) -> RawMessage:
        data = self._execute(
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
        )
        attachments: list[AttachmentPayload] = []
        for part in collect_attachment_parts(data.get("payload")):
            body = part.get("body") or {}
            if body.get("data"):
                raw = decode_base64url(body["data"])
            else:
                try:
                    raw = self.get_attachment_bytes(data["id"], body["attachmentId"])
                except (UpstreamFatal, NotFoundError) as exc:
                    logger.warning(
                        "Skipping attachment %r of %s: %s", part.get("filename"), message_id, exc
                    )
                    continue
            attachments.append(
                AttachmentPayload(
                    filename=part.get("filename", ""),
                    mime_type=part.get("mimeType", ""),
                    data=raw,
                )
            )
        return parse_gmail_message(data, tuple(attachments))

    def get_preview(self, message_id: str) -> MessagePreview:
        data = self._execute(
            self._service.users()
            .messages()
            .get(
                userId=self._user_id,
                id=message_id,
                format="metadata",
                metadataHeaders=["Subject", "From", "Date"],
            )
        )
        headers = (data.get("payload") or {}).get("headers") or []
        return MessagePreview(
            id=data.get("id", message_id),
            thread_id=data.get("threadId", ""),
            snippet=data.get("snippet", ""),
            subject=get_header(headers, "Subject"),
            sender=get_header(headers, "From"),
            date=get_header(headers, "Date"),
        )

    def get_attachment_bytes(self, message_id: str, attachment_id: str) -> bytes:
        data = self._execute(
            self._service.users()
            .messages()
            .attachments()
            .get(userId=self._user_id, messageId=message_id, id=attachment_id)
        )
        return decode_base64url(data.get("data"))
