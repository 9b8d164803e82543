"""RFC 822 parsing for IMAP fetches and local mbox archives."""

from __future__ import annotations

import email
import logging
import mailbox
import secrets
import time
from collections.abc import Iterator
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from pathlib import Path

from mailrag.ingest.attachments import is_rag_mime_type
from mailrag.models import AttachmentPayload, RawMessage

logger = logging.getLogger(__name__)


def generated_message_id() -> str:
    """Stand-in id for messages without a Message-ID header."""
    return f"imap_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def _iso_date(value: str | None) -> str:
    """RFC 2822 date → ISO 8601 (UTC); absent or unparseable → now."""
    if value:
        try:
            parsed = parsedate_to_datetime(str(value))
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _body_text(message: EmailMessage) -> str:
    part = message.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _attachments(message: EmailMessage) -> tuple[AttachmentPayload, ...]:
    found: list[AttachmentPayload] = []
    for part in message.iter_attachments():
        mime_type = part.get_content_type()
        filename = part.get_filename() or ""
        if not filename or not is_rag_mime_type(mime_type):
            continue
        data = part.get_payload(decode=True) or b""
        if data:
            found.append(AttachmentPayload(filename=filename, mime_type=mime_type, data=data))
    return tuple(found)


def message_to_raw(message: EmailMessage, source: str = "imap") -> RawMessage:
    """Map a parsed ``email`` message onto RawMessage. Plain text body preferred."""
    return RawMessage(
        message_id=str(message.get("Message-ID") or "").strip() or generated_message_id(),
        subject=str(message.get("Subject") or ""),
        sender=str(message.get("From") or ""),
        date=_iso_date(message.get("Date")),
        body=_body_text(message),
        in_reply_to=str(message.get("In-Reply-To") or "").strip(),
        source=source,
        attachments=_attachments(message),
    )


def parse_rfc822(data: bytes, source: str = "imap") -> RawMessage:
    message = email.message_from_bytes(data, policy=policy.default)
    return message_to_raw(message, source=source)


def iter_mbox(path: Path | str) -> Iterator[RawMessage]:
    """Yield RawMessages from an mbox file; unparseable entries are logged and skipped."""
    box = mailbox.mbox(
        str(path),
        factory=lambda f: email.message_from_binary_file(f, policy=policy.default),
        create=False,
    )
    try:
        for key in box.iterkeys():
            try:
                message = box[key]
            except (ValueError, LookupError, UnicodeError) as exc:
                logger.warning("Skipping unreadable mbox entry %s: %s", key, exc)
                continue
            yield message_to_raw(message, source="mbox")
    finally:
        box.close()
