"""IMAP feed for the live listener (stdlib imaplib over TLS).

New mail is detected by polling ``NOOP`` and watching the folder's EXISTS
count. Recent messages are searched with Gmail's ``X-GM-RAW`` extension so
only inbox and sent mail is fetched; servers that reject the extension fall
back to the last N sequence numbers.
"""

from __future__ import annotations

import imaplib
import logging
import re
import threading

from mailrag.models import RawMessage
from mailrag.sources.rfc822 import parse_rfc822

logger = logging.getLogger(__name__)

_EXISTS_RE = re.compile(rb"(\d+)")


class ImapMailFeed:
    """One authenticated IMAP connection to a single mailbox folder.

    Args:
        host / port: IMAP server (TLS).
        user / password: Login credentials (an app password for Gmail).
        folder: Folder to watch, selected read-only.
        label_query: ``X-GM-RAW`` search restricting fetches to inbox + sent.
        poll_interval: Seconds between ``NOOP`` polls.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        *,
        folder: str = "[Gmail]/All Mail",
        label_query: str = "label:INBOX OR label:SENT",
        poll_interval: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self._password = password
        self.folder = folder
        self.label_query = label_query
        self.poll_interval = poll_interval
        self._client: imaplib.IMAP4_SSL | None = None
        self._exists = 0

    def connect(self) -> None:
        client = imaplib.IMAP4_SSL(self.host, self.port)
        client.login(self.user, self._password)
        status, data = client.select(_quote(self.folder), readonly=True)
        if status != "OK":
            client.logout()
            raise imaplib.IMAP4.error(f"Unable to select mailbox '{self.folder}'")
        self._client = client
        self._exists = _parse_count(data)
        logger.info("IMAP connected to %s as %s (%d messages)", self.folder, self.user, self._exists)

    def wait_for_new_mail(self, stop: threading.Event) -> int:
        """Block until the EXISTS count grows or *stop* is set.

        Returns:
            The number of newly arrived messages (0 when stopped).
        """
        client = self._require_client()
        while not stop.is_set():
            status, _ = client.noop()
            if status != "OK":
                raise imaplib.IMAP4.abort("NOOP failed")
            responses = client.untagged_responses.pop("EXISTS", None)
            if not responses:
                stop.wait(self.poll_interval)
                continue
            exists = _parse_count(responses[-1:])
            if exists > self._exists:
                arrived = exists - self._exists
                self._exists = exists
                return arrived
            self._exists = exists
            stop.wait(self.poll_interval)
        return 0

    def fetch_recent(self, count: int = 1) -> list[RawMessage]:
        """Fetch and parse the latest *count* inbox/sent messages, oldest first."""
        client = self._require_client()
        count = max(1, count)
        try:
            status, data = client.uid("SEARCH", "X-GM-RAW", _quote(self.label_query))
        except imaplib.IMAP4.error as exc:
            logger.warning("IMAP label search failed, using sequence fallback: %s", exc)
            return self._fetch_last_sequences(count)
        if status != "OK":
            logger.warning("IMAP label search returned %s, using sequence fallback", status)
            return self._fetch_last_sequences(count)
        uids = data[0].split() if data and data[0] else []
        messages: list[RawMessage] = []
        for uid in uids[-count:]:
            status, fetched = client.uid("FETCH", uid, "(RFC822)")
            messages.extend(_parse_fetch(status, fetched))
        return messages

    def _fetch_last_sequences(self, count: int) -> list[RawMessage]:
        client = self._require_client()
        if self._exists < 1:
            return []
        first = max(1, self._exists - count + 1)
        status, fetched = client.fetch(f"{first}:{self._exists}", "(RFC822)")
        return _parse_fetch(status, fetched)

    def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.debug("IMAP logout failed: %s", exc)

    def _require_client(self) -> imaplib.IMAP4_SSL:
        if self._client is None:
            raise imaplib.IMAP4.abort("IMAP feed is not connected")
        return self._client


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _parse_count(data: list) -> int:
    for item in data or []:
        if isinstance(item, bytes):
            match = _EXISTS_RE.search(item)
            if match:
                return int(match.group(1))
    return 0


def _parse_fetch(status: str, fetched: list) -> list[RawMessage]:
    if status != "OK" or not fetched:
        return []
    messages: list[RawMessage] = []
    for item in fetched:
        if isinstance(item, tuple) and len(item) >= 2 and item[1]:
            messages.append(parse_rfc822(item[1], source="imap"))
    return messages
