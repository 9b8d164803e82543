"""Push-style live listener: one reconnecting IMAP loop per mailbox.

State machine: DISCONNECTED → CONNECTING → LISTENING → DISCONNECTED, driven
by a single daemon thread. Connection loss is normal operation; the loop
waits ``reconnect_delay`` seconds and connects again until stopped.
"""

from __future__ import annotations

import enum
import imaplib
import logging
import threading
from collections.abc import Callable
from typing import Protocol

from mailrag.errors import MailragError
from mailrag.ingest.pipeline import IngestionPipeline
from mailrag.models import RawMessage

logger = logging.getLogger(__name__)


class MailFeed(Protocol):
    def connect(self) -> None: ...

    def wait_for_new_mail(self, stop: threading.Event) -> int: ...

    def fetch_recent(self, count: int = 1) -> list[RawMessage]: ...

    def close(self) -> None: ...


class ListenerState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LISTENING = "listening"


class LiveMailListener:
    """Feeds newly arrived mail one message at a time into the pipeline.

    Args:
        feed_factory: Builds a fresh, unconnected feed for each connection attempt.
        pipeline: Ingestion pipeline receiving each parsed message.
        mailbox_email: The mailbox's own address, for direction inference.
        namespace: Target namespace (pipeline default when None).
        fetch_count: Messages fetched per new-mail signal.
        reconnect_delay: Seconds to wait after a connection loss.
    """

    def __init__(
        self,
        feed_factory: Callable[[], MailFeed],
        pipeline: IngestionPipeline,
        mailbox_email: str = "",
        *,
        namespace: str | None = None,
        fetch_count: int = 1,
        reconnect_delay: float = 30.0,
    ) -> None:
        self._feed_factory = feed_factory
        self._pipeline = pipeline
        self._mailbox_email = mailbox_email
        self._namespace = namespace
        self._fetch_count = max(1, fetch_count)
        self._reconnect_delay = reconnect_delay
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._state = ListenerState.DISCONNECTED
        self.processed_count = 0
        self.connection_attempts = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    def start(self) -> None:
        """Start the background loop. A second call while running is a no-op."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run, name="mailrag-listener", daemon=True
            )
            self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def wait(self, timeout: float | None = None) -> None:
        """Block until the loop exits (after stop(), or forever)."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while not self._stop.is_set():
            self._state = ListenerState.CONNECTING
            self.connection_attempts += 1
            feed: MailFeed | None = None
            try:
                feed = self._feed_factory()
                feed.connect()
                self._state = ListenerState.LISTENING
                self._listen(feed)
            except (imaplib.IMAP4.error, OSError) as exc:
                logger.warning(
                    "Mail feed connection lost (%s); reconnecting in %.0fs",
                    exc,
                    self._reconnect_delay,
                )
            except Exception:
                logger.exception(
                    "Mail listener loop failed; reconnecting in %.0fs", self._reconnect_delay
                )
            finally:
                if feed is not None:
                    feed.close()
                self._state = ListenerState.DISCONNECTED
            self._stop.wait(self._reconnect_delay)

    def _listen(self, feed: MailFeed) -> None:
        while not self._stop.is_set():
            arrived = feed.wait_for_new_mail(self._stop)
            if not arrived:
                continue
            for message in feed.fetch_recent(self._fetch_count):
                self._process(message)

    def _process(self, message: RawMessage) -> None:
        try:
            result = self._pipeline.ingest(
                [message], mailbox_email=self._mailbox_email, namespace=self._namespace
            )
        except MailragError as exc:
            logger.warning("Failed to ingest live message %s: %s", message.message_id, exc)
            return
        except Exception:
            logger.exception("Failed to ingest live message %s", message.message_id)
            return
        self.processed_count += 1
        logger.info(
            "Processed new email: %s (%d synced)", message.subject, result.synced_count
        )
