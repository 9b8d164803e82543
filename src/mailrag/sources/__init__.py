"""Mail sources: Gmail REST, bulk lister, RFC 822 / mbox, IMAP live listener."""

from mailrag.sources.bulk import BulkMailLister, ListOptions, MailListing
from mailrag.sources.listener import ListenerState, LiveMailListener
from mailrag.sources.rfc822 import iter_mbox, parse_rfc822

__all__ = [
    "BulkMailLister",
    "ListOptions",
    "ListenerState",
    "LiveMailListener",
    "MailListing",
    "iter_mbox",
    "parse_rfc822",
]
