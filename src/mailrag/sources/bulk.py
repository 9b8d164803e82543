"""Pull-based bulk lister: paged listing plus bounded batch detail fetch."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from mailrag.capabilities import MailApi, MailSummary, MessagePreview
from mailrag.models import RawMessage

logger = logging.getLogger(__name__)

MAX_RESULTS_CAP = 100


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


@dataclass
class ListOptions:
    """Normalised listing options. Build with :meth:`from_request`."""

    max_results: int = 25
    fetch_all: bool = False
    max_total: int = 200
    query: str | None = None
    label_ids: list[str] | None = None
    page_token: str | None = None

    @classmethod
    def from_request(
        cls,
        *,
        all: Any = False,
        max_results: Any = None,
        max_total: Any = None,
        label_filter: Any = None,
        query: str | None = None,
        page_token: str | None = None,
        default_max_results: int = 25,
        default_max_total: int = 200,
    ) -> ListOptions:
        """Clamp max_results to 1–100 and max_total to ≥ 1.

        Missing or non-numeric values (and 0) fall back to the defaults.
        ``label_filter`` is a comma-separated string or a list.
        """
        per_page = _as_int(max_results) or default_max_results
        total = _as_int(max_total) or default_max_total
        if isinstance(label_filter, str):
            labels = [part.strip() for part in label_filter.split(",") if part.strip()]
        else:
            labels = [str(part) for part in label_filter or [] if part]
        return cls(
            max_results=min(max(per_page, 1), MAX_RESULTS_CAP),
            fetch_all=_as_bool(all),
            max_total=max(total, 1),
            query=query or None,
            label_ids=labels or None,
            page_token=page_token or None,
        )


@dataclass
class MailListing:
    summaries: list[MailSummary] = field(default_factory=list)
    next_page_token: str | None = None
    result_size_estimate: int = 0


class BulkMailLister:
    """Pages through a MailApi and fetches full details in sub-batches.

    Args:
        api: The paginated mail-listing capability.
        detail_batch_size: Messages fetched concurrently per sub-batch.
    """

    def __init__(self, api: MailApi, detail_batch_size: int = 10) -> None:
        self._api = api
        self._batch_size = max(1, detail_batch_size)

    def list(self, options: ListOptions) -> MailListing:
        """Return one page, or with ``fetch_all`` keep paging up to ``max_total``."""
        collected: list[MailSummary] = []
        token = options.page_token
        while True:
            page = self._api.list_page(
                max_results=options.max_results,
                page_token=token,
                query=options.query,
                label_ids=options.label_ids,
            )
            collected.extend(page.summaries)
            token = page.next_page_token
            if not options.fetch_all:
                return MailListing(
                    summaries=page.summaries,
                    next_page_token=token,
                    result_size_estimate=page.result_size_estimate,
                )
            if not token or len(collected) >= options.max_total:
                break
        return MailListing(
            summaries=collected[: options.max_total],
            next_page_token=token,
            result_size_estimate=len(collected),
        )

    def fetch(self, options: ListOptions) -> list[RawMessage]:
        """List, truncate to ``max_total`` and fetch full detail, preserving order."""
        listing = self.list(options)
        summaries = listing.summaries[: options.max_total]
        return self._in_batches([s.id for s in summaries], self._api.get_message)

    def preview(self, options: ListOptions) -> tuple[list[MessagePreview], MailListing]:
        listing = self.list(options)
        previews = self._in_batches([s.id for s in listing.summaries], self._api.get_preview)
        return previews, listing

    def _in_batches(self, ids: list[str], fn: Any) -> list[Any]:
        results: list[Any] = []
        if not ids:
            return results
        with ThreadPoolExecutor(max_workers=self._batch_size) as pool:
            for start in range(0, len(ids), self._batch_size):
                batch = ids[start : start + self._batch_size]
                results.extend(pool.map(fn, batch))
        logger.debug("Fetched %d message details", len(results))
        return results
