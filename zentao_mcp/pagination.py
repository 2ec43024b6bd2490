"""
Paged retrieval of ZenTao list endpoints.

ZenTao list responses look like ``{"page": 1, "total": 42, "limit": 20,
"bugs": [...]}``, but the pagination metadata is not reliable: ``total`` may be
missing and the page size actually used may differ from the one requested.
``iter_pages`` therefore stops on the first of:

1. the collector's ``max_items`` cap (handled in ``fetch_all``),
2. ``page * page_size >= total`` when upstream reports a total,
3. a page shorter than requested when it does not,

with an empty page and the ``MAX_PAGES`` ceiling as hard stops.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

from .client import to_int
from .errors import UpstreamError

logger = logging.getLogger(__name__)

# Hard ceiling on requests per scan; a total-less upstream that keeps
# returning full pages would otherwise never terminate
MAX_PAGES = 1000


@dataclass
class Page:
    number: int
    items: list
    total: Optional[int]


@dataclass
class FetchResult:
    items: List[dict] = field(default_factory=list)
    total: Optional[int] = None


def iter_pages(fetch_page: Callable[[int, int], dict], items_key: str, page_size: int,
               max_pages: int = MAX_PAGES) -> Iterator[Page]:
    """
    Lazily yield pages from ``fetch_page(page, limit)``.

    The generator is finite under the termination rules above and is not
    restartable. An ``error`` field in any page raises UpstreamError, so a
    consumer never sees a partial scan as if it were complete.
    """
    page = 1
    while True:
        if page > max_pages:
            raise UpstreamError(
                f"Pagination did not terminate after {max_pages} pages of '{items_key}'")

        payload = fetch_page(page, page_size)
        if not isinstance(payload, dict):
            raise UpstreamError(f"Unexpected page format for '{items_key}' page {page}", payload)
        if payload.get("error"):
            raise UpstreamError(str(payload["error"]), payload)

        items = payload.get(items_key) or []
        if not isinstance(items, list):
            raise UpstreamError(
                f"Unexpected '{items_key}' format on page {page}: {type(items).__name__}", payload)
        total = to_int(payload.get("total"), None)
        logger.debug(f"Fetched {items_key} page {page}: {len(items)} items (total={total})")

        yield Page(number=page, items=items, total=total)

        if not items:
            return
        if total is not None:
            reported_size = to_int(payload.get("limit"), page_size) or page_size
            if page * reported_size >= total:
                return
        elif len(items) < page_size:
            return

        page += 1


def fetch_all(fetch_page: Callable[[int, int], dict], items_key: str, page_size: int,
              max_items: int = 0, max_pages: int = MAX_PAGES) -> FetchResult:
    """
    Collect every item across pages, stopping early at ``max_items`` (when > 0).

    Returns the collected items and the last total reported by upstream.
    """
    result = FetchResult()
    for page in iter_pages(fetch_page, items_key, page_size, max_pages=max_pages):
        if page.total is not None:
            result.total = page.total
        result.items.extend(page.items)
        if max_items > 0 and len(result.items) >= max_items:
            del result.items[max_items:]
            break
    return result
