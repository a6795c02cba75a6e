"""siteindex.collector — Paginated scope collector.

Turns the store's page-at-a-time prefix query into one logical sequence.
The continuation cursor is explicit state: ``collect_page`` takes and
returns it, and ``collect_scope`` is just the loop over ``collect_page``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from siteindex import config
from siteindex.errors import ScopeLimitExceeded
from siteindex.store import KeyValueStore, Page

__all__ = ["collect_all", "collect_page", "collect_scope"]

logger = logging.getLogger(__name__)


def collect_page(
    store: KeyValueStore,
    scope: str,
    prefix: str,
    cursor: Optional[Dict[str, Any]] = None,
    projection: Optional[Sequence[str]] = None,
) -> Page:
    return store.query_prefix(scope, prefix, cursor=cursor, projection=projection)


def collect_scope(
    store: KeyValueStore,
    scope: str,
    prefix: str,
    projection: Optional[Sequence[str]] = None,
    *,
    max_pages: Optional[int] = None,
) -> Iterator[Dict[str, Any]]:
    """Yield every record under ``scope`` whose sort key starts with ``prefix``.

    Not restartable: a new call scans again from the first page. Store
    errors propagate and end the iteration; ``ScopeLimitExceeded`` is raised
    if the store keeps returning cursors past ``max_pages``.
    """
    limit = max_pages if max_pages is not None else config.MAX_SCOPE_PAGES
    cursor: Optional[Dict[str, Any]] = None
    pages = 0
    while True:
        if pages >= limit:
            logger.error("scope %s prefix %s still paginating after %d pages", scope, prefix, pages)
            raise ScopeLimitExceeded(
                f"Collection of '{prefix}' in {scope} exceeded {limit} pages",
                data={"scope": scope, "prefix": prefix, "pages": pages},
            )
        page = collect_page(store, scope, prefix, cursor=cursor, projection=projection)
        pages += 1
        yield from page.items
        cursor = page.cursor
        if not cursor:
            return


def collect_all(
    store: KeyValueStore,
    scope: str,
    prefix: str,
    projection: Optional[Sequence[str]] = None,
    *,
    max_pages: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Materialized ``collect_scope``: either every record or an exception."""
    return list(collect_scope(store, scope, prefix, projection, max_pages=max_pages))
