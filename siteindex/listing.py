"""siteindex.listing — Dynamic list resolver for postGrid blocks.

A postGrid block stores a query, not links: "the newest N published pages,
optionally with tag T". The graph builder and the renderer must agree on
what that query returns, so both go through ``resolve_post_grid``.

Limit semantics:
    absent / None / ""  -> DEFAULT_LIST_LIMIT (6)
    N > 0               -> the N newest matches
    0                   -> every match
    negative            -> ValidationError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from siteindex import config
from siteindex.errors import ValidationError
from siteindex.serialization import _parse_timestamp

__all__ = [
    "PublishedNode",
    "parse_limit",
    "published_from_records",
    "render_listing",
    "resolve_post_grid",
    "sort_published",
]


@dataclass(frozen=True)
class PublishedNode:
    id: str
    tags: frozenset = field(default_factory=frozenset)
    created_at: float = 0.0


def parse_limit(raw: Any) -> Optional[int]:
    """Normalize a block's ``limit`` attribute; None means unbounded."""
    if raw is None or raw == "":
        return config.DEFAULT_LIST_LIMIT
    if isinstance(raw, bool):
        raise ValidationError(f"limit must be an integer, got {raw!r}")
    if isinstance(raw, float) and not raw.is_integer():
        raise ValidationError(f"limit must be an integer, got {raw!r}")
    try:
        value = int(str(raw).strip()) if isinstance(raw, str) else int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"limit must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValidationError(f"limit must be >= 0, got {value}")
    return None if value == 0 else value


def sort_published(nodes: Iterable[PublishedNode]) -> List[PublishedNode]:
    """Newest first; equal timestamps fall back to id for a stable order."""
    by_id = sorted(nodes, key=lambda n: n.id)
    return sorted(by_id, key=lambda n: n.created_at, reverse=True)


def published_from_records(records: Iterable[Dict[str, Any]]) -> List[PublishedNode]:
    """Sorted PublishedNode list from LATEST content records."""
    nodes = []
    for record in records:
        if record.get("status") != "Published":
            continue
        node_id = record.get("nodeId")
        if not node_id:
            continue
        tags = record.get("tags") or []
        nodes.append(
            PublishedNode(
                id=str(node_id),
                tags=frozenset(t for t in tags if isinstance(t, str)),
                created_at=_parse_timestamp(record.get("createdAt")),
            )
        )
    return sort_published(nodes)


def resolve_post_grid(
    published: Sequence[PublishedNode],
    filter_tag: Any = None,
    limit: Any = None,
    exclude_id: Optional[str] = None,
) -> List[str]:
    """Node ids a postGrid block lists, newest first.

    ``published`` must already be newest-first. The node being rendered or
    traversed (``exclude_id``) is never part of the result.
    """
    max_items = parse_limit(limit)
    tag = filter_tag if isinstance(filter_tag, str) else ""

    matches = [n for n in published if not tag or tag in n.tags]
    if max_items is not None:
        matches = matches[:max_items]
    return [n.id for n in matches if n.id != exclude_id]


def render_listing(
    records: Iterable[Dict[str, Any]],
    filter_tag: Any = None,
    limit: Any = None,
    exclude_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Card payloads for a postGrid on the rendering side."""
    latest = [r for r in records if str(r.get("SK", "")).endswith("#LATEST") or "SK" not in r]
    by_id = {str(r.get("nodeId")): r for r in latest if r.get("nodeId")}
    ids = resolve_post_grid(published_from_records(latest), filter_tag, limit, exclude_id)
    cards = []
    for node_id in ids:
        record = by_id[node_id]
        cards.append(
            {
                "id": node_id,
                "title": record.get("title"),
                "slug": record.get("slug"),
                "featuredImage": record.get("featuredImage"),
                "seoDescription": record.get("seoDescription"),
                "tags": record.get("tags") or [],
                "createdAt": record.get("createdAt"),
            }
        )
    return cards
