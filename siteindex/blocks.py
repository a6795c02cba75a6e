"""siteindex.blocks — Block tree model and link-extracting visitor.

Content bodies are Tiptap-style JSON trees::

    {"type": "paragraph", "content": [
        {"type": "text", "text": "see", "marks": [{"type": "link", "attrs": {"href": "/about"}}]}
    ]}
    {"type": "pricing", "attrs": {"plans": [{"buttonLink": "/checkout"}]}}
    {"type": "postGrid", "attrs": {"filterTag": "news", "limit": 3}}

Only one block kind needs special handling (``postGrid``, whose targets are
computed); every other kind shares the default hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from siteindex import config
from siteindex.errors import ValidationError
from siteindex.listing import PublishedNode, resolve_post_grid
from siteindex.slugs import normalize_slug

__all__ = [
    "BLOCK_KINDS",
    "Block",
    "BlockVisitor",
    "LinkCollector",
    "POST_GRID",
    "parse_block",
    "parse_blocks",
    "slug_resolver",
]

POST_GRID = "postGrid"
DEFAULT = "default"
BLOCK_KINDS = (POST_GRID, DEFAULT)


@dataclass(frozen=True)
class Block:
    """One node of the tree. ``children`` stays raw until the walk reaches it."""

    type: str
    attrs: Mapping[str, Any] = field(default_factory=dict)
    marks: Tuple[Mapping[str, Any], ...] = ()
    children: Tuple[Any, ...] = ()

    @property
    def kind(self) -> str:
        return POST_GRID if self.type == POST_GRID else DEFAULT


def parse_block(raw: Any) -> Block:
    """Validate and wrap one raw block (children are not parsed)."""
    if not isinstance(raw, dict):
        raise ValidationError(f"block must be an object, got {type(raw).__name__}")
    attrs = raw.get("attrs") or {}
    if not isinstance(attrs, dict):
        raise ValidationError("block attrs must be an object")
    marks = raw.get("marks") or []
    if not isinstance(marks, list) or not all(isinstance(m, dict) for m in marks):
        raise ValidationError("block marks must be a list of objects")
    content = raw.get("content") or []
    if not isinstance(content, list):
        raise ValidationError("block content must be a list")
    return Block(
        type=str(raw.get("type") or ""),
        attrs=attrs,
        marks=tuple(marks),
        children=tuple(content),
    )


def parse_blocks(raw: Any) -> List[Block]:
    """Top-level blocks of a content record. Missing blocks are empty."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("blocks must be a list")
    return [parse_block(item) for item in raw]


class BlockVisitor:
    """Depth-first pre-order walk with one hook per block kind.

    The walk uses an explicit stack so nesting depth is not bounded by the
    interpreter's recursion limit. Subclasses override ``visit_default`` and
    ``visit_post_grid``; children are always visited afterwards.
    """

    def walk(self, blocks: Iterable[Block]) -> None:
        stack: List[Block] = list(reversed(list(blocks)))
        while stack:
            block = stack.pop()
            if block.kind == POST_GRID:
                self.visit_post_grid(block)
            else:
                self.visit_default(block)
            stack.extend(parse_block(child) for child in reversed(block.children))

    def visit_default(self, block: Block) -> None:
        pass

    def visit_post_grid(self, block: Block) -> None:
        self.visit_default(block)


class LinkCollector(BlockVisitor):
    """Collect the distinct internal node ids one content node links to."""

    def __init__(
        self,
        node_id: str,
        resolve: Callable[[Any], Optional[str]],
        published: Sequence[PublishedNode] = (),
    ):
        self.node_id = node_id
        self._resolve = resolve
        self._published = published
        self._targets: Dict[str, None] = {}

    @property
    def targets(self) -> List[str]:
        """Targets in first-seen order, self-links excluded."""
        return [t for t in self._targets if t != self.node_id]

    def _add_href(self, href: Any) -> None:
        target = self._resolve(href)
        if target:
            self._targets[target] = None

    def visit_default(self, block: Block) -> None:
        for mark in block.marks:
            if mark.get("type") == "link":
                self._add_href((mark.get("attrs") or {}).get("href"))

        for attr in config.LINK_ATTRIBUTES:
            if block.attrs.get(attr):
                self._add_href(block.attrs[attr])

        for list_key in config.LINK_LIST_ATTRIBUTES:
            entries = block.attrs.get(list_key)
            if not isinstance(entries, list):
                continue
            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                for attr in config.LIST_ITEM_LINK_ATTRIBUTES:
                    if entry.get(attr):
                        self._add_href(entry[attr])

    def visit_post_grid(self, block: Block) -> None:
        self.visit_default(block)
        ids = resolve_post_grid(
            self._published,
            filter_tag=block.attrs.get("filterTag"),
            limit=block.attrs.get("limit"),
            exclude_id=self.node_id,
        )
        for target in ids:
            self._targets[target] = None


def slug_resolver(slug_map: Mapping[str, str]) -> Callable[[Any], Optional[str]]:
    """href -> node id through ``normalize_slug``; unknown paths give None."""

    def resolve(href: Any) -> Optional[str]:
        slug = normalize_slug(href)
        return slug_map.get(slug) if slug else None

    return resolve
