"""siteindex.graph — Content link graph builder.

Builds ``(nodes, edges, orphans)`` for one tenant from the LATEST version
of every content node. Nothing is persisted; each call recomputes the graph
from a fresh scope scan.

Incoming links come from two places:
    * implicit links: the system paths ("/", "/contact") and the tenant's
      nav/footer links. They count towards a node's incoming total but
      produce no edge.
    * authored links found by walking each node's block tree, one edge per
      distinct (source, target) pair, self-loops excluded.

A node whose block tree cannot be walked is logged and contributes no
edges; the rest of the graph is still built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from siteindex import config
from siteindex.blocks import LinkCollector, parse_blocks, slug_resolver
from siteindex.collector import collect_all
from siteindex.errors import PartialTraversalFailure, SiteIndexError
from siteindex.keyspace import LATEST, SEP, kind_prefix, tenant_scope
from siteindex.listing import published_from_records
from siteindex.slugs import normalize_slug
from siteindex.store import KeyValueStore
from siteindex.tenant_config import TenantConfig, load_tenant_config

__all__ = [
    "CONTENT_PROJECTION",
    "LinkGraph",
    "build_graph_from_records",
    "build_link_graph",
]

logger = logging.getLogger(__name__)

CONTENT_PROJECTION = ("SK", "nodeId", "title", "slug", "status", "blocks", "tags", "createdAt")


@dataclass
class LinkGraph:
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    edges: List[Dict[str, str]] = field(default_factory=list)
    orphans: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[PartialTraversalFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": self.nodes,
            "edges": self.edges,
            "orphans": self.orphans,
            "failures": [f.node_id for f in self.failures],
        }


def _latest_nodes(records: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """node id -> LATEST record with a normalized slug, in key order."""
    nodes: Dict[str, Dict[str, Any]] = {}
    for item in records:
        if not str(item.get("SK", "")).endswith(SEP + LATEST):
            continue
        node_id = item.get("nodeId")
        if not node_id:
            continue
        try:
            slug = normalize_slug(item.get("slug"))
        except SiteIndexError as exc:
            logger.warning("Skipping content node %s with unusable slug: %s", node_id, exc)
            continue
        if slug:
            nodes[str(node_id)] = {**item, "slug": slug}
    return nodes


def build_graph_from_records(
    records: Iterable[Dict[str, Any]],
    global_links: Sequence[str] = (),
) -> LinkGraph:
    node_map = _latest_nodes(records)
    slug_map = {item["slug"]: node_id for node_id, item in node_map.items()}
    resolve = slug_resolver(slug_map)
    published = published_from_records(node_map.values())

    graph = LinkGraph()
    incoming = {node_id: 0 for node_id in node_map}

    for href in [*global_links, *config.SYSTEM_LINK_PATHS]:
        try:
            target = resolve(href)
        except SiteIndexError:
            logger.warning("Ignoring malformed global link %r", href)
            continue
        if target:
            incoming[target] += 1

    for node_id, item in node_map.items():
        graph.nodes.append(
            {
                "id": node_id,
                "label": item.get("title"),
                "slug": item["slug"],
                "status": item.get("status"),
            }
        )
        collector = LinkCollector(node_id, resolve, published)
        try:
            collector.walk(parse_blocks(item.get("blocks")))
        except Exception as exc:
            failure = PartialTraversalFailure(node_id, str(exc))
            logger.warning("Graph processing failed for node %s: %s", node_id, exc)
            graph.failures.append(failure)
            continue

        for target in collector.targets:
            graph.edges.append({"id": f"{node_id}-{target}", "source": node_id, "target": target})
            incoming[target] += 1

    home_id = slug_map.get(config.HOME_PATH)
    graph.orphans = [
        {"id": n["id"], "title": n["label"], "slug": n["slug"]}
        for n in graph.nodes
        if n["id"] != home_id and incoming[n["id"]] == 0
    ]
    return graph


def build_link_graph(
    store: KeyValueStore,
    tenant_id: str,
    tenant_config: Optional[TenantConfig] = None,
) -> LinkGraph:
    """Scan the tenant's content once and build its link graph."""
    scope = tenant_scope(tenant_id)
    records = collect_all(store, scope, kind_prefix("Content") + SEP, CONTENT_PROJECTION)
    if tenant_config is None:
        tenant_config = load_tenant_config(store, tenant_id)
    graph = build_graph_from_records(records, tenant_config.global_links)
    logger.info(
        "Built link graph for tenant %s: %d nodes, %d edges, %d orphans, %d failures",
        tenant_id, len(graph.nodes), len(graph.edges), len(graph.orphans), len(graph.failures),
    )
    return graph
