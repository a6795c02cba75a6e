"""siteindex.projector — Keeps adjacency records in lockstep with their source.

The store has no secondary indexes, foreign keys or unique constraints, so
every derived record (category cards, code/slug pointers) is written by
hand. The projector is the only writer of those records:

    save(scope, entity, previous)    source + projections
    project(scope, entity, previous) projections only (reproject)
    remove(scope, entity)            source + every projection it implies
    project_many(scope, entities)    bulk category rewrite, batch by batch
    query_adjacency(scope, prefix)   read side, sorted by sortOrder

Atomicity: unique-key pointers and their source entity are written in one
single-scope transaction. Every pointer put or delete is conditional on the
key being unclaimed or already ours. When a previous version is given the
source write is also conditional on the stored unique keys still matching
it, so two writers racing from the same snapshot cannot both commit and a
pointer the winner installed is never orphaned by the loser.
Category cards go through BatchWriteItem with at-least-once semantics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from siteindex import config
from siteindex.collector import collect_all
from siteindex.errors import Conflict, NotFound, SiteIndexError, ValidationError
from siteindex.indexes import DEFAULT_REGISTRY, AdjacencyIndex, UniqueKeyIndex
from siteindex.keyspace import catprod_prefix, entity_key, item_key
from siteindex.store import DeleteOp, KeyValueStore, PutOp

__all__ = [
    "AdjacencyProjector",
    "BatchFailure",
    "BulkResult",
    "ProjectionPlan",
    "sort_by_sort_order",
]

logger = logging.getLogger(__name__)

_CLAIM_CONDITION = "attribute_not_exists(SK) OR #owner = :owner"


@dataclass
class ProjectionPlan:
    """Minimal writes that take the projections from ``previous`` to ``entity``."""

    unique_puts: List[Dict[str, Any]] = field(default_factory=list)
    unique_deletes: List[str] = field(default_factory=list)
    claims: Dict[str, UniqueKeyIndex] = field(default_factory=dict)
    owners: Dict[str, UniqueKeyIndex] = field(default_factory=dict)
    puts: List[Dict[str, Any]] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.unique_puts or self.unique_deletes or self.puts or self.deletes)


@dataclass
class BatchFailure:
    batch: int
    keys: List[str]
    error: str


@dataclass
class BulkResult:
    written: int = 0
    batches: int = 0
    failed: List[BatchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _sort_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def sort_by_sort_order(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(items, key=lambda i: (_sort_number(i.get("sortOrder")), str(i.get("SK", ""))))


def _kind(entity: Mapping[str, Any]) -> str:
    kind = str(entity.get("Type") or "").strip()
    if not kind:
        raise ValidationError("entity requires a 'Type'")
    return kind


def _chunks(seq: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(seq), size):
        yield seq[start:start + size]


class AdjacencyProjector:
    def __init__(
        self,
        store: KeyValueStore,
        registry: Optional[Mapping[str, Sequence[AdjacencyIndex]]] = None,
    ):
        self.store = store
        self.registry = dict(DEFAULT_REGISTRY if registry is None else registry)

    # -- planning ---------------------------------------------------------

    def indexes_for(self, kind: str) -> Sequence[AdjacencyIndex]:
        return self.registry.get(kind, ())

    def plan(
        self,
        scope: str,
        entity: Mapping[str, Any],
        previous: Optional[Mapping[str, Any]] = None,
    ) -> ProjectionPlan:
        kind = _kind(entity)
        if previous is not None:
            if _kind(previous) != kind or str(previous.get("id")) != str(entity.get("id")):
                raise ValidationError("previous version must be the same entity")

        plan = ProjectionPlan()
        for index in self.indexes_for(kind):
            want = index.desired(scope, entity)
            had = index.desired(scope, previous) if previous is not None else {}
            changed = [item for sk, item in want.items() if had.get(sk) != item]
            stale = [sk for sk in had if sk not in want]
            if index.unique:
                plan.unique_puts.extend(changed)
                plan.unique_deletes.extend(stale)
                for sk in list(want) + stale:
                    plan.owners[sk] = index
                for sk in want:
                    if sk not in had:
                        plan.claims[sk] = index
            else:
                plan.puts.extend(changed)
                plan.deletes.extend(stale)
        return plan

    def check_unique(self, scope: str, entity: Mapping[str, Any], plan: ProjectionPlan) -> None:
        """Raise Conflict if any newly claimed key belongs to another entity."""
        entity_id = str(entity.get("id"))
        for sk, index in plan.claims.items():
            existing = self.store.get(scope, sk)
            if existing and index.owner_of(existing) != entity_id:
                raise Conflict(
                    f"{index.pointer_kind} '{sk.split('#', 1)[1]}' already exists",
                    data={"key": sk, "owner": index.owner_of(existing)},
                )

    # -- write path -------------------------------------------------------

    def _unique_ops(self, scope: str, entity_id: str, plan: ProjectionPlan) -> List[Any]:
        def owned(index: UniqueKeyIndex) -> Dict[str, Any]:
            return {
                "condition": _CLAIM_CONDITION,
                "names": {"#owner": index.owner_attr},
                "values": {":owner": entity_id},
            }

        ops: List[Any] = [
            DeleteOp(item_key(scope, sk), **owned(plan.owners[sk])) for sk in plan.unique_deletes
        ]
        ops.extend(PutOp(item, **owned(plan.owners[item["SK"]])) for item in plan.unique_puts)
        return ops

    def _unique_guard(self, kind: str, snapshot: Mapping[str, Any]) -> Dict[str, Any]:
        """Condition pinning the stored source's unique keys to ``snapshot``."""
        clauses: List[str] = []
        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        for number, index in enumerate(ix for ix in self.indexes_for(kind) if ix.unique):
            names[f"#key{number}"] = index.key_attr
            values[f":key{number}"] = snapshot.get(index.key_attr)
            clauses.append(f"#key{number} = :key{number}")
        if not clauses:
            return {}
        return {"condition": " AND ".join(clauses), "names": names, "values": values}

    def _write_cards(self, scope: str, plan: ProjectionPlan) -> None:
        # Deletes and puts never share a key, so they can share a batch.
        requests = [("delete", sk) for sk in plan.deletes] + [("put", item) for item in plan.puts]
        for chunk in _chunks(requests, config.BATCH_WRITE_SIZE):
            self.store.write_batch(
                puts=[r for op, r in chunk if op == "put"],
                deletes=[item_key(scope, r) for op, r in chunk if op == "delete"],
            )

    def source_item(self, scope: str, entity: Mapping[str, Any]) -> Dict[str, Any]:
        kind = _kind(entity)
        return {**entity, "PK": scope, "SK": entity_key(kind, str(entity.get("id") or ""))}

    def project(
        self,
        scope: str,
        entity: Mapping[str, Any],
        previous: Optional[Mapping[str, Any]] = None,
    ) -> ProjectionPlan:
        """Bring the projections of ``entity`` up to date (source untouched)."""
        return self._apply(scope, entity, previous, source=None)

    reproject = project

    def save(
        self,
        scope: str,
        entity: Mapping[str, Any],
        previous: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Write the source entity and its projections; returns the stored item."""
        source = self.source_item(scope, entity)
        self._apply(scope, entity, previous, source=source)
        return source

    def _apply(
        self,
        scope: str,
        entity: Mapping[str, Any],
        previous: Optional[Mapping[str, Any]],
        source: Optional[Dict[str, Any]],
    ) -> ProjectionPlan:
        plan = self.plan(scope, entity, previous)
        self.check_unique(scope, entity, plan)

        unique_ops = self._unique_ops(scope, str(entity.get("id")), plan)
        if unique_ops:
            ops: List[Any] = []
            if source is not None:
                guard = self._unique_guard(_kind(entity), previous) if previous is not None else {}
                ops.append(PutOp(source, **guard))
            try:
                self.store.transact_write(ops + unique_ops)
            except Conflict:
                logger.info("unique key write lost for %s %s in %s", _kind(entity), entity.get("id"), scope)
                raise Conflict("Unique key was changed concurrently; reload and retry the request") from None
        elif source is not None:
            self.store.put(source)

        self._write_cards(scope, plan)
        return plan

    # -- delete path ------------------------------------------------------

    def remove(self, scope: str, entity: Mapping[str, Any]) -> None:
        """Delete the source entity and every projection its attributes imply."""
        kind = _kind(entity)
        source_key = item_key(scope, entity_key(kind, str(entity.get("id") or "")))
        plan = ProjectionPlan()
        card_keys: List[str] = []
        for index in self.indexes_for(kind):
            keys = index.delete_set(scope, entity)
            if index.unique:
                plan.unique_deletes.extend(keys)
                plan.owners.update((sk, index) for sk in keys)
            else:
                card_keys.extend(keys)

        if plan.unique_deletes:
            ops = [DeleteOp(source_key, **self._unique_guard(kind, entity))]
            ops.extend(self._unique_ops(scope, str(entity.get("id")), plan))
            try:
                self.store.transact_write(ops)
            except Conflict:
                logger.info("unique key delete lost for %s %s in %s", kind, entity.get("id"), scope)
                raise Conflict("Unique key was changed concurrently; reload and retry the request") from None
        else:
            self.store.delete(source_key["PK"], source_key["SK"])

        for chunk in _chunks(card_keys, config.BATCH_WRITE_SIZE):
            self.store.write_batch(deletes=[item_key(scope, sk) for sk in chunk])

    # -- bulk path --------------------------------------------------------

    def project_many(
        self,
        scope: str,
        entities: Sequence[Mapping[str, Any]],
        previous_by_id: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> BulkResult:
        """Rewrite non-unique projections for many entities.

        Requests are grouped into BATCH_WRITE_SIZE batches. Each batch is
        its own retry unit: a failing batch is recorded and skipped, batches
        already written stay written.
        """
        previous_by_id = previous_by_id or {}
        requests: List[tuple] = []
        seen: Dict[str, None] = {}
        for entity in entities:
            entity_id = str(entity.get("id") or "")
            if entity_id in seen:
                raise ValidationError(f"entity '{entity_id}' appears more than once")
            seen[entity_id] = None
            if any(index.unique for index in self.indexes_for(_kind(entity))):
                raise ValidationError(f"{_kind(entity)} has unique keys; use save() per entity")
            plan = self.plan(scope, entity, previous_by_id.get(entity_id))
            requests.extend(("delete", sk) for sk in plan.deletes)
            requests.extend(("put", item) for item in plan.puts)

        result = BulkResult()
        for number, chunk in enumerate(_chunks(requests, config.BATCH_WRITE_SIZE)):
            result.batches += 1
            try:
                self.store.write_batch(
                    puts=[r for op, r in chunk if op == "put"],
                    deletes=[item_key(scope, r) for op, r in chunk if op == "delete"],
                )
            except SiteIndexError as exc:
                keys = [r if op == "delete" else r["SK"] for op, r in chunk]
                logger.warning("bulk projection batch %d failed in %s: %s", number, scope, exc)
                result.failed.append(BatchFailure(batch=number, keys=keys, error=str(exc)))
                continue
            result.written += len(chunk)
        return result

    # -- read path --------------------------------------------------------

    def query_adjacency(self, scope: str, parent_prefix: str) -> List[Dict[str, Any]]:
        """Projection records under ``parent_prefix``, ordered by sortOrder."""
        return sort_by_sort_order(collect_all(self.store, scope, parent_prefix))

    def query_category_products(self, scope: str, category_id: str) -> List[Dict[str, Any]]:
        return self.query_adjacency(scope, catprod_prefix(category_id))

    def lookup_unique(self, scope: str, index: UniqueKeyIndex, key: str) -> Dict[str, Any]:
        """Resolve a business key (coupon code, form slug) to its pointer."""
        sk = index.pointer_key({index.key_attr: key})
        pointer = self.store.get(scope, sk)
        if not pointer:
            raise NotFound(f"{index.pointer_kind} '{key}' not found")
        return pointer
