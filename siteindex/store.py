"""siteindex.store — Key-value store primitives over one DynamoDB table.

Only five primitives are offered and everything else in the package is
built on them:

    get(scope, sk)                          exact read
    put(item, condition=...)                idempotent overwrite
    delete(scope, sk)                       idempotent delete
    query_prefix(scope, prefix, cursor)     one page of a begins_with scan
    transact_write([PutOp | DeleteOp])      all-or-nothing, single scope

plus ``write_batch`` for the BatchWriteItem limit of 25 requests and
``batch_get`` for many exact reads. Both re-submit unprocessed entries with
exponential backoff.

botocore failures are translated into the siteindex error taxonomy:
condition failures become ``Conflict``; throttling, network and service
errors become ``TransientStoreError``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from botocore.exceptions import BotoCoreError, ClientError

from siteindex import config
from siteindex.aws_clients import _get_ddb
from siteindex.errors import Conflict, TransientStoreError, ValidationError
from siteindex.keyspace import item_key
from siteindex.serialization import _deserialize, _serialize, _serialize_item

__all__ = [
    "DeleteOp",
    "KeyValueStore",
    "Page",
    "PutOp",
]

logger = logging.getLogger(__name__)

_CONDITION_CODES = {"ConditionalCheckFailedException", "ConditionalCheckFailed"}


@dataclass
class Page:
    """One page of a prefix query; ``cursor`` is None on the last page."""

    items: List[Dict[str, Any]]
    cursor: Optional[Dict[str, Any]] = None


@dataclass
class PutOp:
    item: Dict[str, Any]
    condition: Optional[str] = None
    names: Dict[str, str] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        return self.item["PK"]

    @property
    def sort_key(self) -> str:
        return self.item["SK"]


@dataclass
class DeleteOp:
    key: Dict[str, str]
    condition: Optional[str] = None
    names: Dict[str, str] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        return self.key["PK"]

    @property
    def sort_key(self) -> str:
        return self.key["SK"]


WriteOp = Union[PutOp, DeleteOp]


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def _backoff(attempt: int) -> None:
    delay = config.BATCH_WRITE_BACKOFF_SECONDS * 2 ** (attempt - 1)
    logger.info("retrying unprocessed batch items in %.2fs (attempt %d)", delay, attempt)
    time.sleep(delay)


def _condition_kwargs(
    condition: Optional[str],
    values: Dict[str, Any],
    names: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    if not condition:
        return {}
    kwargs: Dict[str, Any] = {"ConditionExpression": condition}
    if names:
        kwargs["ExpressionAttributeNames"] = dict(names)
    if values:
        kwargs["ExpressionAttributeValues"] = {k: _serialize(v) for k, v in values.items()}
    return kwargs


class KeyValueStore:
    """Thin adapter binding the primitives to one table and one client."""

    def __init__(self, table_name: Optional[str] = None, client: Any = None):
        self.table_name = table_name or config.TABLE_NAME
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_ddb()
        return self._client

    def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return getattr(self.client, operation)(**kwargs)
        except ClientError as exc:
            code = _error_code(exc)
            if code in _CONDITION_CODES:
                raise Conflict(f"{operation}: condition check failed") from exc
            if code == "TransactionCanceledException":
                reasons = exc.response.get("CancellationReasons") or []
                if any((r or {}).get("Code") in _CONDITION_CODES for r in reasons):
                    raise Conflict(f"{operation}: transaction cancelled by condition check") from exc
            logger.error("%s failed on %s: %s", operation, self.table_name, exc)
            raise TransientStoreError(f"{operation} failed: {code or exc}") from exc
        except BotoCoreError as exc:
            logger.error("%s failed on %s: %s", operation, self.table_name, exc)
            raise TransientStoreError(f"{operation} failed: {exc}") from exc

    # -- single item ------------------------------------------------------

    def get(self, scope: str, sort_key: str, *, consistent: bool = True) -> Optional[Dict[str, Any]]:
        resp = self._call(
            "get_item",
            TableName=self.table_name,
            Key=_serialize_item(item_key(scope, sort_key)),
            ConsistentRead=consistent,
        )
        raw = resp.get("Item")
        return _deserialize(raw) if raw else None

    def put(
        self,
        item: Dict[str, Any],
        *,
        condition: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
        names: Optional[Dict[str, str]] = None,
    ) -> None:
        if not item.get("PK") or not item.get("SK"):
            raise ValidationError("item requires PK and SK")
        self._call(
            "put_item",
            TableName=self.table_name,
            Item=_serialize_item(item),
            **_condition_kwargs(condition, values or {}, names),
        )

    def delete(self, scope: str, sort_key: str) -> None:
        self._call(
            "delete_item",
            TableName=self.table_name,
            Key=_serialize_item(item_key(scope, sort_key)),
        )

    # -- range ------------------------------------------------------------

    def query_prefix(
        self,
        scope: str,
        prefix: str,
        cursor: Optional[Dict[str, Any]] = None,
        projection: Optional[Sequence[str]] = None,
    ) -> Page:
        kwargs: Dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "PK = :pk AND begins_with(SK, :sk)",
            "ExpressionAttributeValues": {
                ":pk": _serialize(scope),
                ":sk": _serialize(prefix),
            },
        }
        if projection:
            names = {f"#p{i}": name for i, name in enumerate(projection)}
            kwargs["ProjectionExpression"] = ", ".join(names)
            kwargs["ExpressionAttributeNames"] = names
        if config.QUERY_PAGE_SIZE > 0:
            kwargs["Limit"] = config.QUERY_PAGE_SIZE
        if cursor:
            kwargs["ExclusiveStartKey"] = cursor
        resp = self._call("query", **kwargs)
        items = [_deserialize(raw) for raw in resp.get("Items", [])]
        return Page(items=items, cursor=resp.get("LastEvaluatedKey") or None)

    # -- multi item -------------------------------------------------------

    def write_batch(self, puts: Iterable[Dict[str, Any]] = (), deletes: Iterable[Dict[str, str]] = ()) -> None:
        """Write one BatchWriteItem request, retrying unprocessed items.

        Raises ``TransientStoreError`` when items are still unprocessed after
        ``BATCH_WRITE_MAX_RETRIES`` re-submissions.
        """
        requests: List[Dict[str, Any]] = [{"PutRequest": {"Item": _serialize_item(p)}} for p in puts]
        requests.extend({"DeleteRequest": {"Key": _serialize_item(k)}} for k in deletes)
        if not requests:
            return
        if len(requests) > config.BATCH_WRITE_SIZE:
            raise ValidationError(
                f"batch of {len(requests)} exceeds the {config.BATCH_WRITE_SIZE}-item limit"
            )

        pending: Dict[str, List[Dict[str, Any]]] = {self.table_name: requests}
        for attempt in range(config.BATCH_WRITE_MAX_RETRIES + 1):
            if attempt:
                _backoff(attempt)
            resp = self._call("batch_write_item", RequestItems=pending)
            pending = {k: v for k, v in (resp.get("UnprocessedItems") or {}).items() if v}
            if not pending:
                return
        left = sum(len(v) for v in pending.values())
        raise TransientStoreError(f"batch_write_item left {left} unprocessed items")

    def batch_get(self, scope: str, sort_keys: Iterable[str]) -> List[Dict[str, Any]]:
        """Consistent reads of many items in one scope; missing keys are skipped.

        Keys go out in BatchGetItem chunks of ``BATCH_GET_SIZE``. Unprocessed
        keys are re-requested with the same backoff as ``write_batch``.
        """
        wanted = list(dict.fromkeys(sort_keys))
        found: Dict[str, Dict[str, Any]] = {}
        for start in range(0, len(wanted), config.BATCH_GET_SIZE):
            chunk = wanted[start:start + config.BATCH_GET_SIZE]
            pending: Dict[str, Any] = {
                self.table_name: {
                    "Keys": [_serialize_item(item_key(scope, sk)) for sk in chunk],
                    "ConsistentRead": True,
                }
            }
            for attempt in range(config.BATCH_WRITE_MAX_RETRIES + 1):
                if attempt:
                    _backoff(attempt)
                resp = self._call("batch_get_item", RequestItems=pending)
                for raw in (resp.get("Responses") or {}).get(self.table_name, []):
                    item = _deserialize(raw)
                    found[item["SK"]] = item
                pending = {k: v for k, v in (resp.get("UnprocessedKeys") or {}).items() if v.get("Keys")}
                if not pending:
                    break
            else:
                left = sum(len(v["Keys"]) for v in pending.values())
                raise TransientStoreError(f"batch_get_item left {left} unprocessed keys")
        return [found[sk] for sk in wanted if sk in found]

    def transact_write(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        scopes = {op.scope for op in ops}
        if len(scopes) != 1:
            raise ValidationError(f"transaction spans {len(scopes)} scopes; one is required")

        items: List[Dict[str, Any]] = []
        for op in ops:
            extra = _condition_kwargs(op.condition, op.values, op.names)
            if isinstance(op, PutOp):
                items.append({"Put": {"TableName": self.table_name, "Item": _serialize_item(op.item), **extra}})
            else:
                items.append({"Delete": {"TableName": self.table_name, "Key": _serialize_item(op.key), **extra}})
        self._call("transact_write_items", TransactItems=items)
