"""conftest.py — Shared fixtures: an in-memory DynamoDB client.

The fake speaks the low-level client's wire format (AttributeValue maps)
for the handful of operations the store uses, so the store, collector,
projector and graph are exercised end to end without AWS credentials.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from botocore.exceptions import ClientError

from siteindex import config
from siteindex.projector import AdjacencyProjector
from siteindex.store import KeyValueStore


def _client_error(code: str, operation: str, **extra: Any) -> ClientError:
    response: Dict[str, Any] = {"Error": {"Code": code, "Message": code}}
    response.update(extra)
    return ClientError(response, operation)


def _key(raw: Dict[str, Any]) -> Tuple[str, str]:
    return raw["PK"]["S"], raw["SK"]["S"]


class FakeDynamoDB:
    """Just enough of ``boto3.client("dynamodb")`` for KeyValueStore."""

    def __init__(self, page_size: Optional[int] = None):
        self.items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.page_size = page_size
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.unprocessed_rounds = 0
        self.unprocessed_get_rounds = 0
        self._faults: List[Tuple[str, Callable[[Dict[str, Any]], bool], str]] = []

    # -- test hooks -------------------------------------------------------

    def fail_when(
        self,
        operation: str,
        predicate: Callable[[Dict[str, Any]], bool] = lambda kwargs: True,
        code: str = "ProvisionedThroughputExceededException",
    ) -> None:
        self._faults.append((operation, predicate, code))

    def _record(self, operation: str, kwargs: Dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        for op, predicate, code in self._faults:
            if op == operation and predicate(kwargs):
                raise _client_error(code, operation)

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # -- conditions -------------------------------------------------------

    @staticmethod
    def _clause(existing, clause, names, values) -> bool:
        clause = clause.strip()
        if clause.startswith("attribute_not_exists("):
            attr = clause[len("attribute_not_exists("):-1]
            attr = (names or {}).get(attr, attr)
            return existing is None or attr not in existing
        left, _, right = clause.partition(" = ")
        attr = (names or {}).get(left.strip(), left.strip())
        return existing is not None and existing.get(attr) == (values or {}).get(right.strip())

    @classmethod
    def _holds(cls, existing, expression, names, values) -> bool:
        # AND binds tighter than OR; no parentheses.
        if not expression:
            return True
        return any(
            all(cls._clause(existing, clause, names, values) for clause in disjunct.split(" AND "))
            for disjunct in expression.split(" OR ")
        )

    # -- single item ------------------------------------------------------

    def get_item(self, **kwargs):
        self._record("get_item", kwargs)
        item = self.items.get(_key(kwargs["Key"]))
        return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, **kwargs):
        self._record("put_item", kwargs)
        key = _key(kwargs["Item"])
        if not self._holds(
            self.items.get(key),
            kwargs.get("ConditionExpression"),
            kwargs.get("ExpressionAttributeNames"),
            kwargs.get("ExpressionAttributeValues"),
        ):
            raise _client_error("ConditionalCheckFailedException", "PutItem")
        self.items[key] = copy.deepcopy(kwargs["Item"])
        return {}

    def delete_item(self, **kwargs):
        self._record("delete_item", kwargs)
        self.items.pop(_key(kwargs["Key"]), None)
        return {}

    # -- range ------------------------------------------------------------

    def query(self, **kwargs):
        self._record("query", kwargs)
        values = kwargs["ExpressionAttributeValues"]
        pk, prefix = values[":pk"]["S"], values[":sk"]["S"]
        keys = sorted(k for k in self.items if k[0] == pk and k[1].startswith(prefix))
        start = kwargs.get("ExclusiveStartKey")
        if start:
            keys = [k for k in keys if k[1] > start["SK"]["S"]]
        limit = kwargs.get("Limit") or self.page_size
        page = keys[:limit] if limit else keys

        names = kwargs.get("ExpressionAttributeNames") or {}
        wanted = [names.get(p.strip(), p.strip()) for p in kwargs.get("ProjectionExpression", "").split(",") if p.strip()]
        out = []
        for key in page:
            item = copy.deepcopy(self.items[key])
            if wanted:
                item = {k: v for k, v in item.items() if k in wanted}
            out.append(item)

        resp: Dict[str, Any] = {"Items": out, "Count": len(out)}
        if len(page) < len(keys):
            last = page[-1]
            resp["LastEvaluatedKey"] = {"PK": {"S": last[0]}, "SK": {"S": last[1]}}
        return resp

    # -- multi item -------------------------------------------------------

    def batch_get_item(self, **kwargs):
        self._record("batch_get_item", kwargs)
        if self.unprocessed_get_rounds > 0:
            self.unprocessed_get_rounds -= 1
            return {"Responses": {}, "UnprocessedKeys": copy.deepcopy(kwargs["RequestItems"])}
        responses: Dict[str, List[Dict[str, Any]]] = {}
        for table, request in kwargs["RequestItems"].items():
            if len(request["Keys"]) > 100:
                raise _client_error("ValidationException", "BatchGetItem")
            found = [self.items.get(_key(raw)) for raw in request["Keys"]]
            responses[table] = [copy.deepcopy(item) for item in found if item]
        return {"Responses": responses, "UnprocessedKeys": {}}

    def batch_write_item(self, **kwargs):
        self._record("batch_write_item", kwargs)
        if self.unprocessed_rounds > 0:
            self.unprocessed_rounds -= 1
            return {"UnprocessedItems": copy.deepcopy(kwargs["RequestItems"])}
        for requests in kwargs["RequestItems"].values():
            for request in requests:
                if "PutRequest" in request:
                    item = request["PutRequest"]["Item"]
                    self.items[_key(item)] = copy.deepcopy(item)
                else:
                    self.items.pop(_key(request["DeleteRequest"]["Key"]), None)
        return {"UnprocessedItems": {}}

    def transact_write_items(self, **kwargs):
        self._record("transact_write_items", kwargs)
        reasons = []
        for entry in kwargs["TransactItems"]:
            op = entry.get("Put") or entry.get("Delete")
            raw_key = op.get("Item") or op.get("Key")
            ok = self._holds(
                self.items.get(_key(raw_key)),
                op.get("ConditionExpression"),
                op.get("ExpressionAttributeNames"),
                op.get("ExpressionAttributeValues"),
            )
            reasons.append({"Code": "None" if ok else "ConditionalCheckFailed"})
        if any(r["Code"] != "None" for r in reasons):
            raise _client_error("TransactionCanceledException", "TransactWriteItems", CancellationReasons=reasons)
        for entry in kwargs["TransactItems"]:
            if "Put" in entry:
                item = entry["Put"]["Item"]
                self.items[_key(item)] = copy.deepcopy(item)
            else:
                self.items.pop(_key(entry["Delete"]["Key"]), None)
        return {}


@pytest.fixture(autouse=True)
def _no_event_bus(monkeypatch):
    monkeypatch.setattr(config, "EVENT_BUS_NAME", "")


@pytest.fixture
def ddb():
    return FakeDynamoDB()


@pytest.fixture
def store(ddb):
    return KeyValueStore(table_name="test-table", client=ddb)


@pytest.fixture
def projector(store):
    return AdjacencyProjector(store)
