"""test_handlers.py — Mock-based tests for the API entry point, policy and audit.

Events are API Gateway v2 proxy events; the catalog is bound to the
in-memory table so no AWS credentials are needed.

Run: python3 -m pytest siteindex/test_handlers.py -v
"""

from __future__ import annotations

import base64
import json
import unittest
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from siteindex import audit as audit_mod
from siteindex import config
from siteindex import handlers
from siteindex.audit import publish_audit, write_audit_record
from siteindex.catalog import Catalog
from siteindex.errors import AccessDenied
from siteindex.http_utils import _error, _header, _parse_body, _path_method, _response
from siteindex.policy import auth_context, require_role

TENANT = "acme"


def _make_event(method, path, body=None, role="EDITOR", tenant=TENANT, auth_tenant=TENANT, raw_body=None):
    headers = {"host": "api.test"}
    if tenant:
        headers["X-Tenant-Id"] = tenant
    event = {
        "requestContext": {"http": {"method": method, "path": path}},
        "headers": headers,
        "rawPath": path,
    }
    if role:
        event["requestContext"]["authorizer"] = {
            "lambda": {"sub": "u1", "email": "u1@test", "role": role, "tenantId": auth_tenant}
        }
    if raw_body is not None:
        event["body"] = raw_body
    elif body is not None:
        event["body"] = json.dumps(body)
    return event


def _body(resp):
    return json.loads(resp["body"])


@pytest.fixture
def api(store, monkeypatch):
    monkeypatch.setattr(handlers, "_catalog", Catalog(store))
    return handlers.lambda_handler


# ---------------------------------------------------------------------------
# Routing and auth
# ---------------------------------------------------------------------------


def test_options_preflight(api):
    resp = api(_make_event("OPTIONS", "/products"), None)
    assert resp["statusCode"] == 204
    assert "Access-Control-Allow-Origin" in resp["headers"]


def test_unknown_route(api):
    assert api(_make_event("GET", "/nope"), None)["statusCode"] == 404


def test_missing_tenant_header(api):
    resp = api(_make_event("GET", "/audit/graph", tenant=None), None)
    assert resp["statusCode"] == 400


def test_missing_auth_context(api):
    assert api(_make_event("GET", "/audit/graph", role=None), None)["statusCode"] == 403


def test_cross_tenant_access_denied(api):
    resp = api(_make_event("GET", "/audit/graph", auth_tenant="other"), None)
    assert resp["statusCode"] == 403


def test_global_admin_any_tenant(api):
    resp = api(_make_event("GET", "/audit/graph", role="GLOBAL_ADMIN", auth_tenant=None), None)
    assert resp["statusCode"] == 200


def test_editor_cannot_delete(api):
    resp = api(_make_event("DELETE", "/products/p1"), None)
    assert resp["statusCode"] == 403


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def test_graph_route(api, store):
    store.put({"PK": "TENANT#acme", "SK": "CONTENT#home#LATEST", "nodeId": "home", "slug": "/",
               "title": "Home", "status": "Published"})
    store.put({"PK": "TENANT#acme", "SK": "CONTENT#lost#LATEST", "nodeId": "lost", "slug": "/lost",
               "title": "Lost", "status": "Published"})
    resp = api(_make_event("GET", "/audit/graph"), None)
    assert resp["statusCode"] == 200
    payload = _body(resp)
    assert [n["id"] for n in payload["nodes"]] == ["home", "lost"]
    assert payload["edges"] == []
    assert payload["orphans"] == [{"id": "lost", "title": "Lost", "slug": "/lost"}]


def test_product_routes(api):
    resp = api(_make_event("POST", "/products", {"title": "Mug", "categoryIds": ["mugs"], "sortOrder": 1}), None)
    assert resp["statusCode"] == 201
    product = _body(resp)

    listing = api(_make_event("GET", "/categories/mugs/products"), None)
    assert [i["id"] for i in _body(listing)["items"]] == [product["id"]]

    resp = api(_make_event("PUT", f"/products/{product['id']}", {"categoryIds": []}), None)
    assert resp["statusCode"] == 200
    assert _body(api(_make_event("GET", "/categories/mugs/products"), None))["items"] == []

    resp = api(_make_event("DELETE", f"/products/{product['id']}", role="TENANT_ADMIN"), None)
    assert resp["statusCode"] == 200


def test_update_missing_product(api):
    resp = api(_make_event("PUT", "/products/missing", {"title": "x"}), None)
    assert resp["statusCode"] == 404
    assert _body(resp)["success"] is False


def test_invalid_body(api):
    resp = api(_make_event("POST", "/products", raw_body="{not json"), None)
    assert resp["statusCode"] == 400
    resp = api(_make_event("POST", "/products", raw_body="[1, 2]"), None)
    assert resp["statusCode"] == 400


@pytest.mark.parametrize("raw_body", ["abc", "not*base64", base64.b64encode(b"\xff\xfe").decode()])
def test_undecodable_base64_body(api, raw_body):
    event = _make_event("POST", "/products", raw_body=raw_body)
    event["isBase64Encoded"] = True
    resp = api(event, None)
    assert resp["statusCode"] == 400


def test_coupon_conflict_and_lookup(api):
    assert api(_make_event("POST", "/coupons", {"code": "save10"}), None)["statusCode"] == 201
    resp = api(_make_event("POST", "/coupons", {"code": "SAVE10"}), None)
    assert resp["statusCode"] == 409
    assert _body(resp)["key"] == "COUPONCODE#SAVE10"
    found = api(_make_event("GET", "/coupons/code/save10"), None)
    assert _body(found)["code"] == "SAVE10"


def test_form_routes(api):
    resp = api(_make_event("POST", "/forms", {"name": "Contact"}), None)
    assert resp["statusCode"] == 201
    form = _body(resp)
    resp = api(_make_event("PUT", f"/forms/{form['id']}", {"successMessage": "Thanks"}), None)
    assert _body(resp)["successMessage"] == "Thanks"
    assert api(_make_event("DELETE", f"/forms/{form['id']}", role="TENANT_ADMIN"), None)["statusCode"] == 200


def test_bulk_price_requires_admin(api):
    assert api(_make_event("POST", "/products/bulk-price", {"percent": 10}), None)["statusCode"] == 403
    resp = api(_make_event("POST", "/products/bulk-price", {"percent": 10}, role="TENANT_ADMIN"), None)
    assert resp["statusCode"] == 200
    assert _body(resp)["count"] == 0


def test_store_outage_is_503(api, ddb):
    ddb.fail_when("query")
    assert api(_make_event("GET", "/audit/graph"), None)["statusCode"] == 503


def test_unexpected_error_is_500(api, monkeypatch):
    monkeypatch.setattr(handlers, "build_link_graph", MagicMock(side_effect=KeyError("boom")))
    resp = api(_make_event("GET", "/audit/graph"), None)
    assert resp["statusCode"] == 500
    assert _body(resp)["error"] == "Internal server error"


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


class HttpUtilsTests(unittest.TestCase):
    def test_response_envelope(self):
        resp = _response(200, {"ok": True})
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(resp["headers"]["Content-Type"], "application/json")
        self.assertEqual(resp["headers"]["Access-Control-Allow-Origin"], config.CORS_ORIGIN)
        self.assertEqual(json.loads(resp["body"]), {"ok": True})

    def test_error_envelope(self):
        body = json.loads(_error(409, "taken", key="COUPONCODE#X")["body"])
        self.assertEqual(body, {"success": False, "error": "taken", "key": "COUPONCODE#X"})

    def test_parse_body(self):
        self.assertEqual(_parse_body({"body": '{"a": 1}'}), {"a": 1})
        encoded = base64.b64encode(b'{"b": 2}').decode()
        self.assertEqual(_parse_body({"body": encoded, "isBase64Encoded": True}), {"b": 2})
        self.assertIsNone(_parse_body({"body": "nope"}))
        self.assertEqual(_parse_body({}), {})

    def test_parse_body_rejects_bad_base64(self):
        self.assertIsNone(_parse_body({"body": "abc", "isBase64Encoded": True}))
        self.assertIsNone(_parse_body({"body": "//4=", "isBase64Encoded": True}))

    def test_path_method(self):
        self.assertEqual(_path_method({"requestContext": {"http": {"method": "post", "path": "/x"}}}), ("POST", "/x"))
        self.assertEqual(_path_method({"httpMethod": "GET", "path": "/y"}), ("GET", "/y"))

    def test_header_lookup_is_case_insensitive(self):
        self.assertEqual(_header({"headers": {"X-Tenant-Id": "t"}}, "x-tenant-id"), "t")
        self.assertIsNone(_header({}, "x-tenant-id"))


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class PolicyTests(unittest.TestCase):
    def test_auth_context(self):
        event = {"requestContext": {"authorizer": {"lambda": {"role": "EDITOR"}}}}
        self.assertEqual(auth_context(event), {"role": "EDITOR"})
        self.assertEqual(auth_context({}), {})

    def test_global_admin_bypasses(self):
        require_role({"role": "GLOBAL_ADMIN"}, ["TENANT_ADMIN"], "any")

    def test_role_whitelist(self):
        with self.assertRaises(AccessDenied):
            require_role({"role": "EDITOR", "tenantId": "t"}, ["TENANT_ADMIN"], "t")
        require_role({"role": "TENANT_ADMIN", "tenantId": "t"}, ["TENANT_ADMIN"], "t")

    def test_missing_role_defaults_to_editor(self):
        require_role({"tenantId": "t"}, ["EDITOR"], "t")

    def test_tenant_scope(self):
        with self.assertRaises(AccessDenied):
            require_role({"role": "EDITOR", "tenantId": "a"}, ["EDITOR"], "b")
        with self.assertRaises(AccessDenied):
            require_role({"role": "EDITOR"}, ["EDITOR"], "b")
        with self.assertRaises(AccessDenied):
            require_role({}, ["EDITOR"])


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditTests(unittest.TestCase):
    def setUp(self):
        self._orig_bus = config.EVENT_BUS_NAME
        config.EVENT_BUS_NAME = "audit-bus"

    def tearDown(self):
        config.EVENT_BUS_NAME = self._orig_bus

    def test_skipped_without_bus(self):
        config.EVENT_BUS_NAME = ""
        with patch.object(audit_mod, "_get_eb") as get_eb:
            self.assertFalse(publish_audit(TENANT, "CREATE_PRODUCT"))
            get_eb.assert_not_called()

    def test_publish(self):
        eb = MagicMock()
        eb.put_events.return_value = {"FailedEntryCount": 0, "Entries": [{"EventId": "e1"}]}
        with patch.object(audit_mod, "_get_eb", return_value=eb):
            sent = publish_audit(TENANT, "CREATE_COUPON", actor={"sub": "u1"}, target={"id": "c1"})
        self.assertTrue(sent)
        entry = eb.put_events.call_args[1]["Entries"][0]
        self.assertEqual(entry["EventBusName"], "audit-bus")
        self.assertEqual(entry["Source"], config.AUDIT_EVENT_SOURCE)
        self.assertEqual(entry["DetailType"], "AUDIT_LOG")
        detail = json.loads(entry["Detail"])
        self.assertEqual(detail["action"], "CREATE_COUPON")
        self.assertEqual(detail["tenantId"], TENANT)
        self.assertEqual(detail["target"], {"id": "c1"})

    def test_publish_failure_is_swallowed(self):
        eb = MagicMock()
        eb.put_events.side_effect = ClientError({"Error": {"Code": "AccessDeniedException"}}, "PutEvents")
        with patch.object(audit_mod, "_get_eb", return_value=eb):
            self.assertFalse(publish_audit(TENANT, "DELETE_FORM"))

    def test_rejected_entry(self):
        eb = MagicMock()
        eb.put_events.return_value = {"FailedEntryCount": 1, "Entries": [{"ErrorCode": "x"}]}
        with patch.object(audit_mod, "_get_eb", return_value=eb):
            self.assertFalse(publish_audit(TENANT, "DELETE_FORM"))


def test_write_audit_record(store):
    item = write_audit_record(store, {"tenantId": TENANT, "action": "CREATE_FORM", "timestamp": "2024-01-01T00:00:00.000Z"})
    assert item["SK"].startswith("AUDIT#2024-01-01T00:00:00.000Z#")
    assert store.get("TENANT#acme", item["SK"])["action"] == "CREATE_FORM"
    assert write_audit_record(store, {"action": "X"}) is None


def test_write_audit_record_store_failure(store, ddb):
    ddb.fail_when("put_item")
    assert write_audit_record(store, {"tenantId": TENANT, "action": "X"}) is None
