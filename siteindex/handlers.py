"""siteindex.handlers — API Gateway entry point.

Routes (via API Gateway proxy):
    GET     /audit/graph
    GET     /categories/{categoryId}/products
    POST    /products
    POST    /products/bulk-price
    PUT     /products/{productId}
    DELETE  /products/{productId}
    POST    /coupons
    GET     /coupons/code/{code}
    PUT     /coupons/{couponId}
    DELETE  /coupons/{couponId}
    POST    /forms
    PUT     /forms/{formId}
    DELETE  /forms/{formId}
    OPTIONS *

Auth:
    Identity is verified upstream by the Lambda authorizer; its context is
    read from ``requestContext.authorizer.lambda``. The tenant comes from
    the ``x-tenant-id`` header.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from siteindex.catalog import Catalog
from siteindex.errors import SiteIndexError, ValidationError
from siteindex.graph import build_link_graph
from siteindex.http_utils import CORS_HEADERS, _error, _header, _parse_body, _path_method, _response
from siteindex.policy import EDITOR, TENANT_ADMIN, auth_context, require_role
from siteindex.store import KeyValueStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_catalog: Optional[Catalog] = None


def _get_catalog() -> Catalog:
    global _catalog
    if _catalog is None:
        _catalog = Catalog(KeyValueStore())
    return _catalog


_EDITORS = (TENANT_ADMIN, EDITOR)
_ADMINS = (TENANT_ADMIN,)


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = _parse_body(event)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _graph(event, tenant_id, auth, match):
    graph = build_link_graph(_get_catalog().store, tenant_id)
    return _response(200, graph.to_dict())


def _category_products(event, tenant_id, auth, match):
    items = _get_catalog().category_products(tenant_id, match.group(1))
    return _response(200, {"items": items})


def _create_product(event, tenant_id, auth, match):
    item = _get_catalog().create_product(tenant_id, _body(event), actor=auth)
    return _response(201, item)


def _bulk_price(event, tenant_id, auth, match):
    return _response(200, _get_catalog().bulk_price(tenant_id, _body(event), actor=auth))


def _update_product(event, tenant_id, auth, match):
    return _response(200, _get_catalog().update_product(tenant_id, match.group(1), _body(event), actor=auth))


def _delete_product(event, tenant_id, auth, match):
    _get_catalog().delete_product(tenant_id, match.group(1), actor=auth)
    return _response(200, {"success": True})


def _create_coupon(event, tenant_id, auth, match):
    return _response(201, _get_catalog().create_coupon(tenant_id, _body(event), actor=auth))


def _coupon_by_code(event, tenant_id, auth, match):
    return _response(200, _get_catalog().coupon_by_code(tenant_id, match.group(1)))


def _update_coupon(event, tenant_id, auth, match):
    return _response(200, _get_catalog().update_coupon(tenant_id, match.group(1), _body(event), actor=auth))


def _delete_coupon(event, tenant_id, auth, match):
    _get_catalog().delete_coupon(tenant_id, match.group(1), actor=auth)
    return _response(200, {"success": True})


def _create_form(event, tenant_id, auth, match):
    return _response(201, _get_catalog().create_form(tenant_id, _body(event), actor=auth))


def _update_form(event, tenant_id, auth, match):
    return _response(200, _get_catalog().update_form(tenant_id, match.group(1), _body(event), actor=auth))


def _delete_form(event, tenant_id, auth, match):
    _get_catalog().delete_form(tenant_id, match.group(1), actor=auth)
    return _response(200, {"success": True})


_ID = r"([A-Za-z0-9_-]+)"

# Order matters: literal segments before their {id} siblings.
ROUTES: List[Tuple[str, Pattern[str], Tuple[str, ...], Callable[..., Dict[str, Any]]]] = [
    ("GET", re.compile(r"/audit/graph/?$"), _EDITORS, _graph),
    ("GET", re.compile(rf"/categories/{_ID}/products/?$"), _EDITORS, _category_products),
    ("POST", re.compile(r"/products/bulk-price/?$"), _ADMINS, _bulk_price),
    ("POST", re.compile(r"/products/?$"), _EDITORS, _create_product),
    ("PUT", re.compile(rf"/products/{_ID}/?$"), _EDITORS, _update_product),
    ("DELETE", re.compile(rf"/products/{_ID}/?$"), _ADMINS, _delete_product),
    ("GET", re.compile(rf"/coupons/code/{_ID}/?$"), _EDITORS, _coupon_by_code),
    ("POST", re.compile(r"/coupons/?$"), _EDITORS, _create_coupon),
    ("PUT", re.compile(rf"/coupons/{_ID}/?$"), _EDITORS, _update_coupon),
    ("DELETE", re.compile(rf"/coupons/{_ID}/?$"), _ADMINS, _delete_coupon),
    ("POST", re.compile(r"/forms/?$"), _EDITORS, _create_form),
    ("PUT", re.compile(rf"/forms/{_ID}/?$"), _EDITORS, _update_form),
    ("DELETE", re.compile(rf"/forms/{_ID}/?$"), _ADMINS, _delete_form),
]


def _route(method: str, path: str):
    for route_method, pattern, roles, handler in ROUTES:
        if route_method != method:
            continue
        match = pattern.search(path)
        if match:
            return roles, handler, match
    return None


# ---------------------------------------------------------------------------
# Lambda entry point
# ---------------------------------------------------------------------------


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    method, path = _path_method(event)

    if method == "OPTIONS":
        return {"statusCode": 204, "headers": dict(CORS_HEADERS), "body": ""}

    route = _route(method, path)
    if route is None:
        return _error(404, f"Unsupported route: {method} {path}")
    roles, handler, match = route

    tenant_id = (_header(event, "x-tenant-id") or "").strip()
    if not tenant_id:
        return _error(400, "Missing x-tenant-id header")

    auth = auth_context(event)
    try:
        require_role(auth, roles, tenant_id)
        return handler(event, tenant_id, auth, match)
    except SiteIndexError as exc:
        if exc.status_code >= 500:
            logger.error("%s %s failed for tenant %s: %s", method, path, tenant_id, exc)
        return _error(exc.status_code, exc.message, **exc.data)
    except Exception:
        logger.exception("%s %s failed for tenant %s", method, path, tenant_id)
        return _error(500, "Internal server error")
