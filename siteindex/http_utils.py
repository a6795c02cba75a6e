"""siteindex.http_utils — HTTP response helpers with CORS.

Response envelope, error formatting and event parsing shared by the
API Gateway handlers.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional

from siteindex import config

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": config.CORS_ORIGIN,
    "Access-Control-Allow-Headers": "Content-Type,Authorization,x-tenant-id",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    """Build an API Gateway response with CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            **CORS_HEADERS,
        },
        "body": json.dumps(body, default=str),
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "success": False,
        "error": message,
    }
    if extra:
        payload.update(extra)
    return _response(status_code, payload)


def _parse_body(event: Dict[str, Any]) -> Any:
    """Parse the JSON body of an event (handles base64). None if invalid."""
    raw = event.get("body") or "{}"
    try:
        if event.get("isBase64Encoded"):
            raw = base64.b64decode(raw, validate=True).decode("utf-8")
        return json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, TypeError):
        return None


def _path_method(event: Dict[str, Any]) -> tuple:
    """HTTP method and path from an API Gateway v2 (or v1) event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = http.get("path") or event.get("rawPath") or event.get("path") or "/"
    return method, path


def _header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == wanted:
            return value
    return None
