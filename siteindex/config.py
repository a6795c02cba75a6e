"""siteindex.config — Environment variables, keyspace constants, limits.

Values are read once at import time. Tests override them by patching the
module attribute, the same way callers may override them before first use.
"""

from __future__ import annotations

import logging
import os

__all__ = [
    "AUDIT_DETAIL_TYPE",
    "AUDIT_EVENT_SOURCE",
    "BATCH_GET_SIZE",
    "BATCH_WRITE_BACKOFF_SECONDS",
    "BATCH_WRITE_MAX_RETRIES",
    "BATCH_WRITE_SIZE",
    "CONTACT_PATH",
    "CORS_ORIGIN",
    "DEFAULT_LIST_LIMIT",
    "DYNAMODB_REGION",
    "EVENT_BUS_NAME",
    "EVENTBRIDGE_REGION",
    "HOME_PATH",
    "LINK_ATTRIBUTES",
    "LINK_LIST_ATTRIBUTES",
    "LIST_ITEM_LINK_ATTRIBUTES",
    "MAX_SCOPE_PAGES",
    "QUERY_PAGE_SIZE",
    "SYSTEM_LINK_PATHS",
    "TABLE_NAME",
    "URL_PREFIX_DEFAULTS",
    "logger",
]

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

TABLE_NAME = os.environ.get("TABLE_NAME", "amodx-content")
DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", "eu-central-1")
EVENTBRIDGE_REGION = os.environ.get("EVENTBRIDGE_REGION", DYNAMODB_REGION)
EVENT_BUS_NAME = os.environ.get("EVENT_BUS_NAME", "")
AUDIT_EVENT_SOURCE = os.environ.get("AUDIT_EVENT_SOURCE", "siteindex.system")
AUDIT_DETAIL_TYPE = os.environ.get("AUDIT_DETAIL_TYPE", "AUDIT_LOG")
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

# Hard stop for the scope collector; 1 MB pages make this roughly 200 MB of
# content per tenant before the collector gives up.
MAX_SCOPE_PAGES = int(os.environ.get("MAX_SCOPE_PAGES", "200"))
QUERY_PAGE_SIZE = int(os.environ.get("QUERY_PAGE_SIZE", "0"))  # 0 = store default

# DynamoDB BatchWriteItem accepts at most 25 requests.
BATCH_WRITE_SIZE = int(os.environ.get("BATCH_WRITE_SIZE", "25"))
BATCH_WRITE_MAX_RETRIES = int(os.environ.get("BATCH_WRITE_MAX_RETRIES", "3"))
# Base delay before re-submitting unprocessed items; doubles every round.
BATCH_WRITE_BACKOFF_SECONDS = float(os.environ.get("BATCH_WRITE_BACKOFF_SECONDS", "0.05"))
# DynamoDB BatchGetItem accepts at most 100 keys.
BATCH_GET_SIZE = int(os.environ.get("BATCH_GET_SIZE", "100"))

DEFAULT_LIST_LIMIT = int(os.environ.get("DEFAULT_LIST_LIMIT", "6"))

# ---------------------------------------------------------------------------
# Link graph constants
# ---------------------------------------------------------------------------

HOME_PATH = "/"
CONTACT_PATH = "/contact"
SYSTEM_LINK_PATHS = (CONTACT_PATH, HOME_PATH)

LINK_ATTRIBUTES = ("ctaLink", "buttonLink", "link")
LINK_LIST_ATTRIBUTES = ("plans", "items", "columns", "rows")
LIST_ITEM_LINK_ATTRIBUTES = ("buttonLink", "link")

URL_PREFIX_DEFAULTS = {
    "product": "/product",
    "category": "/category",
    "cart": "/cart",
    "checkout": "/checkout",
    "shop": "/shop",
}

logger = logging.getLogger("siteindex")
