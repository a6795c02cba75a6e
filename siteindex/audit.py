"""siteindex.audit — Audit event publishing.

Audit is informed, never consulted: a failed publish is logged and the
mutation that triggered it still succeeds.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from siteindex import config
from siteindex.aws_clients import _get_eb
from siteindex.errors import SiteIndexError
from siteindex.keyspace import audit_key, tenant_scope
from siteindex.serialization import _now_iso
from siteindex.store import KeyValueStore

__all__ = ["publish_audit", "write_audit_record"]

logger = logging.getLogger(__name__)


def publish_audit(
    tenant_id: str,
    action: str,
    *,
    actor: Optional[Dict[str, Any]] = None,
    target: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
    ip: Optional[str] = None,
) -> bool:
    """Put one AUDIT_LOG event on the configured bus. Returns True if sent."""
    if not config.EVENT_BUS_NAME:
        logger.warning("EventBus not configured, skipping audit event %s", action)
        return False

    detail = {
        "tenantId": tenant_id,
        "actor": actor or {},
        "action": action,
        "target": target or {},
        "details": details or {},
        "ip": ip,
        "timestamp": _now_iso(),
    }
    try:
        resp = _get_eb().put_events(
            Entries=[
                {
                    "EventBusName": config.EVENT_BUS_NAME,
                    "Source": config.AUDIT_EVENT_SOURCE,
                    "DetailType": config.AUDIT_DETAIL_TYPE,
                    "Detail": json.dumps(detail, default=str),
                }
            ]
        )
    except (BotoCoreError, ClientError) as exc:
        logger.error("Failed to publish audit event %s for tenant %s: %s", action, tenant_id, exc)
        return False
    if resp.get("FailedEntryCount"):
        logger.error("EventBridge rejected audit event %s for tenant %s: %s", action, tenant_id, resp.get("Entries"))
        return False
    return True


def write_audit_record(store: KeyValueStore, detail: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Persist an AUDIT_LOG event as ``AUDIT#<timestamp>#<id>`` under its tenant."""
    tenant_id = detail.get("tenantId")
    if not tenant_id:
        logger.warning("audit event without tenantId dropped: %s", detail.get("action"))
        return None
    audit_id = str(uuid.uuid4())
    timestamp = str(detail.get("timestamp") or _now_iso())
    item = {
        **detail,
        "PK": tenant_scope(tenant_id),
        "SK": audit_key(timestamp, audit_id),
        "id": audit_id,
        "timestamp": timestamp,
        "Type": "AuditLog",
    }
    try:
        store.put(item)
    except SiteIndexError as exc:
        logger.error("Failed to write audit record for tenant %s: %s", tenant_id, exc)
        return None
    return item
