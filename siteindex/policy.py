"""siteindex.policy — Role and tenant-scope checks.

The API Gateway authorizer (out of scope here) verifies identity and passes
``{sub, email, role, tenantId}`` in ``requestContext.authorizer.lambda``.
Handlers call ``require_role`` before touching the projector or the graph.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from siteindex.errors import AccessDenied

__all__ = ["EDITOR", "GLOBAL_ADMIN", "TENANT_ADMIN", "auth_context", "require_role"]

logger = logging.getLogger(__name__)

GLOBAL_ADMIN = "GLOBAL_ADMIN"
TENANT_ADMIN = "TENANT_ADMIN"
EDITOR = "EDITOR"


def auth_context(event: Dict[str, Any]) -> Dict[str, Any]:
    authorizer = ((event.get("requestContext") or {}).get("authorizer") or {})
    return dict(authorizer.get("lambda") or {})


def require_role(
    auth: Optional[Dict[str, Any]],
    allowed_roles: Iterable[str],
    target_tenant_id: Optional[str] = None,
) -> None:
    if not auth:
        raise AccessDenied("Unauthorized: No Auth Context")

    role = auth.get("role") or EDITOR
    if role == GLOBAL_ADMIN:
        return

    allowed = list(allowed_roles)
    if role not in allowed:
        raise AccessDenied(f"Access Denied: Role '{role}' is not in [{', '.join(allowed)}]")

    if target_tenant_id:
        if not auth.get("tenantId"):
            raise AccessDenied("Access Denied: Token has no tenant scope")
        if auth["tenantId"] != target_tenant_id:
            logger.warning(
                "Security Alert: user %s (tenant %s) tried to access %s",
                auth.get("sub"), auth.get("tenantId"), target_tenant_id,
            )
            raise AccessDenied("Access Denied: You do not have access to this tenant.")
