"""siteindex.keyspace — Single-table addressing scheme.

Every record lives in one DynamoDB table keyed by ``PK`` (the scope) and
``SK`` (kind prefix plus id parts, joined with ``#``)::

    PK = TENANT#<tenantId> | SYSTEM
    SK = CONTENT#<nodeId>#LATEST        current content version
         CONTENT#<nodeId>#v<n>          historical content version
         CATEGORY#<id>                  category
         CATPROD#<categoryId>#<id>      category membership projection
         PRODUCT#<id>                   product
         COUPON#<id> / COUPONCODE#<C>   coupon / unique code pointer
         FORM#<id> / FORMSLUG#<slug>    form / unique slug pointer
         SUBMISSION#<formId>#<id>       form submission
         RESOURCE#<id>                  downloadable resource
         MEDIAMAP#<md5(oldUrl)>         imported media dedup record
         AUDIT#<timestamp>#<id>         audit log entry

A key built for tenant A can never address tenant B: the tenant id is the
whole partition key and ids are not allowed to carry the separator.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from siteindex.errors import ValidationError

__all__ = [
    "KIND_PREFIXES",
    "LATEST",
    "SEP",
    "SYSTEM_SCOPE",
    "audit_key",
    "catprod_key",
    "catprod_prefix",
    "content_key",
    "coupon_code_key",
    "entity_key",
    "form_slug_key",
    "item_key",
    "kind_prefix",
    "media_map_key",
    "parse_sort_key",
    "tenant_config_key",
    "tenant_scope",
]

SEP = "#"
LATEST = "LATEST"
SYSTEM_SCOPE = "SYSTEM"

# Closed set of entity kinds -> sort-key prefix.
KIND_PREFIXES: Dict[str, str] = {
    "Content": "CONTENT",
    "Category": "CATEGORY",
    "CategoryProduct": "CATPROD",
    "Product": "PRODUCT",
    "Coupon": "COUPON",
    "CouponCode": "COUPONCODE",
    "Form": "FORM",
    "FormSlug": "FORMSLUG",
    "FormSubmission": "SUBMISSION",
    "Resource": "RESOURCE",
    "MediaMapEntry": "MEDIAMAP",
    "Audit": "AUDIT",
    "Tenant": "TENANT",
}

_PREFIX_TO_KIND = {prefix: kind for kind, prefix in KIND_PREFIXES.items()}


def _check_part(value: str, what: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{what} must be a non-empty string")
    if SEP in text:
        raise ValidationError(f"{what} must not contain '{SEP}': {text!r}")
    return text


def tenant_scope(tenant_id: str) -> str:
    """Partition key for one tenant."""
    return f"TENANT{SEP}{_check_part(tenant_id, 'tenant id')}"


def kind_prefix(kind: str) -> str:
    try:
        return KIND_PREFIXES[kind]
    except KeyError:
        raise ValidationError(f"Unknown entity kind '{kind}'") from None


def item_key(scope: str, sort_key: str) -> Dict[str, str]:
    if not scope:
        raise ValidationError("scope must be a non-empty string")
    return {"PK": scope, "SK": sort_key}


def entity_key(kind: str, *parts: str) -> str:
    """Sort key ``<PREFIX>#<part>#<part>...`` for a kind and its id parts."""
    if not parts:
        raise ValidationError(f"{kind} key requires at least one id part")
    checked = [_check_part(p, f"{kind} id") for p in parts]
    return SEP.join([kind_prefix(kind), *checked])


def content_key(node_id: str, version: Optional[int] = None) -> str:
    suffix = LATEST if version is None else f"v{int(version)}"
    return entity_key("Content", node_id, suffix)


def catprod_prefix(category_id: str) -> str:
    return entity_key("CategoryProduct", category_id) + SEP


def catprod_key(category_id: str, product_id: str) -> str:
    return entity_key("CategoryProduct", category_id, product_id)


def coupon_code_key(code: str) -> str:
    return entity_key("CouponCode", code)


def form_slug_key(slug: str) -> str:
    return entity_key("FormSlug", slug)


def media_map_key(url_hash: str) -> str:
    return entity_key("MediaMapEntry", url_hash)


def audit_key(timestamp: str, audit_id: str) -> str:
    # ISO timestamps carry no '#', only ':' and '.', so they are safe parts.
    return entity_key("Audit", timestamp, audit_id)


def tenant_config_key(tenant_id: str) -> Dict[str, str]:
    """Tenant settings live in the system scope, one record per tenant."""
    return item_key(SYSTEM_SCOPE, tenant_scope(tenant_id))


def parse_sort_key(sort_key: str) -> Tuple[str, Tuple[str, ...]]:
    """Split ``SK`` into ``(kind, id parts)``; unknown prefixes raise."""
    head, _, rest = str(sort_key or "").partition(SEP)
    kind = _PREFIX_TO_KIND.get(head)
    if kind is None or not rest:
        raise ValidationError(f"Unrecognised sort key '{sort_key}'")
    return kind, tuple(rest.split(SEP))
