"""siteindex.slugs — Path normalization, slugify, commerce prefix guard."""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from siteindex import config
from siteindex.errors import ValidationError

__all__ = [
    "check_slug_commerce_conflict",
    "normalize_coupon_code",
    "normalize_slug",
    "slugify",
]

_SCHEME_HOST_RE = re.compile(r"^https?://[^/]+", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s-]")
_SPACE_RE = re.compile(r"[\s_]+")
_DASH_RE = re.compile(r"-+")
_COUPON_CODE_RE = re.compile(r"^[A-Z0-9_-]+$")

_COMMERCE_PREFIX_KEYS = ("product", "category", "cart", "checkout", "shop")


def normalize_slug(url: Any) -> Optional[str]:
    """Reduce a URL or path to the public path used as a content slug.

    Drops query and fragment, scheme and host, forces one leading slash and
    removes a trailing slash except for the root. Empty input gives None.
    """
    if url is None:
        return None
    if not isinstance(url, str):
        raise ValidationError(f"link target must be a string, got {type(url).__name__}")
    if not url:
        return None
    clean = url.split("?", 1)[0].split("#", 1)[0]
    clean = _SCHEME_HOST_RE.sub("", clean)
    if not clean.startswith("/"):
        clean = "/" + clean
    if len(clean) > 1 and clean.endswith("/"):
        clean = clean[:-1]
    return clean


def slugify(text: str) -> str:
    """Lowercase, hyphen-separated slug for form and product names."""
    out = str(text or "").lower().strip()
    out = _NON_WORD_RE.sub("", out)
    out = _SPACE_RE.sub("-", out)
    return _DASH_RE.sub("-", out)


def normalize_coupon_code(code: Any) -> str:
    text = str(code or "").strip().upper()
    if not text:
        raise ValidationError("Coupon code is required")
    if not _COUPON_CODE_RE.match(text):
        raise ValidationError(f"Coupon code '{text}' may only contain letters, digits, '-' and '_'")
    return text


def check_slug_commerce_conflict(slug: str, url_prefixes: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return an error message when ``slug`` collides with a commerce prefix."""
    normalized = slug if slug.startswith("/") else f"/{slug}"
    prefixes = url_prefixes or config.URL_PREFIX_DEFAULTS
    for key in _COMMERCE_PREFIX_KEYS:
        prefix = prefixes.get(key)
        if not prefix:
            continue
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return (
                f'Slug "{normalized}" conflicts with commerce URL prefix "{prefix}". '
                "Choose a different slug."
            )
    return None
