"""siteindex.media_map — Content-addressed dedup map for imported media.

When media is imported from an external site the original URL is hashed
and stored as ``MEDIAMAP#<md5(oldUrl)>`` -> ``{oldUrl, newUrl}``. A later
import checks the map before downloading, and rewrites references in
imported HTML to the replacement URL.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Dict, Mapping, Optional

from siteindex.collector import collect_scope
from siteindex.errors import ValidationError
from siteindex.keyspace import SEP, kind_prefix, media_map_key, tenant_scope
from siteindex.serialization import _now_z
from siteindex.store import KeyValueStore

__all__ = [
    "hash_url",
    "load_media_map",
    "lookup_media_url",
    "rewrite_media_urls",
    "write_media_map_entry",
]

logger = logging.getLogger(__name__)

_EXT_RE = re.compile(r"\.\w+$")


def hash_url(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def write_media_map_entry(store: KeyValueStore, tenant_id: str, old_url: str, new_url: str) -> Dict[str, str]:
    if not old_url or not new_url:
        raise ValidationError("old_url and new_url are required")
    item = {
        "PK": tenant_scope(tenant_id),
        "SK": media_map_key(hash_url(old_url)),
        "Type": "MediaMap",
        "oldUrl": old_url,
        "newUrl": new_url,
        "createdAt": _now_z(),
    }
    store.put(item)
    return item


def lookup_media_url(store: KeyValueStore, tenant_id: str, old_url: str) -> Optional[str]:
    """Replacement URL if ``old_url`` was already imported."""
    item = store.get(tenant_scope(tenant_id), media_map_key(hash_url(old_url)))
    if not item:
        return None
    # md5 collisions are not expected, but a mismatching record is not ours.
    if item.get("oldUrl") != old_url:
        logger.warning("media map hash collision for %s", old_url)
        return None
    return item.get("newUrl")


def load_media_map(store: KeyValueStore, tenant_id: str) -> Dict[str, str]:
    """Every oldUrl -> newUrl mapping of a tenant."""
    mapping: Dict[str, str] = {}
    records = collect_scope(
        store,
        tenant_scope(tenant_id),
        kind_prefix("MediaMapEntry") + SEP,
        projection=("oldUrl", "newUrl"),
    )
    for item in records:
        if item.get("oldUrl") and item.get("newUrl"):
            mapping[item["oldUrl"]] = item["newUrl"]
    return mapping


def rewrite_media_urls(html: str, mapping: Mapping[str, str]) -> str:
    """Replace mapped URLs in ``html``, including resized ``-WxH`` variants."""
    for old_url, new_url in mapping.items():
        ext_match = _EXT_RE.search(old_url)
        ext = ext_match.group(0) if ext_match else ""
        base = old_url[: len(old_url) - len(ext)]
        pattern = re.compile(re.escape(base) + r"(?:-\d+x\d+)?" + re.escape(ext))
        html = pattern.sub(lambda _m, url=new_url: url, html)
    return html
