"""siteindex.tenant_config — Tenant settings reader (navigation, URL prefixes)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from siteindex import config
from siteindex.keyspace import tenant_config_key
from siteindex.store import KeyValueStore

__all__ = ["TenantConfig", "load_tenant_config"]


def _hrefs(links: Any) -> List[str]:
    out: List[str] = []
    for link in links or []:
        if isinstance(link, str):
            href = link
        elif isinstance(link, dict):
            href = link.get("href") or ""
        else:
            continue
        if isinstance(href, str) and href.strip():
            out.append(href.strip())
    return out


@dataclass
class TenantConfig:
    tenant_id: str
    nav_links: List[str] = field(default_factory=list)
    footer_links: List[str] = field(default_factory=list)
    url_prefixes: Dict[str, str] = field(default_factory=lambda: dict(config.URL_PREFIX_DEFAULTS))

    @classmethod
    def from_item(cls, tenant_id: str, item: Optional[Dict[str, Any]]) -> "TenantConfig":
        item = item or {}
        prefixes = dict(config.URL_PREFIX_DEFAULTS)
        prefixes.update({k: v for k, v in (item.get("urlPrefixes") or {}).items() if isinstance(v, str) and v})
        return cls(
            tenant_id=tenant_id,
            nav_links=_hrefs(item.get("navLinks")),
            footer_links=_hrefs(item.get("footerLinks")),
            url_prefixes=prefixes,
        )

    @property
    def global_links(self) -> List[str]:
        return [*self.nav_links, *self.footer_links]


def load_tenant_config(store: KeyValueStore, tenant_id: str) -> TenantConfig:
    key = tenant_config_key(tenant_id)
    return TenantConfig.from_item(tenant_id, store.get(key["PK"], key["SK"]))
