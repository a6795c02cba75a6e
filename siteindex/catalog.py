"""siteindex.catalog — Write services for indexed entities.

Products, coupons and forms are the entity kinds with adjacency records.
Every mutation here goes through the projector so the derived records are
created, moved and deleted in the same call as their source, and publishes
an audit event only after the store accepted the write.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from siteindex.audit import publish_audit
from siteindex.errors import Conflict, NotFound, ValidationError
from siteindex.indexes import COUPON_CODE, FORM_SLUG
from siteindex.keyspace import entity_key, tenant_scope
from siteindex.pricing import apply_price_changes, load_products, plan_price_changes
from siteindex.projector import AdjacencyProjector
from siteindex.serialization import _now_z
from siteindex.slugs import check_slug_commerce_conflict, normalize_coupon_code, slugify
from siteindex.store import KeyValueStore
from siteindex.tenant_config import load_tenant_config

__all__ = ["Catalog", "IMMUTABLE_FIELDS"]

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("PK", "SK", "Type", "id", "tenantId", "createdAt")


class Catalog:
    def __init__(self, store: Optional[KeyValueStore] = None, projector: Optional[AdjacencyProjector] = None):
        self.store = store or (projector.store if projector else KeyValueStore())
        self.projector = projector or AdjacencyProjector(self.store)

    # -- helpers ----------------------------------------------------------

    def _load(self, tenant_id: str, kind: str, entity_id: str) -> Dict[str, Any]:
        item = self.store.get(tenant_scope(tenant_id), entity_key(kind, entity_id))
        if not item:
            raise NotFound(f"{kind} not found")
        return item

    def _new(self, tenant_id: str, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = _now_z()
        clean = {k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}
        return {**clean, "Type": kind, "id": str(uuid.uuid4()), "tenantId": tenant_id, "createdAt": now, "updatedAt": now}

    @staticmethod
    def _merge(existing: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**existing, **{k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}}
        merged["updatedAt"] = _now_z()
        return merged

    # -- products ---------------------------------------------------------

    def create_product(self, tenant_id: str, data: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not data.get("title"):
            raise ValidationError("title is required")
        product = self._new(tenant_id, "Product", data)
        product["slug"] = slugify(data.get("slug") or data["title"])
        product.setdefault("sortOrder", 0)
        item = self.projector.save(tenant_scope(tenant_id), product)
        publish_audit(
            tenant_id, "CREATE_PRODUCT", actor=actor,
            target={"title": product["title"], "id": product["id"]},
            details={"price": product.get("price"), "status": product.get("status"), "slug": product["slug"]},
        )
        return item

    def update_product(self, tenant_id: str, product_id: str, data: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        existing = self._load(tenant_id, "Product", product_id)
        merged = self._merge(existing, data)
        if data.get("slug"):
            merged["slug"] = slugify(data["slug"])
        item = self.projector.save(tenant_scope(tenant_id), merged, previous=existing)
        publish_audit(
            tenant_id, "UPDATE_PRODUCT", actor=actor,
            target={"title": merged.get("title"), "id": product_id},
            details={"updatedFields": sorted(data)},
        )
        return item

    def delete_product(self, tenant_id: str, product_id: str, *, actor: Optional[Dict[str, Any]] = None) -> None:
        existing = self._load(tenant_id, "Product", product_id)
        self.projector.remove(tenant_scope(tenant_id), existing)
        publish_audit(tenant_id, "DELETE_PRODUCT", actor=actor, target={"title": existing.get("title"), "id": product_id})

    def category_products(self, tenant_id: str, category_id: str) -> List[Dict[str, Any]]:
        return self.projector.query_category_products(tenant_scope(tenant_id), category_id)

    def bulk_price(self, tenant_id: str, body: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        scope = tenant_scope(tenant_id)
        category_id = body.get("categoryId")
        products = load_products(self.projector, scope, category_id)
        preview = plan_price_changes(
            products,
            body.get("percent"),
            body.get("roundTo", 0),
            bool(body.get("applyToSalePrice", False)),
        )
        if body.get("dryRun", True):
            return {"preview": preview, "count": len(preview)}

        result = apply_price_changes(self.projector, scope, products, preview)
        publish_audit(
            tenant_id, "BULK_PRICE_UPDATE", actor=actor,
            target={"title": f"{len(preview)} products", "id": category_id or "all"},
            details={"percent": body.get("percent"), "roundTo": body.get("roundTo", 0), "productCount": len(preview)},
        )
        out: Dict[str, Any] = {"count": len(preview), "message": f"Updated {len(preview)} product prices"}
        if result.failed:
            out["failedBatches"] = [{"batch": f.batch, "keys": f.keys, "error": f.error} for f in result.failed]
        return out

    # -- coupons ----------------------------------------------------------

    def create_coupon(self, tenant_id: str, data: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        coupon = self._new(tenant_id, "Coupon", data)
        coupon["code"] = normalize_coupon_code(data.get("code"))
        coupon.setdefault("status", "active")
        coupon["usageCount"] = 0
        item = self.projector.save(tenant_scope(tenant_id), coupon)
        publish_audit(tenant_id, "CREATE_COUPON", actor=actor, target={"title": coupon["code"], "id": coupon["id"]})
        return item

    def update_coupon(self, tenant_id: str, coupon_id: str, data: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        existing = self._load(tenant_id, "Coupon", coupon_id)
        merged = self._merge(existing, {k: v for k, v in data.items() if k != "usageCount"})
        if data.get("code"):
            merged["code"] = normalize_coupon_code(data["code"])
        item = self.projector.save(tenant_scope(tenant_id), merged, previous=existing)
        publish_audit(
            tenant_id, "UPDATE_COUPON", actor=actor,
            target={"title": merged["code"], "id": coupon_id},
            details={"updatedFields": sorted(data)},
        )
        return item

    def delete_coupon(self, tenant_id: str, coupon_id: str, *, actor: Optional[Dict[str, Any]] = None) -> None:
        existing = self._load(tenant_id, "Coupon", coupon_id)
        self.projector.remove(tenant_scope(tenant_id), existing)
        publish_audit(tenant_id, "DELETE_COUPON", actor=actor, target={"title": existing.get("code"), "id": coupon_id})

    def coupon_by_code(self, tenant_id: str, code: str) -> Dict[str, Any]:
        scope = tenant_scope(tenant_id)
        pointer = self.projector.lookup_unique(scope, COUPON_CODE, normalize_coupon_code(code))
        return self._load(tenant_id, "Coupon", pointer["couponId"])

    # -- forms ------------------------------------------------------------

    def create_form(self, tenant_id: str, data: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not data.get("name"):
            raise ValidationError("Name is required")
        slug = slugify(data.get("slug") or data["name"])
        if not slug:
            raise ValidationError("Slug is required")
        form = self._new(tenant_id, "Form", data)
        form.update(
            slug=slug,
            fields=data.get("fields") or [],
            submitButtonText=data.get("submitButtonText") or "Submit",
            successMessage=data.get("successMessage") or "Thank you for your submission!",
            status=data.get("status") or "active",
        )
        item = self.projector.save(tenant_scope(tenant_id), form)
        publish_audit(tenant_id, "CREATE_FORM", actor=actor, target={"title": form["name"], "id": form["id"]})
        return item

    def update_form(self, tenant_id: str, form_id: str, data: Dict[str, Any], *, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        existing = self._load(tenant_id, "Form", form_id)
        merged = self._merge(existing, data)
        merged["slug"] = slugify(data["slug"]) if data.get("slug") else existing["slug"]
        if not merged["slug"]:
            raise ValidationError("Slug is required")
        item = self.projector.save(tenant_scope(tenant_id), merged, previous=existing)
        publish_audit(
            tenant_id, "UPDATE_FORM", actor=actor,
            target={"title": merged.get("name"), "id": form_id},
            details={"updatedFields": sorted(data)},
        )
        return item

    def delete_form(self, tenant_id: str, form_id: str, *, actor: Optional[Dict[str, Any]] = None) -> None:
        existing = self._load(tenant_id, "Form", form_id)
        self.projector.remove(tenant_scope(tenant_id), existing)
        publish_audit(tenant_id, "DELETE_FORM", actor=actor, target={"title": existing.get("name"), "id": form_id})

    def form_by_slug(self, tenant_id: str, slug: str) -> Dict[str, Any]:
        pointer = self.projector.lookup_unique(tenant_scope(tenant_id), FORM_SLUG, slugify(slug))
        return self._load(tenant_id, "Form", pointer["formId"])

    # -- content ----------------------------------------------------------

    def guard_content_slug(self, tenant_id: str, slug: str) -> None:
        """Reject a content slug that would shadow a commerce route."""
        prefixes = load_tenant_config(self.store, tenant_id).url_prefixes
        message = check_slug_commerce_conflict(slug, prefixes)
        if message:
            raise Conflict(message)
