"""siteindex.indexes — Adjacency index definitions and the kind registry.

Each index answers one question for one source entity: "which derived
records should exist right now?" The projector diffs that answer against
the answer for the previous version of the entity, so an index never needs
to remember what it wrote.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence, Tuple

from siteindex.errors import ValidationError
from siteindex.keyspace import catprod_key, entity_key

__all__ = [
    "AdjacencyIndex",
    "CATEGORY_MEMBERSHIP",
    "COUPON_CODE",
    "CategoryMembershipIndex",
    "DEFAULT_REGISTRY",
    "FORM_SLUG",
    "UniqueKeyIndex",
]

# Product fields copied onto every CATPROD# record so category listings
# never have to fetch the full product.
CARD_FIELDS = (
    "title",
    "slug",
    "sku",
    "price",
    "currency",
    "salePrice",
    "imageLink",
    "availability",
    "status",
    "tags",
    "volumePricing",
    "categoryIds",
    "availableFrom",
    "availableUntil",
)


class AdjacencyIndex:
    """Base protocol: ``desired`` maps sort key -> full derived item."""

    name = "adjacency"
    unique = False

    def desired(self, scope: str, entity: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    def delete_set(self, scope: str, entity: Mapping[str, Any]) -> List[str]:
        """Every key this entity's current attributes imply; used on delete."""
        return list(self.desired(scope, entity))


def _entity_id(entity: Mapping[str, Any]) -> str:
    entity_id = str(entity.get("id") or "").strip()
    if not entity_id:
        raise ValidationError("entity requires an 'id'")
    return entity_id


def _category_ids(entity: Mapping[str, Any]) -> List[str]:
    raw = entity.get("categoryIds") or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple, set)):
        raise ValidationError("categoryIds must be a list of strings")
    seen: Dict[str, None] = {}
    for value in raw:
        if not isinstance(value, str):
            raise ValidationError("categoryIds must contain only strings")
        if value.strip():
            seen[value.strip()] = None
    return list(seen)


class CategoryMembershipIndex(AdjacencyIndex):
    """One ``CATPROD#<categoryId>#<productId>`` card per category of a product."""

    name = "category-membership"

    def desired(self, scope: str, entity: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
        product_id = _entity_id(entity)
        category_ids = _category_ids(entity)
        out: Dict[str, Dict[str, Any]] = {}
        for category_id in category_ids:
            sk = catprod_key(category_id, product_id)
            item: Dict[str, Any] = {
                "PK": scope,
                "SK": sk,
                "Type": "CategoryProduct",
                "id": product_id,
                "categoryId": category_id,
                "sortOrder": entity.get("sortOrder") or 0,
            }
            for name in CARD_FIELDS:
                if entity.get(name) is not None:
                    item[name] = entity[name]
            item["categoryIds"] = category_ids
            out[sk] = item
        return out


class UniqueKeyIndex(AdjacencyIndex):
    """Pointer record from a business key to its owner; doubles as the
    uniqueness constraint the store does not have."""

    unique = True

    def __init__(
        self,
        name: str,
        pointer_kind: str,
        key_attr: str,
        owner_attr: str,
        copied: Tuple[Tuple[str, str], ...] = (),
    ):
        self.name = name
        self.pointer_kind = pointer_kind
        self.key_attr = key_attr
        self.owner_attr = owner_attr
        self.copied = copied

    def __repr__(self) -> str:
        return f"UniqueKeyIndex({self.name!r})"

    def pointer_key(self, entity: Mapping[str, Any]) -> str:
        value = str(entity.get(self.key_attr) or "").strip()
        if not value:
            raise ValidationError(f"'{self.key_attr}' is required")
        return entity_key(self.pointer_kind, value)

    def desired(self, scope: str, entity: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
        sk = self.pointer_key(entity)
        item: Dict[str, Any] = {
            "PK": scope,
            "SK": sk,
            "Type": self.pointer_kind,
            self.owner_attr: _entity_id(entity),
            self.key_attr: entity.get(self.key_attr),
        }
        for target, source in self.copied:
            if entity.get(source) is not None:
                item[target] = entity[source]
        return {sk: item}

    def owner_of(self, pointer: Mapping[str, Any]) -> str:
        return str(pointer.get(self.owner_attr) or "")


CATEGORY_MEMBERSHIP = CategoryMembershipIndex()

COUPON_CODE = UniqueKeyIndex(
    name="coupon-code",
    pointer_kind="CouponCode",
    key_attr="code",
    owner_attr="couponId",
    copied=(("status", "status"),),
)

FORM_SLUG = UniqueKeyIndex(
    name="form-slug",
    pointer_kind="FormSlug",
    key_attr="slug",
    owner_attr="formId",
    copied=(("formName", "name"),),
)

DEFAULT_REGISTRY: Dict[str, Sequence[AdjacencyIndex]] = {
    "Product": (CATEGORY_MEMBERSHIP,),
    "Coupon": (COUPON_CODE,),
    "Form": (FORM_SLUG,),
}
