"""siteindex.pricing — Bulk percentage price changes.

A dry run returns the preview only. Applying it rewrites each product and
then refreshes the CATPROD# cards that carry a copy of the price, through
the projector's batched bulk path.
"""

from __future__ import annotations

import logging
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from siteindex.collector import collect_all
from siteindex.errors import ValidationError
from siteindex.keyspace import SEP, catprod_prefix, entity_key, kind_prefix
from siteindex.projector import AdjacencyProjector, BulkResult
from siteindex.serialization import _now_z

__all__ = [
    "ROUNDING_MODES",
    "apply_price_changes",
    "load_products",
    "plan_price_changes",
    "round_price",
]

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
ROUNDING_MODES = (Decimal("0"), Decimal("5"), Decimal("9"), Decimal("0.99"))


def _decimal(value: Any) -> Optional[Decimal]:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return number if number.is_finite() else None


def round_price(price: Decimal, round_to: Any = 0) -> Decimal:
    """Apply a rounding mode: 0 cents, 5 up to a multiple of 5, 9 up to the
    next ...9, 0.99 up to the next .99."""
    mode = _decimal(round_to)
    if mode == Decimal("5"):
        return ((price / 5).to_integral_value(ROUND_CEILING) * 5).quantize(_CENT)
    if mode == Decimal("9"):
        base = (price / 10).to_integral_value(ROUND_FLOOR) * 10 + 9
        return (base if base >= price else base + 10).quantize(_CENT)
    if mode == Decimal("0.99"):
        candidate = price.to_integral_value(ROUND_FLOOR) + Decimal("0.99")
        return candidate if candidate >= price else candidate + 1
    return price.quantize(_CENT, rounding=ROUND_HALF_UP)


def plan_price_changes(
    products: List[Dict[str, Any]],
    percent: Any,
    round_to: Any = 0,
    apply_to_sale_price: bool = False,
) -> List[Dict[str, Any]]:
    if isinstance(percent, bool) or not isinstance(percent, (int, float)) or percent == 0:
        raise ValidationError("percent must be a non-zero number")
    if _decimal(round_to) not in ROUNDING_MODES:
        raise ValidationError(f"roundTo must be one of 0, 5, 9, 0.99; got {round_to!r}")

    multiplier = 1 + Decimal(str(percent)) / 100
    preview: List[Dict[str, Any]] = []
    for product in products:
        old_price = _decimal(product.get("price"))
        if old_price is None or old_price <= 0:
            continue
        entry: Dict[str, Any] = {
            "id": product.get("id"),
            "title": product.get("title"),
            "oldPrice": product.get("price"),
            "newPrice": f"{round_price(old_price * multiplier, round_to):.2f}",
            "currency": product.get("currency"),
        }
        old_sale = _decimal(product.get("salePrice")) if apply_to_sale_price else None
        if old_sale is not None and old_sale > 0:
            entry["oldSalePrice"] = product.get("salePrice")
            entry["newSalePrice"] = f"{round_price(old_sale * multiplier, round_to):.2f}"
        preview.append(entry)
    return preview


def load_products(projector: AdjacencyProjector, scope: str, category_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Full product records, for one category (via CATPROD#) or all of them."""
    store = projector.store
    if not category_id:
        return collect_all(store, scope, kind_prefix("Product") + SEP)

    keys: Dict[str, str] = {}
    for card in collect_all(store, scope, catprod_prefix(category_id), projection=("SK", "id")):
        product_id = card.get("id") or str(card["SK"]).rsplit(SEP, 1)[-1]
        keys[entity_key("Product", product_id)] = str(card.get("SK"))

    products = store.batch_get(scope, keys)
    for missing in keys.keys() - {p["SK"] for p in products}:
        logger.warning("CATPROD card %s points at missing product %s", keys[missing], missing)
    return products


def apply_price_changes(
    projector: AdjacencyProjector,
    scope: str,
    products: List[Dict[str, Any]],
    preview: List[Dict[str, Any]],
) -> BulkResult:
    """Write the new prices, then refresh category cards in batches."""
    by_id = {str(p.get("id")): p for p in products}
    updated: List[Dict[str, Any]] = []
    previous: Dict[str, Dict[str, Any]] = {}
    now = _now_z()
    for entry in preview:
        product = by_id.get(str(entry["id"]))
        if product is None:
            continue
        merged = {**product, "price": entry["newPrice"], "updatedAt": now}
        if entry.get("newSalePrice"):
            merged["salePrice"] = entry["newSalePrice"]
        projector.store.put(merged)
        updated.append(merged)
        previous[str(product["id"])] = product

    result = projector.project_many(scope, updated, previous)
    if not result.ok:
        logger.warning(
            "bulk price change in %s left %d card batches unwritten", scope, len(result.failed)
        )
    return result
