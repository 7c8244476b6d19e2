"""
Stock mutator: the stock effect of a purchase order.

receive_stock and unreceive_stock share one resolution path (_resolve_target)
and differ only in the sign of the applied quantity, so for a PO whose lines
are unchanged in between, unreceive exactly undoes receive.
reverse_recorded_receipt undoes receipts recorded before lines carried a
variation link; reprocessing uses it.

Neither function checks PO status; the caller owns the "apply once per
RECEIVED period" rule. Neither performs I/O beyond the stock write: reindexing
and BOM parent cascades are the caller's job (see services.purchasing.service).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.core.errors import PurchaseOrderNotFoundError
from app.core.logging import get_logger
from app.db.models.catalog import Product, ProductVariation
from app.db.models.purchasing import PurchaseOrder, PurchaseOrderItem
from services.bom.composition import has_derived_stock
from services.inventory.levels import shift_stock_level

logger = get_logger("purchasing.stock")

RECEIVE = 1
UNRECEIVE = -1


@dataclass
class StockMutationResult:
    updated_count: int = 0
    updated_product_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def touch(self, product_id: str) -> None:
        self.updated_count += 1
        if product_id not in self.updated_product_ids:
            self.updated_product_ids.append(product_id)

    def to_dict(self) -> dict:
        return {
            "updated_count": self.updated_count,
            "updated_product_ids": list(self.updated_product_ids),
            "errors": list(self.errors),
        }


class _SkipItem(Exception):
    """A line that deterministically cannot be mutated; message goes to errors[]."""


def find_variation_by_sku(product: Product, sku: str | None) -> ProductVariation | None:
    if not sku:
        return None
    for v in product.variations:
        if v.sku and v.sku == sku:
            return v
    return None


def _resolve_target(
    item: PurchaseOrderItem, product: Product, direction: int, *, unlinked_to_product: bool = False
) -> Product | ProductVariation:
    if item.variation_id:
        for v in product.variations:
            if v.variation_id == item.variation_id:
                return v
        raise _SkipItem(f"{item.name}: Variation {item.variation_id} not found locally - sync products first")

    if unlinked_to_product:
        return product

    by_sku = find_variation_by_sku(product, item.sku)
    if by_sku is not None:
        return by_sku

    if product.is_variable:
        verb = "set" if direction == RECEIVE else "reverse"
        raise _SkipItem(f"{product.name}: Cannot {verb} stock on variable parent - specify a variation")
    return product


def apply_stock_effect(
    db: Session, po: PurchaseOrder, direction: int, *, unlinked_to_product: bool = False
) -> StockMutationResult:
    """Apply +quantity (RECEIVE) or -quantity (UNRECEIVE) for every line; does not commit.

    A receive that resolves a variation by SKU records the link on the line, so
    the PO states exactly which row it credited. ``unlinked_to_product`` sends
    lines without a variation link to the product row itself.
    """
    result = StockMutationResult()
    action = "received" if direction == RECEIVE else "unreceived"

    for item in po.items:
        if not item.product_id:
            continue
        product = db.get(Product, item.product_id)
        if product is None or product.tenant_id != po.tenant_id:
            result.errors.append(f"{item.name}: product {item.product_id} not found")
            continue

        try:
            if has_derived_stock(db, product.id):
                logger.warning("Skipped stock update for BOM product",
                               extra={"product_id": product.id, "product_name": product.name})
                raise _SkipItem(f"{product.name} is a BOM product - stock not updated")

            target = _resolve_target(item, product, direction, unlinked_to_product=unlinked_to_product)
            previous, new = shift_stock_level(target, direction * item.quantity)
        except _SkipItem as e:
            logger.warning("Purchase order line not applied", extra={"po_item_id": item.id, "reason": str(e)})
            result.errors.append(str(e))
            continue
        except Exception as e:
            logger.exception("Stock update failed for purchase order line", extra={"po_item_id": item.id})
            result.errors.append(f"Failed to update stock for item \"{item.name}\": {e}")
            continue

        logger.info(
            f"Stock {action}",
            extra={
                "product_id": product.id,
                "variation_id": getattr(target, "variation_id", None),
                "previous_stock": previous,
                "delta": direction * item.quantity,
                "new_stock": new,
            },
        )
        if direction == RECEIVE and isinstance(target, ProductVariation) and not item.variation_id:
            item.variation_id = target.variation_id
        result.touch(product.id)

    return result


def _load_po(db: Session, tenant_id: str, purchase_order_id: str) -> PurchaseOrder:
    po = (
        db.query(PurchaseOrder)
        .filter(PurchaseOrder.id == purchase_order_id, PurchaseOrder.tenant_id == tenant_id)
        .first()
    )
    if po is None:
        raise PurchaseOrderNotFoundError(purchase_order_id)
    return po


def receive_stock(db: Session, tenant_id: str, purchase_order_id: str) -> StockMutationResult:
    po = _load_po(db, tenant_id, purchase_order_id)
    try:
        result = apply_stock_effect(db, po, RECEIVE)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result


def unreceive_stock(db: Session, tenant_id: str, purchase_order_id: str) -> StockMutationResult:
    po = _load_po(db, tenant_id, purchase_order_id)
    try:
        result = apply_stock_effect(db, po, UNRECEIVE)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result


def reverse_recorded_receipt(db: Session, tenant_id: str, purchase_order_id: str) -> StockMutationResult:
    """Undo a RECEIVED PO's stock effect where it was originally applied.

    Linked lines are reversed on their variation. Lines without a link were
    credited to the product row when they were received, even if a variation
    SKU matches today, so they are reversed on the product row. BOM products
    are still skipped.
    """
    po = _load_po(db, tenant_id, purchase_order_id)
    try:
        result = apply_stock_effect(db, po, UNRECEIVE, unlinked_to_product=True)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result
