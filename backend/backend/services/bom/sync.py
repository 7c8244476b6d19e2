from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.models.bom import BOM, BOMItem
from app.db.models.catalog import Product, ProductVariation
from services.bom.composition import find_parent_boms
from services.bom.effective_stock import load_effective_stock
from services.inventory.levels import set_stock_level

logger = get_logger("bom.sync")


@dataclass
class SyncOutcome:
    product_id: str
    variation_id: int
    previous_stock: int | None
    new_stock: int | None
    changed: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def sync_effective_stock(db: Session, tenant_id: str, product_id: str, variation_id: int = 0, *, commit: bool = True) -> SyncOutcome:
    """Write the calculated effective stock back to the owning product/variation when it diverges."""
    result = load_effective_stock(db, tenant_id, product_id, variation_id)
    if result is None or result.effective_stock is None:
        return SyncOutcome(product_id, variation_id, None, None, False, error="no active composition")
    if not result.needs_sync:
        logger.debug("Effective stock already in sync", extra={"product_id": product_id, "variation_id": variation_id,
                                                                "stock": result.effective_stock})
        return SyncOutcome(product_id, variation_id, result.current_stored_stock, result.effective_stock, False)

    if variation_id:
        target = (
            db.query(ProductVariation)
            .filter(ProductVariation.product_id == product_id, ProductVariation.variation_id == variation_id)
            .first()
        )
    else:
        target = db.query(Product).filter(Product.id == product_id, Product.tenant_id == tenant_id).first()
    if target is None:
        logger.warning("Cannot write effective stock: owner has no local record",
                       extra={"product_id": product_id, "variation_id": variation_id})
        return SyncOutcome(product_id, variation_id, result.current_stored_stock, result.effective_stock, False,
                           error="owner not found")

    set_stock_level(target, result.effective_stock)
    if commit:
        db.commit()
    logger.info("Effective stock written", extra={"product_id": product_id, "variation_id": variation_id,
                                                  "previous_stock": result.current_stored_stock,
                                                  "new_stock": result.effective_stock})
    return SyncOutcome(product_id, variation_id, result.current_stored_stock, result.effective_stock, True)


def sync_all_compositions(db: Session, tenant_id: str) -> dict:
    boms = (
        db.query(BOM)
        .filter(BOM.tenant_id == tenant_id, BOM.items.any(BOMItem.is_active == True))  # noqa: E712
        .order_by(BOM.created_at.asc(), BOM.id.asc())
        .all()
    )
    keys = [(b.product_id, b.variation_id) for b in boms]
    synced = skipped = failed = 0
    for product_id, variation_id in keys:
        try:
            outcome = sync_effective_stock(db, tenant_id, product_id, variation_id)
        except Exception:
            db.rollback()
            logger.exception("Effective stock sync failed", extra={"product_id": product_id, "variation_id": variation_id})
            failed += 1
            continue
        if outcome.error:
            failed += 1
        elif outcome.changed:
            synced += 1
        else:
            skipped += 1
    logger.info("Bulk effective stock sync complete",
                extra={"total": len(keys), "synced": synced, "skipped": skipped, "failed": failed})
    return {"total": len(keys), "synced": synced, "skipped": skipped, "failed": failed}


def cascade_to_parents(
    db: Session,
    tenant_id: str,
    *,
    product_ids: Iterable[str] = (),
    internal_product_ids: Iterable[str] = (),
) -> list[str]:
    """Re-sync every BOM consuming the given components; returns parents whose stock changed."""
    changed: list[str] = []
    for bom in find_parent_boms(db, tenant_id, product_ids=product_ids, internal_product_ids=internal_product_ids):
        try:
            outcome = sync_effective_stock(db, tenant_id, bom.product_id, bom.variation_id)
        except Exception:
            db.rollback()
            logger.warning("Cascade sync failed for BOM parent", exc_info=True,
                           extra={"product_id": bom.product_id, "variation_id": bom.variation_id})
            continue
        if outcome.changed and bom.product_id not in changed:
            changed.append(bom.product_id)
    return changed
