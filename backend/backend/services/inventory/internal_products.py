from __future__ import annotations

from sqlalchemy.orm import Session

from app.core.errors import InternalProductNotFoundError
from app.core.logging import get_logger
from app.db.models.catalog import InternalProduct

logger = get_logger("inventory.internal_products")


def adjust_internal_stock(db: Session, tenant_id: str, internal_product_id: str, delta: int, reason: str | None = None) -> InternalProduct:
    """Shift an internal product's stock by ``delta``, clamped at zero.

    BOM parents consuming it are re-synced by the caller (see
    services.search.indexing.schedule_stock_propagation).
    """
    ip = (
        db.query(InternalProduct)
        .filter(InternalProduct.id == internal_product_id, InternalProduct.tenant_id == tenant_id)
        .first()
    )
    if ip is None:
        raise InternalProductNotFoundError(internal_product_id)

    previous = ip.stock_quantity or 0
    ip.stock_quantity = max(0, previous + delta)
    db.commit()
    db.refresh(ip)
    logger.info(
        "Internal product stock adjusted",
        extra={
            "internal_product_id": ip.id,
            "previous_stock": previous,
            "delta": delta,
            "new_stock": ip.stock_quantity,
            "reason": reason,
        },
    )
    return ip
