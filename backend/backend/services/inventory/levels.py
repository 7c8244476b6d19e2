from __future__ import annotations

from app.db.models.catalog import Product, ProductVariation


def stock_status_for(quantity: int | None) -> str:
    return "instock" if (quantity or 0) > 0 else "outofstock"


def set_stock_level(target: Product | ProductVariation, quantity: int) -> int:
    """Write an absolute stock level and the matching stock status."""
    target.stock_quantity = quantity
    target.manage_stock = True
    target.stock_status = stock_status_for(quantity)
    return quantity


def shift_stock_level(target: Product | ProductVariation, delta: int) -> tuple[int, int]:
    """Apply a relative stock change; returns (previous, new).

    The stored quantity is never clamped so that a later opposite shift
    restores it exactly. A NULL stock is treated as zero, and any shift starts
    tracking the row (manage_stock=True): an untracked row that is received and
    then unreceived ends at 0, not NULL.
    """
    previous = target.stock_quantity or 0
    new = previous + delta
    set_stock_level(target, new)
    return previous, new
