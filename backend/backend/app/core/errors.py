"""
Typed exceptions for the inventory engine.

Every error carries a machine-readable ``code`` so routers can translate it
into an HTTP response without parsing messages.

    InventoryEngineError
    +-- CompositionValidationError
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- InternalProductNotFoundError
    |   +-- BOMItemNotFoundError
    +-- PurchaseOrderLockedError
    +-- ReprocessRestoreError

Resolution failures (a BOM component that cannot be matched) are not
exceptions: they are reported as data, never raised.
"""

from __future__ import annotations

from typing import Any


class InventoryEngineError(Exception):
    code: str = "INVENTORY_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class CompositionValidationError(InventoryEngineError):
    """One or more composition items were rejected; nothing was written."""

    code = "COMPOSITION_INVALID"

    def __init__(self, rejected_items: list[dict[str, Any]]):
        self.rejected_items = rejected_items
        reasons = "; ".join(f"item {r['index']}: {r['reason']}" for r in rejected_items)
        super().__init__(f"Invalid composition items: {reasons}")

    def to_detail(self) -> dict[str, Any]:
        return {**super().to_detail(), "rejected_items": self.rejected_items}


class NotFoundError(InventoryEngineError, LookupError):
    code = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class PurchaseOrderNotFoundError(NotFoundError):
    code = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, purchase_order_id: str):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order {purchase_order_id} not found")


class InternalProductNotFoundError(NotFoundError):
    code = "INTERNAL_PRODUCT_NOT_FOUND"

    def __init__(self, internal_product_id: str):
        self.internal_product_id = internal_product_id
        super().__init__(f"Internal product {internal_product_id} not found")


class BOMItemNotFoundError(NotFoundError):
    code = "BOM_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"BOM item {item_id} not found")


class PurchaseOrderLockedError(InventoryEngineError):
    code = "PURCHASE_ORDER_LOCKED"


class ReprocessRestoreError(InventoryEngineError):
    """A PO could not be set back to RECEIVED; it needs manual intervention."""

    code = "REPROCESS_RESTORE_FAILED"

    def __init__(self, purchase_order_id: str, cause: BaseException, *, label: str | None = None):
        self.purchase_order_id = purchase_order_id
        self.label = label or purchase_order_id
        self.cause = cause
        super().__init__(
            f"Purchase order {purchase_order_id} left in DRAFT with reversed stock: {cause}"
        )
