"""
MODULE: PURCHASING
Purchase orders whose RECEIVED status carries a stock effect on the linked
products and variations.
"""

from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import String, DateTime, Date, Integer, Numeric, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasTenant
from app.db.models.catalog import Product, Supplier, SupplierItem

PO_DRAFT = "DRAFT"
PO_ORDERED = "ORDERED"
PO_RECEIVED = "RECEIVED"
PO_CANCELLED = "CANCELLED"
PO_STATUSES = (PO_DRAFT, PO_ORDERED, PO_RECEIVED, PO_CANCELLED)

# ============= PURCHASE ORDERS =============

class PurchaseOrder(Base, HasId, HasCreatedAt, HasTenant):
    """Purchase order master"""
    __tablename__ = "purchase_order"

    order_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("catalog_supplier.id"), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(16), default=PO_DRAFT, nullable=False, index=True)
    # DRAFT|ORDERED|RECEIVED|CANCELLED

    order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tracking_link: Mapped[str | None] = mapped_column(String(512), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier: Mapped[Supplier | None] = relationship()
    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="purchase_order", order_by="PurchaseOrderItem.line_number", cascade="all, delete-orphan"
    )

    @property
    def label(self) -> str:
        return self.order_number or self.id


class PurchaseOrderItem(Base, HasId, HasCreatedAt):
    """Purchase order line; variation_id is the resolved storefront variation, if known"""
    __tablename__ = "purchase_order_item"

    purchase_order_id: Mapped[str] = mapped_column(ForeignKey("purchase_order.id"), nullable=False, index=True)
    line_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    product_id: Mapped[str | None] = mapped_column(ForeignKey("catalog_product.id"), nullable=True, index=True)
    supplier_item_id: Mapped[str | None] = mapped_column(ForeignKey("catalog_supplier_item.id"), nullable=True)
    variation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="items")
    product: Mapped[Product | None] = relationship()
    supplier_item: Mapped[SupplierItem | None] = relationship()


Index("ix_po_tenant_status", PurchaseOrder.tenant_id, PurchaseOrder.status)
