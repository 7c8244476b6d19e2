"""
MODULE: BILL OF MATERIALS
One BOM per (product, variation); variation_id 0 is the base product.
"""

from __future__ import annotations

from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, ForeignKey, Boolean, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasTenant
from app.db.models.catalog import Product, SupplierItem


class BOM(Base, HasId, HasCreatedAt, HasTenant):
    __tablename__ = "bom"

    product_id: Mapped[str] = mapped_column(ForeignKey("catalog_product.id"), nullable=False, index=True)
    variation_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    product: Mapped[Product] = relationship()
    items: Mapped[list["BOMItem"]] = relationship(
        back_populates="bom", order_by="BOMItem.position", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("product_id", "variation_id", name="uq_bom_product_variation"),
    )


class BOMItem(Base, HasId, HasCreatedAt):
    """A component consumed per finished unit.

    Exactly one of supplier_item_id / child_product_id / internal_product_id is
    expected. child_variation_id has no foreign key: it names a storefront
    variation ordinal that may never have been synced locally.
    """
    __tablename__ = "bom_item"

    bom_id: Mapped[str] = mapped_column(ForeignKey("bom.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Component reference
    supplier_item_id: Mapped[str | None] = mapped_column(ForeignKey("catalog_supplier_item.id"), nullable=True, index=True)
    child_product_id: Mapped[str | None] = mapped_column(ForeignKey("catalog_product.id"), nullable=True, index=True)
    child_variation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    internal_product_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    waste_factor: Mapped[Decimal] = mapped_column(Numeric(10, 4), default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Why an inactive item was switched off (MANUAL, PRODUCT_404, ...); NULL while active.
    deactivated_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    bom: Mapped[BOM] = relationship(back_populates="items")
    supplier_item: Mapped[SupplierItem | None] = relationship()
    child_product: Mapped[Product | None] = relationship(foreign_keys=[child_product_id])


Index("ix_bom_item_bom_position", BOMItem.bom_id, BOMItem.position)
Index("ix_bom_item_inactive", BOMItem.is_active, BOMItem.bom_id)
