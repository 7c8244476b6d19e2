"""
MODULE: CATALOG
Sellable products and their variations, suppliers, supplier items and
internally manufactured components. These are the stock-carrying entities a
bill of materials can reference.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, DateTime, Integer, Numeric, ForeignKey, JSON, Boolean, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasTenant

# ============= PRODUCTS =============

class Product(Base, HasId, HasCreatedAt, HasTenant):
    """Sellable product synced from the storefront"""
    __tablename__ = "catalog_product"

    external_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)  # storefront product id
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    product_type: Mapped[str] = mapped_column(String(32), default="simple", nullable=False)
    # simple|variable|grouped|external

    # Stock
    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stock_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock_status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # instock|outofstock|onbackorder

    # Costing
    cogs: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    weight: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)

    # Raw storefront payload; variations_data carries variation attributes even
    # when the variation rows were never synced.
    raw_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    variations: Mapped[list["ProductVariation"]] = relationship(
        back_populates="product", order_by="ProductVariation.variation_id", cascade="all, delete-orphan"
    )

    @property
    def is_variable(self) -> bool:
        raw = self.raw_data or {}
        return "variable" in (self.product_type or "") or "variable" in str(raw.get("type") or "") or bool(raw.get("variations"))


class ProductVariation(Base, HasId, HasCreatedAt):
    """A narrower SKU of a product, keyed by (product_id, variation_id)"""
    __tablename__ = "catalog_product_variation"

    product_id: Mapped[str] = mapped_column(ForeignKey("catalog_product.id"), nullable=False, index=True)
    variation_id: Mapped[int] = mapped_column(Integer, nullable=False)  # storefront variation ordinal
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stock_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock_status: Mapped[str | None] = mapped_column(String(16), nullable=True)

    cogs: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    weight: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    attributes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    product: Mapped[Product] = relationship(back_populates="variations")

    __table_args__ = (
        UniqueConstraint("product_id", "variation_id", name="uq_variation_product_variation"),
    )

# ============= SUPPLIERS =============

class Supplier(Base, HasId, HasCreatedAt, HasTenant):
    __tablename__ = "catalog_supplier"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class SupplierItem(Base, HasId, HasCreatedAt):
    """An item a supplier sells; usable as a raw BOM component"""
    __tablename__ = "catalog_supplier_item"

    supplier_id: Mapped[str] = mapped_column(ForeignKey("catalog_supplier.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True)
    cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0, nullable=False)
    quantity_available: Mapped[int | None] = mapped_column(Integer, nullable=True)

    supplier: Mapped[Supplier] = relationship()

# ============= INTERNAL PRODUCTS =============

class InternalProduct(Base, HasId, HasCreatedAt, HasTenant):
    """Manufactured sub-component, never sold directly"""
    __tablename__ = "catalog_internal_product"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cogs: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("catalog_supplier.id"), nullable=True)

    supplier: Mapped[Supplier | None] = relationship()


Index("ix_catalog_product_tenant_sku", Product.tenant_id, Product.sku)
