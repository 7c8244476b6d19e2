from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from app.db.models.purchasing import PO_DRAFT, PO_STATUSES


class PurchaseOrderItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(default=None, alias="productId")
    supplier_item_id: Optional[str] = Field(default=None, alias="supplierItemId")
    variation_id: Optional[int] = Field(default=None, alias="variationId")
    name: str = Field(min_length=1)
    sku: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0, alias="unitCost")

    @field_validator("variation_id", mode="before")
    @classmethod
    def _zero_to_none(cls, v):
        return v or None


def _check_status(v):
    v = str(v).upper()
    if v not in PO_STATUSES:
        raise ValueError(f"status must be one of {', '.join(PO_STATUSES)}")
    return v


POStatus = Annotated[str, BeforeValidator(_check_status)]


class PurchaseOrderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    supplier_id: Optional[str] = Field(default=None, alias="supplierId")
    status: POStatus = PO_DRAFT
    order_date: Optional[date] = Field(default=None, alias="orderDate")
    expected_date: Optional[date] = Field(default=None, alias="expectedDate")
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")
    tracking_link: Optional[str] = Field(default=None, alias="trackingLink")
    notes: Optional[str] = None
    items: list[PurchaseOrderItemIn] = Field(default_factory=list)


class PurchaseOrderUpdate(BaseModel):
    """Partial update; omitted fields are left untouched."""

    model_config = ConfigDict(populate_by_name=True)

    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    supplier_id: Optional[str] = Field(default=None, alias="supplierId")
    status: Optional[POStatus] = None
    order_date: Optional[date] = Field(default=None, alias="orderDate")
    expected_date: Optional[date] = Field(default=None, alias="expectedDate")
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")
    tracking_link: Optional[str] = Field(default=None, alias="trackingLink")
    notes: Optional[str] = None
    items: Optional[list[PurchaseOrderItemIn]] = None
