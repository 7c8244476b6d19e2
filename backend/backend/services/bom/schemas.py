from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BOMItemIn(BaseModel):
    """One component line of a composition edit."""

    model_config = ConfigDict(populate_by_name=True)

    supplier_item_id: Optional[str] = Field(default=None, alias="supplierItemId")
    child_product_id: Optional[str] = Field(default=None, alias="childProductId")
    child_variation_id: Optional[int] = Field(default=None, alias="childVariationId")
    internal_product_id: Optional[str] = Field(default=None, alias="internalProductId")
    quantity: Decimal = Field(gt=0)
    waste_factor: Decimal = Field(default=Decimal("0"), ge=0, alias="wasteFactor")
    is_active: bool = Field(default=True, alias="isActive")
    deactivated_reason: Optional[str] = Field(default=None, max_length=64, alias="deactivatedReason")

    @field_validator("supplier_item_id", "child_product_id", "internal_product_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return v or None

    @field_validator("child_variation_id", mode="before")
    @classmethod
    def _zero_variation_to_none(cls, v):
        # 0 means "the base product", i.e. no specific variation
        return v or None

    @model_validator(mode="after")
    def _exactly_one_reference(self):
        refs = [r for r in (self.supplier_item_id, self.child_product_id, self.internal_product_id) if r]
        if len(refs) != 1:
            raise ValueError(
                "exactly one of supplier_item_id, child_product_id, internal_product_id must be set"
            )
        if self.child_variation_id is not None and not self.child_product_id:
            raise ValueError("child_variation_id requires child_product_id")
        return self


class CompositionIn(BaseModel):
    variation_id: int = Field(default=0, ge=0, alias="variationId")
    items: list[dict] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)
