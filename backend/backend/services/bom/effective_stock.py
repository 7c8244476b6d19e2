"""
Effective stock: how many finished units the current component stock can build.

calculate_effective_stock is a pure function of a resolved composition. It
never writes; services.bom.sync decides whether to apply the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_FLOOR

from sqlalchemy.orm import Session

from services.bom.composition import Composition, ResolvedComponent, get_composition


@dataclass
class ComponentBreakdown:
    item_id: str
    kind: str
    label: str
    component_id: str | None
    resolved: bool
    required_quantity: Decimal
    available_stock: int
    buildable_units: int | None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "kind": self.kind,
            "label": self.label,
            "component_id": self.component_id,
            "resolved": self.resolved,
            "required_quantity": float(self.required_quantity),
            "available_stock": self.available_stock,
            "buildable_units": self.buildable_units,
        }


@dataclass
class EffectiveStockResult:
    product_id: str
    variation_id: int
    effective_stock: int | None
    current_stored_stock: int | None
    needs_sync: bool
    components: list[ComponentBreakdown] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "effective_stock": self.effective_stock,
            "current_stored_stock": self.current_stored_stock,
            "needs_sync": self.needs_sync,
            "components": [c.to_dict() for c in self.components],
        }


def buildable_units(available_stock: int, required_quantity: Decimal) -> int:
    """floor(available / required), never below zero."""
    if available_stock <= 0:
        return 0
    units = (Decimal(available_stock) / required_quantity).to_integral_value(rounding=ROUND_FLOOR)
    return max(0, int(units))


def _breakdown(item: ResolvedComponent) -> ComponentBreakdown:
    required = item.required_quantity
    # Unresolved components count as empty shelves.
    available = (item.available_stock or 0) if item.resolved else 0
    units = buildable_units(available, required) if required > 0 else None
    return ComponentBreakdown(
        item_id=item.item_id,
        kind=item.kind,
        label=item.label,
        component_id=item.component_id,
        resolved=item.resolved,
        required_quantity=required,
        available_stock=available,
        buildable_units=units,
    )


def calculate_effective_stock(composition: Composition) -> EffectiveStockResult:
    components = [_breakdown(i) for i in composition.active_items]
    constraining = [c.buildable_units for c in components if c.buildable_units is not None]
    effective = min(constraining) if constraining else None
    stored = composition.current_stored_stock
    return EffectiveStockResult(
        product_id=composition.product_id,
        variation_id=composition.variation_id,
        effective_stock=effective,
        current_stored_stock=stored,
        needs_sync=effective is not None and effective != stored,
        components=components,
    )


def load_effective_stock(db: Session, tenant_id: str, product_id: str, variation_id: int = 0) -> EffectiveStockResult | None:
    composition = get_composition(db, tenant_id, product_id, variation_id)
    if composition is None:
        return None
    return calculate_effective_stock(composition)
