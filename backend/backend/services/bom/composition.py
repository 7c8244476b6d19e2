"""
Composition store: read and replace the bill of materials of a product or
variation.

Reads resolve every item against live catalog rows. References that cannot be
resolved are kept as unresolved items (labelled where the parent product's
raw payload allows it) instead of being dropped, because catalog sync is not
guaranteed to have created every variation a BOM points at.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Iterable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.errors import BOMItemNotFoundError, CompositionValidationError, ProductNotFoundError
from app.core.logging import get_logger
from app.db.models.bom import BOM, BOMItem
from app.db.models.catalog import InternalProduct, Product, ProductVariation, Supplier, SupplierItem
from services.bom.schemas import BOMItemIn

logger = get_logger("bom.composition")

KIND_SUPPLIER_ITEM = "supplier_item"
KIND_CHILD_PRODUCT = "child_product"
KIND_CHILD_VARIATION = "child_variation"
KIND_INTERNAL_PRODUCT = "internal_product"
KIND_INVALID = "invalid"

DEACTIVATED_MANUAL = "MANUAL"
DEACTIVATED_UNKNOWN = "UNKNOWN"


@dataclass
class ResolvedComponent:
    item_id: str
    position: int
    kind: str
    quantity: Decimal
    waste_factor: Decimal
    is_active: bool
    resolved: bool
    label: str
    component_id: str | None = None
    child_variation_id: int | None = None
    available_stock: int | None = None
    unit_cost: Decimal | None = None
    issue: str | None = None
    deactivated_reason: str | None = None

    @property
    def required_quantity(self) -> Decimal:
        return self.quantity * (1 + self.waste_factor)


@dataclass
class Composition:
    bom_id: str
    product_id: str
    variation_id: int
    current_stored_stock: int | None
    items: list[ResolvedComponent] = field(default_factory=list)

    @property
    def active_items(self) -> list[ResolvedComponent]:
        return [i for i in self.items if i.is_active]

    def to_dict(self) -> dict:
        out = asdict(self)
        for item in out["items"]:
            item["quantity"] = float(item["quantity"])
            item["waste_factor"] = float(item["waste_factor"])
            item["unit_cost"] = float(item["unit_cost"]) if item["unit_cost"] is not None else None
        return out


# ---------------------------------------------------------------------------
# Hydration helpers
# ---------------------------------------------------------------------------

def _raw_variation(product: Product, variation_id: int) -> dict | None:
    for entry in (product.raw_data or {}).get("variations_data") or []:
        if isinstance(entry, dict) and str(entry.get("id")) == str(variation_id):
            return entry
    return None


def _attribute_text(attributes) -> str:
    if isinstance(attributes, dict):
        return ", ".join(str(v) for v in attributes.values() if v)
    if isinstance(attributes, list):
        parts = []
        for a in attributes:
            if isinstance(a, dict):
                parts.append(str(a.get("option") or a.get("value") or a.get("name") or ""))
            else:
                parts.append(str(a))
        return ", ".join(p for p in parts if p)
    return ""


def _hydrated_variation_label(product: Product, variation_id: int) -> str:
    raw = _raw_variation(product, variation_id)
    if raw is None:
        return f"{product.name} (Variant #{variation_id}, not synced)"
    detail = _attribute_text(raw.get("attributes")) or raw.get("sku") or f"#{variation_id}"
    return f"{product.name} ({detail}, not synced)"


def _product_stock(product: Product) -> int:
    if product.stock_quantity is not None:
        return product.stock_quantity
    raw_stock = (product.raw_data or {}).get("stock_quantity")
    try:
        return int(raw_stock) if raw_stock is not None else 0
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _tenant_supplier_items(query, tenant_id: str, supplier_item_ids: Iterable[str]):
    # Supplier items are tenant-owned through their supplier.
    return (
        query.join(Supplier, Supplier.id == SupplierItem.supplier_id)
        .filter(SupplierItem.id.in_(set(supplier_item_ids)), Supplier.tenant_id == tenant_id)
    )


class _Lookups:
    """Batch-loaded live entities for one BOM's items."""

    def __init__(self, db: Session, tenant_id: str, items: Iterable[BOMItem]):
        items = list(items)
        supplier_ids = {i.supplier_item_id for i in items if i.supplier_item_id}
        product_ids = {i.child_product_id for i in items if i.child_product_id}
        internal_ids = {i.internal_product_id for i in items if i.internal_product_id}
        variation_keys = {(i.child_product_id, i.child_variation_id) for i in items if i.child_product_id and i.child_variation_id}

        self.supplier_items: dict[str, SupplierItem] = {}
        if supplier_ids:
            self.supplier_items = {s.id: s for s in _tenant_supplier_items(db.query(SupplierItem), tenant_id, supplier_ids).all()}
        self.products: dict[str, Product] = {}
        if product_ids:
            self.products = {
                p.id: p for p in db.query(Product).filter(Product.id.in_(product_ids), Product.tenant_id == tenant_id).all()
            }
        self.internal_products: dict[str, InternalProduct] = {}
        if internal_ids:
            self.internal_products = {
                p.id: p
                for p in db.query(InternalProduct)
                .filter(InternalProduct.id.in_(internal_ids), InternalProduct.tenant_id == tenant_id)
                .all()
            }
        self.variations: dict[tuple[str, int], ProductVariation] = {}
        if variation_keys:
            rows = (
                db.query(ProductVariation)
                .filter(ProductVariation.product_id.in_({k[0] for k in variation_keys}))
                .all()
            )
            self.variations = {(v.product_id, v.variation_id): v for v in rows if (v.product_id, v.variation_id) in variation_keys}


def _resolve(item: BOMItem, lk: _Lookups) -> ResolvedComponent:
    base = dict(
        item_id=item.id,
        position=item.position,
        quantity=Decimal(item.quantity),
        waste_factor=Decimal(item.waste_factor or 0),
        is_active=item.is_active,
        child_variation_id=item.child_variation_id,
        deactivated_reason=item.deactivated_reason,
    )
    refs = [r for r in (item.supplier_item_id, item.child_product_id, item.internal_product_id) if r]
    if len(refs) != 1:
        issue = "no component reference" if not refs else "more than one component reference"
        logger.warning("BOM item has an invalid component reference", extra={"bom_item_id": item.id, "issue": issue})
        return ResolvedComponent(kind=KIND_INVALID, resolved=False, label="Invalid component", issue=issue, **base)

    if item.supplier_item_id:
        si = lk.supplier_items.get(item.supplier_item_id)
        if si is None:
            logger.warning("Supplier item not found for BOM item", extra={"bom_item_id": item.id, "supplier_item_id": item.supplier_item_id})
            return ResolvedComponent(kind=KIND_SUPPLIER_ITEM, component_id=item.supplier_item_id, resolved=False,
                                     label=f"Missing supplier item {item.supplier_item_id}", issue="supplier item not found", **base)
        label = si.name if si.supplier is None else f"{si.name} ({si.supplier.name})"
        return ResolvedComponent(kind=KIND_SUPPLIER_ITEM, component_id=si.id, resolved=True, label=label,
                                 available_stock=si.quantity_available or 0, unit_cost=Decimal(si.cost or 0), **base)

    if item.internal_product_id:
        ip = lk.internal_products.get(item.internal_product_id)
        if ip is None:
            logger.warning("Internal product not found for BOM item", extra={"bom_item_id": item.id, "internal_product_id": item.internal_product_id})
            return ResolvedComponent(kind=KIND_INTERNAL_PRODUCT, component_id=item.internal_product_id, resolved=False,
                                     label=f"Missing internal product {item.internal_product_id}", issue="internal product not found", **base)
        return ResolvedComponent(kind=KIND_INTERNAL_PRODUCT, component_id=ip.id, resolved=True, label=f"[Internal] {ip.name}",
                                 available_stock=ip.stock_quantity, unit_cost=Decimal(ip.cogs) if ip.cogs is not None else None, **base)

    parent = lk.products.get(item.child_product_id)
    if parent is None:
        logger.warning("Child product not found for BOM item", extra={"bom_item_id": item.id, "child_product_id": item.child_product_id})
        kind = KIND_CHILD_VARIATION if item.child_variation_id else KIND_CHILD_PRODUCT
        return ResolvedComponent(kind=kind, component_id=item.child_product_id, resolved=False,
                                 label=f"Missing product {item.child_product_id}", issue="child product not found", **base)
    parent_cost = Decimal(parent.cogs) if parent.cogs is not None else None

    if not item.child_variation_id:
        return ResolvedComponent(kind=KIND_CHILD_PRODUCT, component_id=parent.id, resolved=True, label=parent.name,
                                 available_stock=_product_stock(parent), unit_cost=parent_cost, **base)

    variation = lk.variations.get((parent.id, item.child_variation_id))
    if variation is None:
        logger.warning(
            "BOM item references a variation with no local variation record",
            extra={"bom_item_id": item.id, "child_product_id": parent.id, "child_variation_id": item.child_variation_id},
        )
        return ResolvedComponent(kind=KIND_CHILD_VARIATION, component_id=parent.id, resolved=False,
                                 label=_hydrated_variation_label(parent, item.child_variation_id),
                                 unit_cost=parent_cost, issue="variation not synced", **base)
    label = f"{parent.name} (Variant {variation.sku or '#' + str(variation.variation_id)})"
    cost = Decimal(variation.cogs) if variation.cogs is not None else parent_cost
    return ResolvedComponent(kind=KIND_CHILD_VARIATION, component_id=parent.id, resolved=True, label=label,
                             available_stock=variation.stock_quantity or 0, unit_cost=cost, **base)


def _stored_stock(db: Session, product: Product, variation_id: int) -> int | None:
    if not variation_id:
        return product.stock_quantity
    v = (
        db.query(ProductVariation)
        .filter(ProductVariation.product_id == product.id, ProductVariation.variation_id == variation_id)
        .first()
    )
    return v.stock_quantity if v else None


def _build(db: Session, tenant_id: str, bom: BOM) -> Composition:
    items = list(bom.items)
    lookups = _Lookups(db, tenant_id, items)
    return Composition(
        bom_id=bom.id,
        product_id=bom.product_id,
        variation_id=bom.variation_id,
        current_stored_stock=_stored_stock(db, bom.product, bom.variation_id),
        items=[_resolve(i, lookups) for i in items],
    )


def _find_bom(db: Session, tenant_id: str, product_id: str, variation_id: int) -> BOM | None:
    return (
        db.query(BOM)
        .filter(BOM.tenant_id == tenant_id, BOM.product_id == product_id, BOM.variation_id == variation_id)
        .first()
    )


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def get_composition(db: Session, tenant_id: str, product_id: str, variation_id: int = 0) -> Composition | None:
    bom = _find_bom(db, tenant_id, product_id, variation_id)
    if bom is None:
        return None
    return _build(db, tenant_id, bom)


def compute_cogs(composition: Composition) -> Decimal:
    """sum(unit_cost * quantity * (1 + waste_factor)) over active items; unknown cost counts as 0."""
    total = Decimal("0")
    for item in composition.active_items:
        total += (item.unit_cost or Decimal("0")) * item.required_quantity
    return total


def _validate_items(db: Session, tenant_id: str, product_id: str, items: list) -> list[BOMItemIn]:
    rejected: list[dict] = []
    parsed: list[tuple[int, BOMItemIn]] = []
    for idx, raw in enumerate(items):
        try:
            item = raw if isinstance(raw, BOMItemIn) else BOMItemIn.model_validate(raw)
        except ValidationError as e:
            rejected.append({"index": idx, "reason": "; ".join(err["msg"] for err in e.errors())})
            continue
        if item.child_product_id == product_id:
            rejected.append({"index": idx, "reason": "component references its own product"})
            continue
        parsed.append((idx, item))

    if rejected:
        raise CompositionValidationError(rejected)

    # Foreign-key backed references must exist; internal products may be orphaned.
    supplier_ids = {i.supplier_item_id for _, i in parsed if i.supplier_item_id}
    child_ids = {i.child_product_id for _, i in parsed if i.child_product_id}
    known_suppliers = (
        {s.id for s in _tenant_supplier_items(db.query(SupplierItem.id), tenant_id, supplier_ids).all()}
        if supplier_ids else set()
    )
    known_children = (
        {p.id for p in db.query(Product.id).filter(Product.id.in_(child_ids), Product.tenant_id == tenant_id).all()}
        if child_ids else set()
    )
    for idx, item in parsed:
        if item.supplier_item_id and item.supplier_item_id not in known_suppliers:
            rejected.append({"index": idx, "reason": f"unknown supplier item {item.supplier_item_id}"})
        if item.child_product_id and item.child_product_id not in known_children:
            rejected.append({"index": idx, "reason": f"unknown product {item.child_product_id}"})
    if rejected:
        raise CompositionValidationError(rejected)
    return [item for _, item in parsed]


def set_composition(db: Session, tenant_id: str, product_id: str, variation_id: int, items: list) -> Composition:
    """Replace the whole item list of a BOM in one transaction.

    A non-empty list recomputes the owner's COGS; an empty list leaves the
    owner's COGS untouched.
    """
    product = db.query(Product).filter(Product.id == product_id, Product.tenant_id == tenant_id).first()
    if product is None:
        raise ProductNotFoundError(product_id)
    parsed = _validate_items(db, tenant_id, product_id, items)

    try:
        bom = _find_bom(db, tenant_id, product_id, variation_id)
        if bom is None:
            bom = BOM(tenant_id=tenant_id, product=product, variation_id=variation_id)
            db.add(bom)
        bom.items = [
            BOMItem(
                position=pos,
                supplier_item_id=i.supplier_item_id,
                child_product_id=i.child_product_id,
                child_variation_id=i.child_variation_id,
                internal_product_id=i.internal_product_id,
                quantity=i.quantity,
                waste_factor=i.waste_factor,
                is_active=i.is_active,
                deactivated_reason=None if i.is_active else (i.deactivated_reason or DEACTIVATED_MANUAL),
            )
            for pos, i in enumerate(parsed)
        ]
        db.flush()

        composition = _build(db, tenant_id, bom)
        if parsed:
            cogs = compute_cogs(composition)
            if variation_id:
                variation = (
                    db.query(ProductVariation)
                    .filter(ProductVariation.product_id == product_id, ProductVariation.variation_id == variation_id)
                    .first()
                )
                if variation is None:
                    logger.warning("COGS not stored: variation has no local record",
                                   extra={"product_id": product_id, "variation_id": variation_id})
                else:
                    variation.cogs = cogs
            else:
                product.cogs = cogs
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Composition saved", extra={"product_id": product_id, "variation_id": variation_id, "items": len(parsed)})
    return get_composition(db, tenant_id, product_id, variation_id)


def find_parent_boms(db: Session, tenant_id: str, *, product_ids: Iterable[str] = (), internal_product_ids: Iterable[str] = ()) -> list[BOM]:
    """BOMs with an active item that consumes any of the given components."""
    product_ids = set(product_ids)
    internal_product_ids = set(internal_product_ids)
    if not product_ids and not internal_product_ids:
        return []
    q = db.query(BOMItem.bom_id).filter(BOMItem.is_active == True)  # noqa: E712
    if product_ids and internal_product_ids:
        q = q.filter(BOMItem.child_product_id.in_(product_ids) | BOMItem.internal_product_id.in_(internal_product_ids))
    elif product_ids:
        q = q.filter(BOMItem.child_product_id.in_(product_ids))
    else:
        q = q.filter(BOMItem.internal_product_id.in_(internal_product_ids))
    bom_ids = {row.bom_id for row in q.all()}
    if not bom_ids:
        return []
    return (
        db.query(BOM)
        .filter(BOM.id.in_(bom_ids), BOM.tenant_id == tenant_id)
        .order_by(BOM.created_at.asc(), BOM.id.asc())
        .all()
    )


def has_derived_stock(db: Session, product_id: str) -> bool:
    """True when the product owns a BOM with active child or internal components."""
    return (
        db.query(BOMItem.id)
        .join(BOM, BOM.id == BOMItem.bom_id)
        .filter(
            BOM.product_id == product_id,
            BOMItem.is_active == True,  # noqa: E712
            BOMItem.child_product_id.isnot(None) | BOMItem.internal_product_id.isnot(None),
        )
        .first()
        is not None
    )


# ---------------------------------------------------------------------------
# Deactivated items
# ---------------------------------------------------------------------------

def list_deactivated_items(db: Session, tenant_id: str) -> dict:
    """Inactive BOM items of the tenant, with a count per deactivation reason."""
    rows = (
        db.query(BOMItem, BOM)
        .join(BOM, BOM.id == BOMItem.bom_id)
        .filter(BOM.tenant_id == tenant_id, BOMItem.is_active == False)  # noqa: E712
        .order_by(BOM.created_at.asc(), BOM.id.asc(), BOMItem.position.asc())
        .all()
    )
    lookups = _Lookups(db, tenant_id, [item for item, _ in rows])
    parents = {
        p.id: p
        for p in db.query(Product).filter(Product.id.in_({bom.product_id for _, bom in rows}), Product.tenant_id == tenant_id).all()
    } if rows else {}

    items: list[dict] = []
    by_reason: dict[str, int] = {}
    for item, bom in rows:
        component = _resolve(item, lookups)
        reason = item.deactivated_reason or DEACTIVATED_UNKNOWN
        by_reason[reason] = by_reason.get(reason, 0) + 1
        parent = parents.get(bom.product_id)
        items.append({
            "id": item.id,
            "bom_id": bom.id,
            "parent_product": {
                "id": bom.product_id,
                "name": parent.name if parent is not None else None,
                "variation_id": bom.variation_id,
            },
            "component": {
                "kind": component.kind,
                "id": component.component_id,
                "label": component.label,
                "child_variation_id": component.child_variation_id,
            },
            "quantity": float(item.quantity),
            "deactivated_reason": reason,
        })
    return {"total": len(items), "by_reason": by_reason, "items": items}


def reactivate_bom_item(db: Session, tenant_id: str, item_id: str) -> bool:
    """Switch an item back on; returns False when it was already active."""
    item = (
        db.query(BOMItem)
        .join(BOM, BOM.id == BOMItem.bom_id)
        .filter(BOMItem.id == item_id, BOM.tenant_id == tenant_id)
        .first()
    )
    if item is None:
        raise BOMItemNotFoundError(item_id)
    if item.is_active:
        return False

    previous_reason = item.deactivated_reason
    item.is_active = True
    item.deactivated_reason = None
    db.commit()
    logger.info("BOM item reactivated", extra={"bom_item_id": item_id, "previous_reason": previous_reason})
    return True
