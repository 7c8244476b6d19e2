"""
Purchase-order workflow.

The stock effect follows the RECEIVED status: entering RECEIVED applies
receive, leaving it applies unreceive, and the status write, the stock write
and the outbox event share one commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import PurchaseOrderLockedError, PurchaseOrderNotFoundError
from app.core.logging import LogContext, get_logger
from app.db.models.catalog import Product
from app.db.models.purchasing import PO_DRAFT, PO_ORDERED, PO_RECEIVED, PurchaseOrder, PurchaseOrderItem
from app.events.bus import TOPIC_PO_RECEIVED, TOPIC_PO_UNRECEIVED, publish
from services.purchasing.schemas import PurchaseOrderCreate, PurchaseOrderItemIn, PurchaseOrderUpdate
from services.purchasing.stock import RECEIVE, UNRECEIVE, StockMutationResult, apply_stock_effect, find_variation_by_sku

logger = get_logger("purchasing.service")


@dataclass
class PurchaseOrderChange:
    purchase_order: PurchaseOrder
    stock: StockMutationResult | None = None
    direction: int | None = None


def serialize_purchase_order(po: PurchaseOrder, *, with_items: bool = True) -> dict:
    out = {
        "id": po.id,
        "order_number": po.order_number,
        "supplier_id": po.supplier_id,
        "status": po.status,
        "order_date": po.order_date.isoformat() if po.order_date else None,
        "expected_date": po.expected_date.isoformat() if po.expected_date else None,
        "tracking_number": po.tracking_number,
        "tracking_link": po.tracking_link,
        "total_amount": float(po.total_amount or 0),
        "notes": po.notes,
        "created_at": po.created_at.isoformat() if po.created_at else None,
    }
    if with_items:
        out["items"] = [
            {
                "id": i.id,
                "line_number": i.line_number,
                "product_id": i.product_id,
                "supplier_item_id": i.supplier_item_id,
                "variation_id": i.variation_id,
                "name": i.name,
                "sku": i.sku,
                "quantity": i.quantity,
                "unit_cost": float(i.unit_cost or 0),
                "total_cost": float(i.total_cost or 0),
            }
            for i in po.items
        ]
    return out


def _build_items(db: Session, tenant_id: str, items: list[PurchaseOrderItemIn]) -> list[PurchaseOrderItem]:
    lines = []
    for n, data in enumerate(items, start=1):
        variation_id = data.variation_id
        if variation_id is None and data.product_id and data.sku:
            product = db.query(Product).filter(Product.id == data.product_id, Product.tenant_id == tenant_id).first()
            match = find_variation_by_sku(product, data.sku) if product else None
            if match is not None:
                variation_id = match.variation_id
        lines.append(
            PurchaseOrderItem(
                line_number=n,
                product_id=data.product_id,
                supplier_item_id=data.supplier_item_id,
                variation_id=variation_id,
                name=data.name,
                sku=data.sku,
                quantity=data.quantity,
                unit_cost=data.unit_cost,
                total_cost=data.unit_cost * data.quantity,
            )
        )
    return lines


def _total(items: list[PurchaseOrderItem]) -> Decimal:
    return sum((Decimal(i.total_cost or 0) for i in items), Decimal("0"))


def _apply_transition(db: Session, po: PurchaseOrder, new_status: str) -> PurchaseOrderChange:
    """Set the status and the matching stock effect; does not commit."""
    change = PurchaseOrderChange(purchase_order=po)
    old_status = po.status
    if old_status == new_status:
        return change

    if new_status == PO_RECEIVED:
        change.direction = RECEIVE
    elif old_status == PO_RECEIVED:
        change.direction = UNRECEIVE

    if change.direction is not None:
        db.flush()
        change.stock = apply_stock_effect(db, po, change.direction)
        topic = TOPIC_PO_RECEIVED if change.direction == RECEIVE else TOPIC_PO_UNRECEIVED
        publish(
            db,
            topic,
            {"purchase_order_id": po.id, "order_number": po.order_number, **change.stock.to_dict()},
            tenant_id=po.tenant_id,
            commit=False,
        )
        logger.info(
            "Purchase order stock effect applied",
            extra={"from_status": old_status, "to_status": new_status, **change.stock.to_dict()},
        )
    po.status = new_status
    return change


def create_purchase_order(db: Session, tenant_id: str, data: PurchaseOrderCreate) -> PurchaseOrderChange:
    po = PurchaseOrder(
        tenant_id=tenant_id,
        order_number=data.order_number,
        supplier_id=data.supplier_id,
        status=PO_DRAFT,
        order_date=data.order_date,
        expected_date=data.expected_date,
        tracking_number=data.tracking_number,
        tracking_link=data.tracking_link,
        notes=data.notes,
    )
    po.items = _build_items(db, tenant_id, data.items)
    po.total_amount = _total(po.items)
    db.add(po)
    try:
        db.flush()
        with LogContext.bind(purchase_order_id=po.id):
            change = _apply_transition(db, po, data.status)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(po)
    logger.info("Purchase order created", extra={"purchase_order_id": po.id, "status": po.status, "lines": len(po.items)})
    return change


def list_purchase_orders(db: Session, tenant_id: str, *, status: str | None = None, limit: int = 200) -> list[PurchaseOrder]:
    q = db.query(PurchaseOrder).filter(PurchaseOrder.tenant_id == tenant_id)
    if status:
        q = q.filter(PurchaseOrder.status == status.upper())
    return q.order_by(PurchaseOrder.created_at.desc()).limit(limit).all()


def get_purchase_order(db: Session, tenant_id: str, purchase_order_id: str) -> PurchaseOrder:
    po = (
        db.query(PurchaseOrder)
        .filter(PurchaseOrder.id == purchase_order_id, PurchaseOrder.tenant_id == tenant_id)
        .first()
    )
    if po is None:
        raise PurchaseOrderNotFoundError(purchase_order_id)
    return po


def update_purchase_order(db: Session, tenant_id: str, purchase_order_id: str, data: PurchaseOrderUpdate) -> PurchaseOrderChange:
    """Update fields, line items and status.

    Leaving RECEIVED reverses stock against the old lines before they are
    replaced; entering RECEIVED applies stock against the new lines.
    """
    po = get_purchase_order(db, tenant_id, purchase_order_id)
    fields = data.model_dump(exclude_unset=True, exclude={"items", "status"})
    new_status = data.status or po.status

    if data.items is not None and po.status == PO_RECEIVED and new_status == PO_RECEIVED:
        raise PurchaseOrderLockedError(
            f"Purchase order {po.label} is RECEIVED; move it back to DRAFT or ORDERED before editing line items"
        )

    try:
        with LogContext.bind(purchase_order_id=po.id):
            for key, value in fields.items():
                setattr(po, key, value)

            change = PurchaseOrderChange(purchase_order=po)
            if po.status == PO_RECEIVED and new_status != PO_RECEIVED:
                change = _apply_transition(db, po, new_status)
            if data.items is not None:
                po.items = _build_items(db, tenant_id, data.items)
                po.total_amount = _total(po.items)
            if new_status == PO_RECEIVED and po.status != PO_RECEIVED:
                change = _apply_transition(db, po, new_status)
            elif po.status != new_status:
                po.status = new_status
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(po)
    return change


def get_inbound_quantity(db: Session, tenant_id: str, product_id: str, variation_id: int | None = None) -> int:
    """Units on ORDERED purchase orders not yet received."""
    q = (
        db.query(func.coalesce(func.sum(PurchaseOrderItem.quantity), 0))
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderItem.purchase_order_id)
        .filter(
            PurchaseOrder.tenant_id == tenant_id,
            PurchaseOrder.status == PO_ORDERED,
            PurchaseOrderItem.product_id == product_id,
        )
    )
    if variation_id:
        q = q.filter(PurchaseOrderItem.variation_id == variation_id)
    return int(q.scalar() or 0)
