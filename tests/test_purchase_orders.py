import pytest

from app.core.errors import PurchaseOrderLockedError, PurchaseOrderNotFoundError
from app.db.models.catalog import Product
from app.events.bus import TOPIC_PO_RECEIVED, TOPIC_PO_UNRECEIVED
from app.events.outbox import OutboxEvent
from services.purchasing.schemas import PurchaseOrderCreate, PurchaseOrderUpdate
from services.purchasing.service import (
    create_purchase_order,
    get_inbound_quantity,
    get_purchase_order,
    list_purchase_orders,
    update_purchase_order,
)
from services.purchasing.stock import RECEIVE, UNRECEIVE
from tests.conftest import OTHER_TENANT, TENANT


def _stock(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock_quantity


def _topics(db):
    return [e.topic for e in db.query(OutboxEvent).order_by(OutboxEvent.created_at.asc()).all()]


def test_create_draft_has_no_stock_effect(db, make):
    product = make.product(stock=2)

    change = create_purchase_order(db, TENANT, PurchaseOrderCreate(
        orderNumber="PO-1",
        items=[{"productId": product.id, "name": "Mug", "quantity": 4, "unitCost": "2.50"}],
    ))

    po = change.purchase_order
    assert po.status == "DRAFT"
    assert change.stock is None
    assert float(po.total_amount) == 10.0
    assert _stock(db, product.id) == 2
    assert _topics(db) == []


def test_create_resolves_variation_from_sku(db, make):
    tee = make.product(name="Tee", product_type="variable")
    make.variation(tee, 9, sku="TEE-M")

    change = create_purchase_order(db, TENANT, PurchaseOrderCreate(
        items=[{"product_id": tee.id, "name": "Tee M", "sku": "TEE-M", "quantity": 1}],
    ))

    assert change.purchase_order.items[0].variation_id == 9


def test_received_transition_applies_and_reverses_stock(db, make):
    product = make.product(stock=2)
    po = create_purchase_order(db, TENANT, PurchaseOrderCreate(
        status="ordered", items=[{"product_id": product.id, "name": "Mug", "quantity": 4}],
    )).purchase_order
    assert get_inbound_quantity(db, TENANT, product.id) == 4

    received = update_purchase_order(db, TENANT, po.id, PurchaseOrderUpdate(status="RECEIVED"))
    assert received.direction == RECEIVE
    assert received.stock.updated_product_ids == [product.id]
    assert _stock(db, product.id) == 6
    assert get_inbound_quantity(db, TENANT, product.id) == 0

    # Editing other fields while RECEIVED must not re-apply stock
    update_purchase_order(db, TENANT, po.id, PurchaseOrderUpdate(trackingNumber="1Z999"))
    assert _stock(db, product.id) == 6

    reverted = update_purchase_order(db, TENANT, po.id, PurchaseOrderUpdate(status="DRAFT"))
    assert reverted.direction == UNRECEIVE
    assert _stock(db, product.id) == 2
    assert get_purchase_order(db, TENANT, po.id).status == "DRAFT"
    assert _topics(db) == [TOPIC_PO_RECEIVED, TOPIC_PO_UNRECEIVED]


def test_create_directly_as_received(db, make):
    product = make.product(stock=0)

    change = create_purchase_order(db, TENANT, PurchaseOrderCreate(
        status="RECEIVED", items=[{"product_id": product.id, "name": "Mug", "quantity": 3}],
    ))

    assert change.purchase_order.status == "RECEIVED"
    assert _stock(db, product.id) == 3


def test_received_line_items_are_locked(db, make):
    product = make.product(stock=0)
    po = create_purchase_order(db, TENANT, PurchaseOrderCreate(
        status="RECEIVED", items=[{"product_id": product.id, "name": "Mug", "quantity": 3}],
    )).purchase_order

    with pytest.raises(PurchaseOrderLockedError):
        update_purchase_order(db, TENANT, po.id, PurchaseOrderUpdate(
            items=[{"product_id": product.id, "name": "Mug", "quantity": 30}],
        ))
    assert _stock(db, product.id) == 3


def test_leaving_received_with_new_items_reverses_the_old_lines(db, make):
    product = make.product(stock=0)
    po = create_purchase_order(db, TENANT, PurchaseOrderCreate(
        status="RECEIVED", items=[{"product_id": product.id, "name": "Mug", "quantity": 3}],
    )).purchase_order

    update_purchase_order(db, TENANT, po.id, PurchaseOrderUpdate(
        status="ORDERED", items=[{"product_id": product.id, "name": "Mug", "quantity": 8}],
    ))

    assert _stock(db, product.id) == 0
    assert get_inbound_quantity(db, TENANT, product.id) == 8


def test_invalid_status_is_rejected_by_schema():
    with pytest.raises(ValueError):
        PurchaseOrderUpdate(status="SHIPPED")


def test_list_and_tenant_scoping(db, make):
    create_purchase_order(db, TENANT, PurchaseOrderCreate(orderNumber="A"))
    create_purchase_order(db, TENANT, PurchaseOrderCreate(orderNumber="B", status="ORDERED"))
    other = create_purchase_order(db, OTHER_TENANT, PurchaseOrderCreate(orderNumber="C")).purchase_order

    assert sorted(p.order_number for p in list_purchase_orders(db, TENANT)) == ["A", "B"]
    assert [p.order_number for p in list_purchase_orders(db, TENANT, status="ordered")] == ["B"]
    with pytest.raises(PurchaseOrderNotFoundError):
        get_purchase_order(db, TENANT, other.id)
