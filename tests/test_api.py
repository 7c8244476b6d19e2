import pytest
from fastapi.testclient import TestClient

from app.db.models.catalog import Product
from app.db.models.purchasing import PO_RECEIVED
from main import app
from services.purchasing.reprocess import get_reprocess_status, registry
from tests.conftest import TENANT

HEADERS = {"X-Tenant-Id": TENANT}


@pytest.fixture
def client(indexer):
    with TestClient(app) as c:
        yield c


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_bom_round_trip_and_effective_stock(client, make):
    si = make.supplier_item(cost="2", available=19)
    product = make.product(stock=5)

    saved = client.post(
        f"/inventory/products/{product.id}/bom",
        json={"variation_id": 0, "items": [{"supplierItemId": si.id, "quantity": 2, "wasteFactor": 0.1}]},
        headers=HEADERS,
    )
    assert saved.status_code == 200
    assert saved.json()["cogs"] == pytest.approx(4.4)

    read = client.get(f"/inventory/products/{product.id}/bom", headers=HEADERS).json()
    assert len(read["items"]) == 1

    stock = client.get(f"/inventory/products/{product.id}/bom/effective-stock", headers=HEADERS).json()
    assert stock["effective_stock"] == 8
    assert stock["needs_sync"] is True

    synced = client.post(f"/inventory/products/{product.id}/bom/sync", headers=HEADERS).json()
    assert synced["new_stock"] == 8

    summary = client.post("/inventory/bom/sync-all", headers=HEADERS).json()
    assert summary == {"total": 1, "synced": 0, "skipped": 1, "failed": 0}


def test_invalid_composition_is_422_with_rejected_items(client, make):
    product = make.product()

    resp = client.post(
        f"/inventory/products/{product.id}/bom",
        json={"items": [{"childProductId": product.id, "quantity": 1}]},
        headers=HEADERS,
    )

    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["code"] == "COMPOSITION_INVALID"
    assert detail["rejected_items"][0]["index"] == 0


def test_bom_is_tenant_scoped(client, make):
    product = make.product()

    resp = client.post(f"/inventory/products/{product.id}/bom", json={"items": []}, headers={"X-Tenant-Id": "someone-else"})

    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "PRODUCT_NOT_FOUND"


def test_effective_stock_without_bom_is_404(client, make):
    product = make.product()

    resp = client.get(f"/inventory/products/{product.id}/bom/effective-stock", headers=HEADERS)

    assert resp.status_code == 404


def test_purchase_order_lifecycle(db, make, indexer):
    mug = make.product(name="Mug", stock=1)
    kit = make.product(name="Mug kit", stock=0)
    make.bom(kit, [{"child_product_id": mug.id, "quantity": 2}])

    # Leaving the block runs shutdown, which drains background propagation.
    with TestClient(app) as client:
        created = client.post(
            "/inventory/purchase-orders",
            json={"orderNumber": "PO-9", "status": "ORDERED", "items": [{"productId": mug.id, "name": "Mug", "quantity": 5}]},
            headers=HEADERS,
        ).json()
        assert created["status"] == "ORDERED"
        inbound = client.get(f"/inventory/products/{mug.id}/inbound", headers=HEADERS).json()
        assert inbound["inbound"] == 5

        received = client.put(f"/inventory/purchase-orders/{created['id']}", json={"status": "RECEIVED"}, headers=HEADERS)
        assert received.status_code == 200
        assert received.json()["stock"]["updated_product_ids"] == [mug.id]

        locked = client.put(
            f"/inventory/purchase-orders/{created['id']}",
            json={"items": [{"productId": mug.id, "name": "Mug", "quantity": 50}]},
            headers=HEADERS,
        )
        assert locked.status_code == 409
        assert locked.json()["detail"]["code"] == "PURCHASE_ORDER_LOCKED"

        listed = client.get("/inventory/purchase-orders", params={"status": "received"}, headers=HEADERS).json()
        assert [p["id"] for p in listed] == [created["id"]]

    db.expire_all()
    assert db.get(Product, mug.id).stock_quantity == 6
    assert db.get(Product, kit.id).stock_quantity == 3
    assert kit.id in indexer.indexed_ids


def test_unknown_purchase_order_is_404(client):
    resp = client.get("/inventory/purchase-orders/nope", headers=HEADERS)

    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "PURCHASE_ORDER_NOT_FOUND"


def test_adjust_internal_stock_endpoint(client, make):
    ip = make.internal_product(stock=2)

    resp = client.post(f"/inventory/internal-products/{ip.id}/adjust-stock", json={"delta": -5, "reason": "scrap"}, headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json()["stock_quantity"] == 0
    missing = client.post("/inventory/internal-products/nope/adjust-stock", json={"delta": 1}, headers=HEADERS)
    assert missing.status_code == 404


def test_product_list_is_cached_until_reindex(client, db, make):
    make.product(name="First")
    assert [p["name"] for p in client.get("/inventory/products", headers=HEADERS).json()] == ["First"]

    make.product(name="Second")
    assert len(client.get("/inventory/products", headers=HEADERS).json()) == 1


def test_reprocess_endpoints(db, make, indexer):
    with TestClient(app) as client:
        assert client.get("/inventory/reprocess-received-pos/status", headers=HEADERS).json() == {"status": "idle"}
        assert client.post("/inventory/reprocess-received-pos", headers=HEADERS).json()["processed"] == 0
        assert client.delete("/inventory/reprocess-received-pos", headers=HEADERS).status_code == 404

        mug = make.product(name="Mug", stock=4)
        make.purchase_order([{"product_id": mug.id, "quantity": 4}], status=PO_RECEIVED)

        running, _ = registry.try_start(TENANT, 1)
        conflict = client.post("/inventory/reprocess-received-pos", headers=HEADERS)
        assert conflict.status_code == 409
        assert conflict.json()["progress"]["run_id"] == running.run_id
        registry.finish(running, "failed")

        accepted = client.post("/inventory/reprocess-received-pos", headers=HEADERS)
        assert accepted.status_code == 202
        assert accepted.json()["total_pos"] == 1

    status = get_reprocess_status(TENANT)
    assert status["status"] == "completed"
    assert status["processed"] == 1
    db.expire_all()
    assert db.get(Product, mug.id).stock_quantity == 4


def test_deactivated_items_and_reactivation(client, make):
    si = make.supplier_item(available=4)
    product = make.product()
    bom = make.bom(product, [{"supplier_item_id": si.id, "quantity": 1, "is_active": False, "deactivated_reason": "PRODUCT_404"}])
    item_id = bom.items[0].id

    listing = client.get("/inventory/bom/deactivated-items", headers=HEADERS).json()
    assert listing["total"] == 1
    assert listing["by_reason"] == {"PRODUCT_404": 1}

    resp = client.patch(f"/inventory/bom/items/{item_id}/reactivate", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["reactivated"] is True
    assert client.patch(f"/inventory/bom/items/{item_id}/reactivate", headers=HEADERS).json()["reactivated"] is False
    assert client.get("/inventory/bom/deactivated-items", headers=HEADERS).json()["total"] == 0

    missing = client.patch("/inventory/bom/items/nope/reactivate", headers=HEADERS)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "BOM_ITEM_NOT_FOUND"
