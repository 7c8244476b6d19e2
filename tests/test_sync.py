import asyncio

import pytest

from app.core.errors import InternalProductNotFoundError
from app.db.models.catalog import InternalProduct, Product, ProductVariation
from services.bom.sync import cascade_to_parents, sync_all_compositions, sync_effective_stock
from services.inventory.internal_products import adjust_internal_stock
from services.search.indexing import propagate_stock_change
from tests.conftest import TENANT


def test_sync_writes_effective_stock_and_status(db, make):
    si = make.supplier_item(available=19)
    product = make.product(stock=5)
    make.bom(product, [{"supplier_item_id": si.id, "quantity": 2, "waste_factor": "0.1"}])

    outcome = sync_effective_stock(db, TENANT, product.id)

    assert outcome.changed is True
    assert (outcome.previous_stock, outcome.new_stock) == (5, 8)
    db.expire_all()
    p = db.get(Product, product.id)
    assert p.stock_quantity == 8
    assert p.stock_status == "instock"

    again = sync_effective_stock(db, TENANT, product.id)
    assert again.changed is False


def test_sync_to_zero_marks_out_of_stock(db, make):
    product = make.product(stock=4)
    make.bom(product, [{"internal_product_id": "ghost", "quantity": 1}])

    sync_effective_stock(db, TENANT, product.id)

    db.expire_all()
    assert db.get(Product, product.id).stock_status == "outofstock"
    assert db.get(Product, product.id).stock_quantity == 0


def test_sync_variation_bom(db, make):
    ip = make.internal_product(stock=9)
    product = make.product(product_type="variable")
    make.variation(product, 3, stock=0)
    make.bom(product, [{"internal_product_id": ip.id, "quantity": 3}], variation_id=3)

    sync_effective_stock(db, TENANT, product.id, 3)

    db.expire_all()
    assert db.query(ProductVariation).filter_by(product_id=product.id, variation_id=3).one().stock_quantity == 3


def test_sync_without_bom_reports_error(db, make):
    product = make.product()

    outcome = sync_effective_stock(db, TENANT, product.id)

    assert outcome.changed is False
    assert outcome.error == "no active composition"


def test_sync_all_counts(db, make):
    si = make.supplier_item(available=10)
    changed = make.product(name="A", stock=0)
    unchanged = make.product(name="B", stock=10)
    orphan_variation = make.product(name="C", product_type="variable")
    make.bom(changed, [{"supplier_item_id": si.id, "quantity": 1}])
    make.bom(unchanged, [{"supplier_item_id": si.id, "quantity": 1}])
    make.bom(orphan_variation, [{"supplier_item_id": si.id, "quantity": 1}], variation_id=42)
    make.bom(make.product(name="D"), [{"supplier_item_id": si.id, "quantity": 1, "is_active": False}])

    summary = sync_all_compositions(db, TENANT)

    assert summary == {"total": 3, "synced": 1, "skipped": 1, "failed": 1}


def test_cascade_resyncs_parents_of_touched_components(db, make):
    child = make.product(name="Mug", stock=6)
    kit = make.product(name="Kit", stock=0)
    make.bom(kit, [{"child_product_id": child.id, "quantity": 2}])

    changed = cascade_to_parents(db, TENANT, product_ids=[child.id])

    assert changed == [kit.id]
    db.expire_all()
    assert db.get(Product, kit.id).stock_quantity == 3


def test_adjust_internal_stock_clamps_at_zero(db, make):
    ip = make.internal_product(stock=4)

    adjusted = adjust_internal_stock(db, TENANT, ip.id, -10, "scrap")

    assert adjusted.stock_quantity == 0
    db.expire_all()
    assert db.get(InternalProduct, ip.id).stock_quantity == 0


def test_adjust_unknown_internal_product(db):
    with pytest.raises(InternalProductNotFoundError):
        adjust_internal_stock(db, TENANT, "missing", 1)


def test_internal_adjustment_propagates_to_parents_and_index(db, make, indexer):
    ip = make.internal_product(stock=0)
    kit = make.product(name="Kit", stock=0)
    make.bom(kit, [{"internal_product_id": ip.id, "quantity": 1}])

    adjust_internal_stock(db, TENANT, ip.id, 5)
    touched = asyncio.run(propagate_stock_change(TENANT, internal_product_ids=[ip.id]))

    assert touched == [kit.id]
    assert indexer.indexed_ids == [kit.id]
    db.expire_all()
    assert db.get(Product, kit.id).stock_quantity == 5
