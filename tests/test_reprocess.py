import asyncio
import logging
import threading

import pytest

from app.core.errors import ReprocessRestoreError
from app.db.models.catalog import Product, ProductVariation
from app.db.models.purchasing import PO_RECEIVED, PurchaseOrder, PurchaseOrderItem
from app.events.bus import TOPIC_REPROCESS_COMPLETED
from app.events.outbox import OutboxEvent
from services.purchasing import reprocess
from services.purchasing.reprocess import (
    COMPLETED,
    FAILED,
    RUNNING,
    ReprocessRegistry,
    cancel_reprocess,
    get_reprocess_status,
    repair_purchase_order,
    run_reprocess,
    start_reprocess,
)
from tests.conftest import TENANT


def _start_and_wait(db, runs):
    async def go():
        started = start_reprocess(db, TENANT, runs=runs)
        if started.task is not None:
            await started.task
        return started

    return asyncio.run(go())


def _historical_po(make, *, order_number="PO-7"):
    """A RECEIVED PO with a line that carries a SKU but no variation link."""
    # The legacy receive credited the product row, not the variation.
    tee = make.product(name="Tee", product_type="variable", stock=4)
    medium = make.variation(tee, 2, sku="TEE-M", stock=1)
    mug = make.product(name="Mug", stock=10)
    po = make.purchase_order(
        [
            {"product_id": tee.id, "sku": "TEE-M", "quantity": 4, "name": "Tee M"},
            {"product_id": mug.id, "quantity": 5, "name": "Mug"},
        ],
        status=PO_RECEIVED,
        order_number=order_number,
    )
    return po, tee, medium, mug


def test_repairs_missing_variation_links(db, make, indexer):
    po, tee, medium, mug = _historical_po(make)
    runs = ReprocessRegistry()

    started = _start_and_wait(db, runs)

    assert started.outcome == "started"
    assert started.total_pos == 1
    progress = runs.get(TENANT)
    assert progress.status == COMPLETED
    assert (progress.processed, progress.repaired) == (1, 1)
    assert progress.errors == []
    assert progress.critical_failures == []
    assert progress.reindexed == 2
    assert progress.completed_at is not None

    db.expire_all()
    assert db.get(PurchaseOrder, po.id).status == PO_RECEIVED
    line = db.query(PurchaseOrderItem).filter_by(purchase_order_id=po.id, sku="TEE-M").one()
    assert line.variation_id == 2
    assert db.get(Product, tee.id).stock_quantity == 0
    assert db.get(ProductVariation, medium.id).stock_quantity == 5
    assert db.get(Product, mug.id).stock_quantity == 10
    assert sorted(indexer.indexed_ids) == sorted([tee.id, mug.id])
    assert db.query(OutboxEvent).filter_by(topic=TOPIC_REPROCESS_COMPLETED).count() == 1


def test_backfill_counter_tracks_lines_linked_by_sku(db, make, indexer):
    _historical_po(make)
    runs = ReprocessRegistry()

    _start_and_wait(db, runs)

    assert runs.get(TENANT).variations_backfilled == 1


def test_failure_at_re_receive_still_restores_received(db, make, indexer, monkeypatch):
    po, _, _, _ = _historical_po(make, order_number="PO-FAIL")

    def boom(*args, **kwargs):
        raise RuntimeError("simulated receive failure")

    monkeypatch.setattr(reprocess, "receive_stock", boom)
    runs = ReprocessRegistry()

    _start_and_wait(db, runs)

    db.expire_all()
    assert db.get(PurchaseOrder, po.id).status == PO_RECEIVED
    progress = runs.get(TENANT)
    assert progress.status == COMPLETED
    assert progress.repaired == 0
    assert any("PO-FAIL" in e and "simulated receive failure" in e for e in progress.errors)
    assert progress.critical_failures == []


def test_failed_restore_is_critical(db, make, indexer, monkeypatch, caplog):
    po, _, _, _ = _historical_po(make, order_number="PO-STUCK")

    def broken_restore(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(reprocess, "_set_status", broken_restore)
    runs = ReprocessRegistry()

    with caplog.at_level(logging.CRITICAL, logger="bom_engine"):
        _start_and_wait(db, runs)

    progress = runs.get(TENANT)
    assert progress.critical_failures == [po.id]
    assert any("CRITICAL" in e and "PO-STUCK" in e for e in progress.errors)
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)
    db.expire_all()
    assert db.get(PurchaseOrder, po.id).status == "DRAFT"


def test_second_start_while_running_is_rejected(db, make):
    _historical_po(make)
    runs = ReprocessRegistry()
    existing, started = runs.try_start(TENANT, 1)
    assert started

    rejected = start_reprocess(db, TENANT, runs=runs)

    assert rejected.outcome == "already_running"
    assert rejected.accepted is False
    assert rejected.progress is existing
    assert rejected.task is None
    _, again = runs.try_start(TENANT, 1)
    assert again is False


def test_nothing_to_do_without_received_pos(db, make):
    make.purchase_order([{"quantity": 1}])
    runs = ReprocessRegistry()

    started = start_reprocess(db, TENANT, runs=runs)

    assert started.outcome == "nothing_to_do"
    assert get_reprocess_status(TENANT, runs=runs) == {"status": "idle"}


def test_finished_progress_expires_after_retention():
    now = [1000.0]
    runs = ReprocessRegistry(retention_seconds=600, clock=lambda: now[0])
    progress, _ = runs.try_start(TENANT, 3)
    runs.finish(progress, COMPLETED)

    now[0] += 599
    assert get_reprocess_status(TENANT, runs=runs)["status"] == COMPLETED
    now[0] += 1
    assert get_reprocess_status(TENANT, runs=runs) == {"status": "idle"}


def test_running_progress_never_expires():
    now = [0.0]
    runs = ReprocessRegistry(retention_seconds=1, clock=lambda: now[0])
    runs.try_start(TENANT, 1)

    now[0] += 10_000
    assert runs.get(TENANT).status == RUNNING


def test_new_run_allowed_after_previous_finished():
    runs = ReprocessRegistry()
    first, _ = runs.try_start(TENANT, 1)
    runs.finish(first, FAILED)

    second, started = runs.try_start(TENANT, 1)

    assert started
    assert second.run_id != first.run_id


def test_cancel_stops_before_next_po(db, make, indexer):
    po, _, medium, _ = _historical_po(make)
    runs = ReprocessRegistry()
    progress, _ = runs.try_start(TENANT, 1)
    assert cancel_reprocess(TENANT, runs=runs) is progress

    asyncio.run(run_reprocess(TENANT, progress, runs=runs))

    assert progress.status == FAILED
    assert progress.processed == 0
    assert any("cancelled" in e for e in progress.errors)
    db.expire_all()
    assert db.get(PurchaseOrder, po.id).status == PO_RECEIVED
    assert db.get(ProductVariation, medium.id).stock_quantity == 1


def test_cancel_without_active_run():
    assert cancel_reprocess(TENANT, runs=ReprocessRegistry()) is None


def test_bom_parents_of_re_received_components_are_resynced(db, make, indexer):
    panel = make.product(name="Panel", stock=10)
    kit = make.product(name="Kit", stock=4)
    make.bom(kit, [{"child_product_id": panel.id, "quantity": 1}])
    make.purchase_order([{"product_id": panel.id, "quantity": 3, "name": "Panel"}], status=PO_RECEIVED)
    runs = ReprocessRegistry()

    _start_and_wait(db, runs)

    db.expire_all()
    assert db.get(Product, panel.id).stock_quantity == 10
    assert db.get(Product, kit.id).stock_quantity == 10
    assert runs.get(TENANT).status == COMPLETED


def test_repair_raises_when_received_cannot_be_restored(db, make, monkeypatch):
    po, tee, _, _ = _historical_po(make, order_number="PO-LOST")

    def broken_restore(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(reprocess, "_set_status", broken_restore)
    progress, _ = ReprocessRegistry().try_start(TENANT, 1)
    touched = set()

    with pytest.raises(ReprocessRestoreError) as exc:
        repair_purchase_order(db, TENANT, db.get(PurchaseOrder, po.id), progress, touched)

    assert exc.value.purchase_order_id == po.id
    assert exc.value.label == "PO-LOST"
    assert exc.value.to_detail()["code"] == "REPROCESS_RESTORE_FAILED"
    assert tee.id in touched
    assert progress.repaired == 1


def test_status_is_pollable_while_a_purchase_order_is_repaired(db, make, indexer, monkeypatch):
    _historical_po(make)
    runs = ReprocessRegistry()
    entered = threading.Event()
    release = threading.Event()
    real_receive = reprocess.receive_stock

    def slow_receive(*args, **kwargs):
        entered.set()
        release.wait(5)
        return real_receive(*args, **kwargs)

    monkeypatch.setattr(reprocess, "receive_stock", slow_receive)

    async def go():
        started = start_reprocess(db, TENANT, runs=runs)
        while not entered.is_set():
            await asyncio.sleep(0.01)
        snapshot = get_reprocess_status(TENANT, runs=runs)
        release.set()
        await started.task
        return snapshot

    snapshot = asyncio.run(go())

    assert snapshot["status"] == RUNNING
    assert snapshot["processed"] == 0
    assert runs.get(TENANT).status == COMPLETED
