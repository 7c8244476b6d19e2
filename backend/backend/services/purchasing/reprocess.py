"""
Reprocessing orchestrator: repair the stock effect of every RECEIVED purchase
order of a tenant.

Per PO, strictly in order:

    unreceive -> backfill variation links by SKU -> demote to DRAFT
              -> re-receive -> restore RECEIVED (always, in ``finally``)

The unreceive step reverses each line where it was originally credited:
lines without a variation link come off the product row. The re-receive then
resolves variations by SKU, which moves that quantity onto the variation.

RECEIVED is the only resting state. If the restore itself fails the PO is
left in DRAFT with reversed stock; ReprocessRestoreError carries that to the
run loop, which logs it as critical, records it in ``critical_failures`` and
never retries it.

After the last PO, BOM parents of every touched product are re-synced and
the tenant is reindexed.

POs are processed one at a time so that two POs touching the same component
never interleave. Progress is process-local, one record per tenant, and stays
pollable for REPROCESS_RETENTION_SECONDS after the run finishes.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from app.core.config import REPROCESS_RETENTION_SECONDS
from app.core.errors import ReprocessRestoreError
from app.core.logging import LogContext, get_logger
from app.core.tasks import spawn
from app.db.models.purchasing import PO_DRAFT, PO_RECEIVED, PurchaseOrder
from app.db.session import SessionLocal
from app.events.bus import TOPIC_REPROCESS_COMPLETED, publish
from services.bom.sync import cascade_to_parents
from services.purchasing.stock import find_variation_by_sku, receive_stock, reverse_recorded_receipt
from services.search.indexing import reindex_all

logger = get_logger("purchasing.reprocess")

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class ReprocessProgress:
    tenant_id: str
    run_id: str
    total_pos: int
    status: str = RUNNING
    processed: int = 0
    repaired: int = 0
    errors: list[str] = field(default_factory=list)
    variations_backfilled: int = 0
    reindexed: int = 0
    critical_failures: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    cancel_requested: bool = False
    finished_at: float | None = None  # registry clock

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "run_id": self.run_id,
            "total_pos": self.total_pos,
            "processed": self.processed,
            "repaired": self.repaired,
            "errors": list(self.errors),
            "variations_backfilled": self.variations_backfilled,
            "reindexed": self.reindexed,
            "critical_failures": list(self.critical_failures),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancel_requested": self.cancel_requested,
        }


class ReprocessRegistry:
    """Tenant-keyed progress records with at most one running run per tenant."""

    def __init__(self, retention_seconds: float = REPROCESS_RETENTION_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.retention_seconds = retention_seconds
        self.clock = clock
        self._runs: dict[str, ReprocessProgress] = {}
        self._lock = threading.Lock()

    def _evict_expired(self) -> None:
        now = self.clock()
        for tenant_id, p in list(self._runs.items()):
            if p.finished_at is not None and now - p.finished_at >= self.retention_seconds:
                del self._runs[tenant_id]

    def try_start(self, tenant_id: str, total_pos: int) -> tuple[ReprocessProgress, bool]:
        """Register a new run; returns (running progress, False) if one is already active."""
        with self._lock:
            self._evict_expired()
            current = self._runs.get(tenant_id)
            if current is not None and current.status == RUNNING:
                return current, False
            progress = ReprocessProgress(tenant_id=tenant_id, run_id=uuid.uuid4().hex, total_pos=total_pos)
            self._runs[tenant_id] = progress
            return progress, True

    def get(self, tenant_id: str) -> ReprocessProgress | None:
        with self._lock:
            self._evict_expired()
            return self._runs.get(tenant_id)

    def finish(self, progress: ReprocessProgress, status: str) -> None:
        with self._lock:
            progress.status = status
            progress.completed_at = datetime.now(timezone.utc)
            progress.finished_at = self.clock()

    def cancel(self, tenant_id: str) -> ReprocessProgress | None:
        with self._lock:
            current = self._runs.get(tenant_id)
            if current is None or current.status != RUNNING:
                return None
            current.cancel_requested = True
            return current

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()


registry = ReprocessRegistry()


@dataclass
class ReprocessStart:
    outcome: str  # started | already_running | nothing_to_do
    total_pos: int = 0
    progress: ReprocessProgress | None = None
    task: asyncio.Task | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == "started"


def _received_po_ids(db: Session, tenant_id: str) -> list[str]:
    rows = (
        db.query(PurchaseOrder.id)
        .filter(PurchaseOrder.tenant_id == tenant_id, PurchaseOrder.status == PO_RECEIVED)
        .order_by(PurchaseOrder.created_at.asc(), PurchaseOrder.id.asc())
        .all()
    )
    return [r.id for r in rows]


def start_reprocess(db: Session, tenant_id: str, *, runs: ReprocessRegistry | None = None) -> ReprocessStart:
    """Register a run and spawn it onto the running event loop.

    Must be called from inside an event loop. A second call while a run is
    active is rejected with that run's progress; nothing is queued.
    """
    runs = runs or registry
    current = runs.get(tenant_id)
    if current is not None and current.status == RUNNING:
        return ReprocessStart("already_running", current.total_pos, current)

    total = len(_received_po_ids(db, tenant_id))
    if total == 0:
        logger.info("No RECEIVED purchase orders to reprocess")
        return ReprocessStart("nothing_to_do")

    progress, started = runs.try_start(tenant_id, total)
    if not started:
        return ReprocessStart("already_running", progress.total_pos, progress)

    logger.info("Reprocess accepted", extra={"run_id": progress.run_id, "total_pos": total})
    task = spawn(run_reprocess(tenant_id, progress, runs=runs), name="reprocess", tenant_id=tenant_id)
    return ReprocessStart("started", total, progress, task)


def get_reprocess_status(tenant_id: str, *, runs: ReprocessRegistry | None = None) -> dict:
    progress = (runs or registry).get(tenant_id)
    return progress.to_dict() if progress is not None else {"status": "idle"}


def cancel_reprocess(tenant_id: str, *, runs: ReprocessRegistry | None = None) -> ReprocessProgress | None:
    """Ask the active run to stop before its next purchase order."""
    progress = (runs or registry).cancel(tenant_id)
    if progress is not None:
        logger.warning("Reprocess cancellation requested", extra={"run_id": progress.run_id})
    return progress


def _backfill_variations(db: Session, po: PurchaseOrder) -> int:
    filled = 0
    for item in po.items:
        if item.variation_id or not item.sku or item.product is None:
            continue
        match = find_variation_by_sku(item.product, item.sku)
        if match is not None:
            item.variation_id = match.variation_id
            filled += 1
            logger.info("Backfilled variation link", extra={"po_item_id": item.id, "sku": item.sku,
                                                            "variation_id": match.variation_id})
    return filled


def _set_status(db: Session, purchase_order_id: str, status: str) -> None:
    po = db.get(PurchaseOrder, purchase_order_id)
    po.status = status
    db.commit()


def repair_purchase_order(
    db: Session, tenant_id: str, po: PurchaseOrder, progress: ReprocessProgress, touched: set[str]
) -> None:
    """Run the five-step sequence for one RECEIVED PO.

    Product ids whose stock moved are added to ``touched`` as each step
    commits. Raises ReprocessRestoreError when the PO cannot be set back to
    RECEIVED.
    """
    po_id, label = po.id, po.label

    try:
        reversed_ = reverse_recorded_receipt(db, tenant_id, po_id)
    except Exception as e:
        db.rollback()
        logger.error("Unreceive failed; purchase order left untouched", exc_info=True)
        progress.errors.append(f"PO {label} ({po_id}): unreceive failed: {e}")
        return
    touched.update(reversed_.updated_product_ids)

    try:
        po = db.get(PurchaseOrder, po_id)
        backfilled = _backfill_variations(db, po)
        po.status = PO_DRAFT
        db.commit()
        progress.variations_backfilled += backfilled

        result = receive_stock(db, tenant_id, po_id)
        touched.update(result.updated_product_ids)
        progress.errors.extend(f"PO {label}: {err}" for err in result.errors)
        progress.repaired += 1
        logger.info("Purchase order re-received",
                    extra={"backfilled": backfilled, "updated_count": result.updated_count, "errors": len(result.errors)})
    except Exception as e:
        db.rollback()
        logger.error("Purchase order repair failed after unreceive", exc_info=True)
        progress.errors.append(f"PO {label} ({po_id}): repair failed after unreceive: {e}")
    finally:
        try:
            _set_status(db, po_id, PO_RECEIVED)
        except Exception as e:
            db.rollback()
            raise ReprocessRestoreError(po_id, e, label=label) from e


def _repair_one(db: Session, tenant_id: str, po_id: str, progress: ReprocessProgress, touched: set[str]) -> None:
    with LogContext.bind(purchase_order_id=po_id):
        po = db.get(PurchaseOrder, po_id)
        if po is not None and po.status == PO_RECEIVED:
            repair_purchase_order(db, tenant_id, po, progress, touched)


async def run_reprocess(tenant_id: str, progress: ReprocessProgress, *, runs: ReprocessRegistry | None = None) -> ReprocessProgress:
    runs = runs or registry
    db = SessionLocal()
    touched: set[str] = set()
    with LogContext.bind(run_id=progress.run_id):
        logger.info("Reprocess started", extra={"total_pos": progress.total_pos})
        try:
            po_ids = _received_po_ids(db, tenant_id)
            progress.total_pos = len(po_ids)
            for n, po_id in enumerate(po_ids):
                # Cancellation is only honoured between POs.
                if progress.cancel_requested:
                    progress.errors.append(f"Reprocess cancelled after {n} of {len(po_ids)} purchase orders")
                    logger.warning("Reprocess cancelled", extra={"processed": n})
                    runs.finish(progress, FAILED)
                    return progress

                # One PO at a time off the event loop; status polls stay responsive.
                try:
                    await asyncio.to_thread(_repair_one, db, tenant_id, po_id, progress, touched)
                except ReprocessRestoreError as err:
                    logger.critical(err.message, exc_info=err,
                                    extra={"error_code": err.code, "purchase_order_id": err.purchase_order_id})
                    progress.critical_failures.append(err.purchase_order_id)
                    progress.errors.append(f"PO {err.label} ({err.purchase_order_id}): CRITICAL {err.message}")
                progress.processed += 1

            if touched:
                parents = await asyncio.to_thread(cascade_to_parents, db, tenant_id, product_ids=sorted(touched))
                logger.info("BOM parents re-synced after reprocess", extra={"changed_parents": len(parents)})
            progress.reindexed = await reindex_all(db, tenant_id)
            publish(db, TOPIC_REPROCESS_COMPLETED, {**progress.to_dict(), "status": COMPLETED}, tenant_id=tenant_id)
            runs.finish(progress, COMPLETED)
            logger.info(
                "Reprocess completed",
                extra={
                    "total_pos": progress.total_pos,
                    "repaired": progress.repaired,
                    "variations_backfilled": progress.variations_backfilled,
                    "reindexed": progress.reindexed,
                    "errors": len(progress.errors),
                    "critical_failures": len(progress.critical_failures),
                },
            )
        except Exception as e:
            db.rollback()
            logger.exception("Reprocess run failed")
            progress.errors.append(f"Reprocess failed: {e}")
            runs.finish(progress, FAILED)
        finally:
            if progress.status == RUNNING:
                progress.errors.append("Reprocess interrupted")
                runs.finish(progress, FAILED)
            db.close()
    return progress
