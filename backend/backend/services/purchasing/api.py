from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.errors import PurchaseOrderLockedError, PurchaseOrderNotFoundError
from app.core.tenant import get_tenant_id
from app.db.session import get_db
from services.purchasing.reprocess import cancel_reprocess, get_reprocess_status, start_reprocess
from services.purchasing.schemas import PurchaseOrderCreate, PurchaseOrderUpdate
from services.purchasing.service import (
    PurchaseOrderChange,
    create_purchase_order,
    get_purchase_order,
    list_purchase_orders,
    serialize_purchase_order,
    update_purchase_order,
)
from services.search.indexing import schedule_stock_propagation

router = APIRouter(prefix="/inventory", tags=["purchasing"])


def _change_out(change: PurchaseOrderChange, tenant_id: str) -> dict:
    out = serialize_purchase_order(change.purchase_order)
    if change.stock is not None:
        out["stock"] = change.stock.to_dict()
        schedule_stock_propagation(tenant_id, change.stock.updated_product_ids)
    return out


@router.get("/purchase-orders")
def list_pos(status: str | None = None, limit: int = 200, db: Session = Depends(get_db)):
    pos = list_purchase_orders(db, get_tenant_id(), status=status, limit=limit)
    return [serialize_purchase_order(po, with_items=False) for po in pos]


@router.post("/purchase-orders")
async def create_po(payload: PurchaseOrderCreate, db: Session = Depends(get_db)):
    tenant_id = get_tenant_id()
    change = create_purchase_order(db, tenant_id, payload)
    return _change_out(change, tenant_id)


@router.get("/purchase-orders/{po_id}")
def read_po(po_id: str, db: Session = Depends(get_db)):
    try:
        po = get_purchase_order(db, get_tenant_id(), po_id)
    except PurchaseOrderNotFoundError as e:
        raise HTTPException(404, e.to_detail())
    return serialize_purchase_order(po)


@router.put("/purchase-orders/{po_id}")
async def update_po(po_id: str, payload: PurchaseOrderUpdate, db: Session = Depends(get_db)):
    tenant_id = get_tenant_id()
    try:
        change = update_purchase_order(db, tenant_id, po_id, payload)
    except PurchaseOrderNotFoundError as e:
        raise HTTPException(404, e.to_detail())
    except PurchaseOrderLockedError as e:
        raise HTTPException(409, e.to_detail())
    return _change_out(change, tenant_id)


@router.post("/reprocess-received-pos")
async def reprocess_received_pos(db: Session = Depends(get_db)):
    started = start_reprocess(db, get_tenant_id())
    if started.outcome == "nothing_to_do":
        return {"success": True, "message": "No RECEIVED POs found", "processed": 0}
    if not started.accepted:
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Reprocess already running", "progress": started.progress.to_dict()},
        )
    return JSONResponse(
        status_code=202,
        content={
            "success": True,
            "message": f"Processing {started.total_pos} RECEIVED POs in background",
            "run_id": started.progress.run_id,
            "total_pos": started.total_pos,
        },
    )


@router.get("/reprocess-received-pos/status")
def reprocess_status():
    return get_reprocess_status(get_tenant_id())


@router.delete("/reprocess-received-pos")
def reprocess_cancel():
    progress = cancel_reprocess(get_tenant_id())
    if progress is None:
        raise HTTPException(404, {"code": "REPROCESS_NOT_RUNNING", "message": "No reprocess run is active"})
    return {"success": True, "run_id": progress.run_id, "cancel_requested": True}
