from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.errors import BOMItemNotFoundError, CompositionValidationError, ProductNotFoundError
from app.core.tenant import get_tenant_id
from app.db.session import get_db
from services.bom.composition import (
    compute_cogs,
    get_composition,
    list_deactivated_items,
    reactivate_bom_item,
    set_composition,
)
from services.bom.effective_stock import load_effective_stock
from services.bom.schemas import CompositionIn
from services.bom.sync import sync_all_compositions, sync_effective_stock

router = APIRouter(prefix="/inventory", tags=["bom"])


def _composition_out(composition) -> dict:
    out = composition.to_dict()
    out["cogs"] = float(compute_cogs(composition))
    return out


@router.get("/products/{product_id}/bom")
def read_bom(product_id: str, variation_id: int = 0, db: Session = Depends(get_db)):
    composition = get_composition(db, get_tenant_id(), product_id, variation_id)
    if composition is None:
        return {"product_id": product_id, "variation_id": variation_id, "items": []}
    return _composition_out(composition)


@router.post("/products/{product_id}/bom")
def save_bom(product_id: str, payload: CompositionIn, db: Session = Depends(get_db)):
    try:
        composition = set_composition(db, get_tenant_id(), product_id, payload.variation_id, payload.items)
    except ProductNotFoundError as e:
        raise HTTPException(404, e.to_detail())
    except CompositionValidationError as e:
        raise HTTPException(422, e.to_detail())
    return _composition_out(composition)


@router.get("/products/{product_id}/bom/effective-stock")
def effective_stock(product_id: str, variation_id: int = 0, db: Session = Depends(get_db)):
    result = load_effective_stock(db, get_tenant_id(), product_id, variation_id)
    if result is None:
        raise HTTPException(404, {"code": "BOM_NOT_FOUND", "message": f"No BOM for product {product_id}"})
    return result.to_dict()


@router.post("/products/{product_id}/bom/sync")
def sync_bom(product_id: str, variation_id: int = 0, db: Session = Depends(get_db)):
    return sync_effective_stock(db, get_tenant_id(), product_id, variation_id).to_dict()


@router.post("/bom/sync-all")
def sync_all(db: Session = Depends(get_db)):
    return sync_all_compositions(db, get_tenant_id())


@router.get("/bom/deactivated-items")
def deactivated_items(db: Session = Depends(get_db)):
    return list_deactivated_items(db, get_tenant_id())


@router.patch("/bom/items/{item_id}/reactivate")
def reactivate_item(item_id: str, db: Session = Depends(get_db)):
    try:
        reactivated = reactivate_bom_item(db, get_tenant_id(), item_id)
    except BOMItemNotFoundError as e:
        raise HTTPException(404, e.to_detail())
    if not reactivated:
        return {"message": "Item is already active", "item_id": item_id, "reactivated": False}
    return {"message": "BOM item reactivated", "item_id": item_id, "reactivated": True}
