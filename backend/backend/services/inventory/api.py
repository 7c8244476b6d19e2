from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.cache import get_or_load
from app.core.errors import InternalProductNotFoundError
from app.core.tenant import get_tenant_id
from app.db.models.catalog import Product
from app.db.session import get_db
from services.inventory.internal_products import adjust_internal_stock
from services.purchasing.service import get_inbound_quantity
from services.search.indexing import PRODUCTS_CACHE, build_product_snapshot, schedule_stock_propagation

router = APIRouter(prefix="/inventory", tags=["inventory"])


class AdjustStockIn(BaseModel):
    delta: int
    reason: Optional[str] = Field(default=None, max_length=256)


@router.get("/products")
def list_products(db: Session = Depends(get_db), limit: int = 200):
    tenant_id = get_tenant_id()

    def _load():
        ps = (
            db.query(Product)
            .filter(Product.tenant_id == tenant_id)
            .order_by(Product.created_at.desc())
            .limit(limit)
            .all()
        )
        return [build_product_snapshot(p) for p in ps]

    return get_or_load(PRODUCTS_CACHE, tenant_id, f"list:{limit}", _load)


@router.get("/products/{product_id}/inbound")
def inbound_quantity(product_id: str, variation_id: int = 0, db: Session = Depends(get_db)):
    qty = get_inbound_quantity(db, get_tenant_id(), product_id, variation_id or None)
    return {"product_id": product_id, "variation_id": variation_id, "inbound": qty}


@router.post("/internal-products/{internal_product_id}/adjust-stock")
async def adjust_stock(internal_product_id: str, payload: AdjustStockIn, db: Session = Depends(get_db)):
    tenant_id = get_tenant_id()
    try:
        ip = adjust_internal_stock(db, tenant_id, internal_product_id, payload.delta, payload.reason)
    except InternalProductNotFoundError as e:
        raise HTTPException(404, e.to_detail())
    schedule_stock_propagation(tenant_id, internal_product_ids=[ip.id])
    return {"id": ip.id, "name": ip.name, "stock_quantity": ip.stock_quantity}
