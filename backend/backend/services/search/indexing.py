"""
Reindex dispatcher for the external search/index service.

Index calls are fire-and-forget: a failed delivery is logged and never blocks
or fails a stock mutation. Every batch ends by invalidating the tenant's
cached product list.
"""

from __future__ import annotations

from typing import Iterable

import httpx
from sqlalchemy.orm import Session

from app.core.cache import invalidate_cache
from app.core.config import SEARCH_INDEX_TIMEOUT_SECONDS, SEARCH_INDEX_URL
from app.core.logging import get_logger
from app.core.tasks import spawn
from app.db.models.catalog import Product
from app.db.session import SessionLocal
from services.bom.sync import cascade_to_parents

logger = get_logger("search.indexing")

PRODUCTS_CACHE = "products"


def _num(value) -> float | None:
    return float(value) if value is not None else None


def build_product_snapshot(product: Product) -> dict:
    """Denormalized product + variations document."""
    return {
        "id": product.id,
        "external_id": product.external_id,
        "name": product.name,
        "sku": product.sku,
        "type": product.product_type,
        "stock_quantity": product.stock_quantity,
        "stock_status": product.stock_status,
        "cogs": _num(product.cogs),
        "weight": _num(product.weight),
        "variations": [
            {
                "id": v.variation_id,
                "sku": v.sku,
                "stock_quantity": v.stock_quantity,
                "stock_status": v.stock_status,
                "cogs": _num(v.cogs),
                "attributes": v.attributes or {},
            }
            for v in product.variations
        ],
    }


class IndexingService:
    def __init__(self, base_url: str = SEARCH_INDEX_URL, *, timeout: float = SEARCH_INDEX_TIMEOUT_SECONDS):
        self.base_url = base_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def index_product(self, tenant_id: str, snapshot: dict) -> bool:
        if not self.enabled:
            logger.debug("Search indexing disabled; skipping", extra={"product_id": snapshot.get("id")})
            return False
        url = f"{self.base_url}/tenants/{tenant_id}/products/{snapshot['id']}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.put(url, json=snapshot)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Product index delivery failed", extra={"product_id": snapshot.get("id"), "error": str(e)})
            return False
        return True


_indexer: IndexingService | None = None


def get_indexer() -> IndexingService:
    global _indexer
    if _indexer is None:
        _indexer = IndexingService()
    return _indexer


def set_indexer(indexer: IndexingService | None) -> None:
    global _indexer
    _indexer = indexer


async def _index_products(tenant_id: str, products: Iterable[Product]) -> int:
    indexer = get_indexer()
    indexed = 0
    for product in products:
        try:
            ok = await indexer.index_product(tenant_id, build_product_snapshot(product))
        except Exception:
            logger.warning("Product index call raised", exc_info=True, extra={"product_id": product.id})
            continue
        if ok:
            indexed += 1
    invalidate_cache(PRODUCTS_CACHE, tenant_id)
    return indexed


async def reindex_products(db: Session, tenant_id: str, product_ids: Iterable[str]) -> int:
    ids = list(dict.fromkeys(product_ids))
    if not ids:
        return 0
    products = db.query(Product).filter(Product.tenant_id == tenant_id, Product.id.in_(ids)).all()
    indexed = await _index_products(tenant_id, products)
    logger.info("Reindex batch finished", extra={"requested": len(ids), "indexed": indexed})
    return indexed


async def reindex_all(db: Session, tenant_id: str) -> int:
    """Conservative sweep over every product of the tenant."""
    products = db.query(Product).filter(Product.tenant_id == tenant_id).order_by(Product.created_at.asc()).all()
    indexed = await _index_products(tenant_id, products)
    logger.info("Full reindex finished", extra={"products": len(products), "indexed": indexed})
    return indexed


async def propagate_stock_change(
    tenant_id: str,
    product_ids: Iterable[str] = (),
    internal_product_ids: Iterable[str] = (),
) -> list[str]:
    """Re-sync BOM parents of the touched components, then reindex everything that changed."""
    product_ids = list(product_ids)
    internal_product_ids = list(internal_product_ids)
    db = SessionLocal()
    try:
        parents = cascade_to_parents(db, tenant_id, product_ids=product_ids, internal_product_ids=internal_product_ids)
        touched = list(dict.fromkeys([*product_ids, *parents]))
        await reindex_products(db, tenant_id, touched)
        return touched
    finally:
        db.close()


def schedule_stock_propagation(
    tenant_id: str,
    product_ids: Iterable[str] = (),
    internal_product_ids: Iterable[str] = (),
):
    """Spawn propagate_stock_change in the background; no-op when nothing was touched."""
    product_ids = list(product_ids)
    internal_product_ids = list(internal_product_ids)
    if not product_ids and not internal_product_ids:
        return None
    return spawn(
        propagate_stock_change(tenant_id, product_ids, internal_product_ids),
        name="stock-propagation",
        tenant_id=tenant_id,
    )
