"""
Pytest fixtures for the inventory engine test suite.

Provides:
- a throwaway SQLite database (DATABASE_URL is pointed at it before any
  application module is imported)
- per-test schema creation / teardown
- data factories for catalog, BOM and purchase-order rows
- a recording search indexer in place of the HTTP one
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="bom-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'engine.db')}"
os.environ["EVENT_DISPATCHER_ENABLED"] = "false"
os.environ["SEARCH_INDEX_URL"] = ""

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from app.core.cache import clear_cache  # noqa: E402
from app.core.logging import configure_logging, reset_logging  # noqa: E402
from app.db import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.db.models.bom import BOM, BOMItem  # noqa: E402
from app.db.models.catalog import (  # noqa: E402
    InternalProduct,
    Product,
    ProductVariation,
    Supplier,
    SupplierItem,
)
from app.db.models.purchasing import PO_DRAFT, PurchaseOrder, PurchaseOrderItem  # noqa: E402
from app.db.session import SessionLocal, engine  # noqa: E402
from services.purchasing import reprocess  # noqa: E402
from services.search.indexing import IndexingService, set_indexer  # noqa: E402

TENANT = "t1"
OTHER_TENANT = "t2"


class RecordingIndexer(IndexingService):
    """Captures snapshots instead of calling the search service."""

    def __init__(self):
        super().__init__(base_url="http://search.invalid")
        self.calls: list[tuple[str, dict]] = []
        self.fail_ids: set[str] = set()

    async def index_product(self, tenant_id: str, snapshot: dict) -> bool:
        if snapshot["id"] in self.fail_ids:
            raise RuntimeError("index unavailable")
        self.calls.append((tenant_id, snapshot))
        return True

    @property
    def indexed_ids(self) -> list[str]:
        return [s["id"] for _, s in self.calls]


@pytest.fixture(autouse=True)
def _logging():
    reset_logging()
    configure_logging(level="DEBUG", propagate=True)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    clear_cache()
    reprocess.registry.clear()
    yield
    reprocess.registry.clear()
    clear_cache()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def indexer():
    rec = RecordingIndexer()
    set_indexer(rec)
    yield rec
    set_indexer(None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class Factory:
    def __init__(self, db, tenant_id: str = TENANT):
        self.db = db
        self.tenant_id = tenant_id

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def supplier(self, name="Acme Supplies", tenant_id=None):
        return self._save(Supplier(tenant_id=tenant_id or self.tenant_id, name=name))

    def supplier_item(self, *, name="Cotton roll", cost="1.50", available=0, supplier=None):
        supplier = supplier or self.supplier()
        return self._save(
            SupplierItem(supplier_id=supplier.id, name=name, cost=Decimal(cost), quantity_available=available)
        )

    def product(self, *, name="Widget", sku=None, stock=0, cogs=None, product_type="simple", raw_data=None, tenant_id=None):
        return self._save(
            Product(
                tenant_id=tenant_id or self.tenant_id,
                name=name,
                sku=sku,
                product_type=product_type,
                stock_quantity=stock,
                cogs=Decimal(cogs) if cogs is not None else None,
                raw_data=raw_data or {},
            )
        )

    def variation(self, product, variation_id, *, sku=None, stock=0, cogs=None, attributes=None):
        return self._save(
            ProductVariation(
                product_id=product.id,
                variation_id=variation_id,
                sku=sku,
                stock_quantity=stock,
                cogs=Decimal(cogs) if cogs is not None else None,
                attributes=attributes or {},
            )
        )

    def internal_product(self, *, name="Printed panel", stock=0, cogs=None):
        return self._save(
            InternalProduct(
                tenant_id=self.tenant_id,
                name=name,
                stock_quantity=stock,
                cogs=Decimal(cogs) if cogs is not None else None,
            )
        )

    def bom(self, product, items, *, variation_id=0):
        """Insert a BOM directly; items are dicts of BOMItem column values."""
        bom = BOM(tenant_id=self.tenant_id, product_id=product.id, variation_id=variation_id)
        bom.items = [
            BOMItem(
                position=n,
                quantity=Decimal(str(i.pop("quantity", 1))),
                waste_factor=Decimal(str(i.pop("waste_factor", 0))),
                **i,
            )
            for n, i in enumerate(items)
        ]
        return self._save(bom)

    def purchase_order(self, lines, *, status=PO_DRAFT, order_number="PO-1001"):
        po = PurchaseOrder(tenant_id=self.tenant_id, order_number=order_number, status=status)
        po.items = [
            PurchaseOrderItem(
                line_number=n,
                product_id=line.get("product_id"),
                variation_id=line.get("variation_id"),
                name=line.get("name", "line"),
                sku=line.get("sku"),
                quantity=line["quantity"],
                unit_cost=Decimal(str(line.get("unit_cost", 0))),
            )
            for n, line in enumerate(lines, start=1)
        ]
        return self._save(po)


@pytest.fixture
def make(db):
    return Factory(db)
