from __future__ import annotations

import asyncio

from fastapi import FastAPI

from app.core.config import EVENT_DISPATCHER_ENABLED, LOG_FORMAT, LOG_LEVEL
from app.core.logging import configure_logging, get_logger
from app.core.middleware import TenantMiddleware
from app.core.tasks import drain
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

from services.bom.api import router as bom_router
from services.inventory.api import router as inventory_router
from services.purchasing.api import router as purchasing_router

configure_logging(level=LOG_LEVEL, fmt=LOG_FORMAT)
logger = get_logger("main")

app = FastAPI(title="BOM Inventory Engine")
app.add_middleware(TenantMiddleware)

_dispatcher: asyncio.Task | None = None


@app.on_event("startup")
async def _startup():
    global _dispatcher
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)

    if EVENT_DISPATCHER_ENABLED:
        from app.events.dispatcher import run_dispatcher_forever

        _dispatcher = asyncio.create_task(run_dispatcher_forever(poll_interval_seconds=1.0))
    logger.info("Inventory engine started", extra={"event_dispatcher": EVENT_DISPATCHER_ENABLED})


@app.on_event("shutdown")
async def _shutdown():
    if _dispatcher is not None:
        _dispatcher.cancel()
    await drain(timeout=10)


app.include_router(bom_router)
app.include_router(inventory_router)
app.include_router(purchasing_router)


@app.get("/health")
def health():
    return {"ok": True}
