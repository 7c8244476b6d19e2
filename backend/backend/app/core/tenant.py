from __future__ import annotations
import contextvars
from contextlib import contextmanager
from typing import Iterator

_tenant: contextvars.ContextVar[str] = contextvars.ContextVar("tenant_id", default="default")

def set_tenant_id(tenant_id: str) -> None:
    _tenant.set(tenant_id or "default")

def get_tenant_id() -> str:
    return _tenant.get()

@contextmanager
def tenant_scope(tenant_id: str) -> Iterator[str]:
    """Run a block (typically a background task) as the given tenant."""
    token = _tenant.set(tenant_id or "default")
    try:
        yield _tenant.get()
    finally:
        _tenant.reset(token)
