from __future__ import annotations

import threading
import time
from typing import Any, Callable

from app.core.config import PRODUCT_CACHE_TTL_SECONDS

# In-process TTL cache keyed by (namespace, tenant_id, key).
_entries: dict[tuple[str, str, str], tuple[float, Any]] = {}
_lock = threading.Lock()


def get_or_load(namespace: str, tenant_id: str, key: str, loader: Callable[[], Any], *, ttl: float | None = None) -> Any:
    ttl = PRODUCT_CACHE_TTL_SECONDS if ttl is None else ttl
    now = time.monotonic()
    with _lock:
        hit = _entries.get((namespace, tenant_id, key))
        if hit and hit[0] > now:
            return hit[1]
    value = loader()
    with _lock:
        _entries[(namespace, tenant_id, key)] = (now + ttl, value)
    return value


def invalidate_cache(namespace: str, tenant_id: str) -> int:
    """Drop every entry of a tenant's namespace; returns how many were removed."""
    with _lock:
        doomed = [k for k in _entries if k[0] == namespace and k[1] == tenant_id]
        for k in doomed:
            del _entries[k]
    return len(doomed)


def clear_cache() -> None:
    with _lock:
        _entries.clear()
