from __future__ import annotations

import asyncio
import uuid
from typing import Any, Coroutine

from app.core.logging import LogContext, get_logger
from app.core.tenant import tenant_scope

logger = get_logger("tasks")

# Strong references so the event loop does not garbage-collect running tasks.
_background: set[asyncio.Task] = set()


def spawn(coro: Coroutine[Any, Any, Any], *, name: str, tenant_id: str) -> asyncio.Task:
    """Run ``coro`` detached from the current request.

    The task gets its own correlation id and tenant scope; an exception that
    escapes it is logged here instead of vanishing with the task.
    """
    correlation_id = f"{name}:{uuid.uuid4().hex[:12]}"

    async def _runner():
        with tenant_scope(tenant_id), LogContext.bind(tenant_id=tenant_id, correlation_id=correlation_id):
            try:
                return await coro
            except asyncio.CancelledError:
                logger.warning("Background task cancelled", extra={"task": name})
                raise
            except Exception:
                logger.exception("Background task failed", extra={"task": name})
                return None

    task = asyncio.get_running_loop().create_task(_runner(), name=correlation_id)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


async def drain(timeout: float | None = None) -> None:
    """Wait for every spawned task to finish (shutdown hook and tests)."""
    while _background:
        await asyncio.wait(list(_background), timeout=timeout)
        if timeout is not None:
            return
