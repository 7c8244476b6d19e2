from __future__ import annotations
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.tenant import set_tenant_id
from app.core.logging import LogContext

class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        tenant = request.headers.get("X-Tenant-Id") or request.headers.get("x-tenant-id") or "default"
        set_tenant_id(tenant)
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        with LogContext.bind(tenant_id=tenant, correlation_id=request_id):
            return await call_next(request)
