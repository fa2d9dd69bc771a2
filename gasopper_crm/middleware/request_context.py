from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from gasopper_crm.context import RequestContext, get_correlation_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None) or ""
        request.state.context = RequestContext(correlation_id=correlation_id)
        response = await call_next(request)
        # Requests and their correlation share one id in this service.
        response.headers["x-request-id"] = correlation_id
        return response
