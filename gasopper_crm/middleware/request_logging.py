from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from gasopper_crm.context import request_context
from gasopper_crm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("gasopper.request")

# Probe endpoints are polled constantly; keep them out of INFO output.
PROBE_PATHS = frozenset({"/health", "/metrics"})


def _request_fields(request: Request, status_code: int, duration_ms: float) -> dict[str, Any]:
    context = request_context(request)
    return {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": duration_ms,
        "actor_id": context.actor_id if context is not None else None,
        "actor_role": context.actor_role if context is not None else None,
    }


def _level_for(request: Request, status_code: int) -> int:
    if status_code >= 500:
        return logging.WARNING
    if request.url.path in PROBE_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            fields = _request_fields(request, 500, duration_ms)
            observe_http_request(request.method, fields["path"], 500, duration_ms / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        # The route is only matched once the inner app has run, so the label is resolved afterwards.
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        fields = _request_fields(request, response.status_code, duration_ms)
        observe_http_request(request.method, fields["path"], response.status_code, duration_ms / 1000)
        logger.log(_level_for(request, response.status_code), "http.request", extra=fields)
        return response
