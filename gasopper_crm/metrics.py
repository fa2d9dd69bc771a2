"""Prometheus instruments for the CRM API.

HTTP series are labelled with the matched route template (``/api/leads/{id}``)
rather than the raw URL, so record ids never become label values.
"""

from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

crm_leads_converted_total = Counter(
    "crm_leads_converted_total",
    "Total leads converted to opportunities",
)
crm_opportunity_status_recomputed_total = Counter(
    "crm_opportunity_status_recomputed_total",
    "Derived opportunity status recomputations by resulting status",
    ["status"],
)
crm_site_changes_total = Counter(
    "crm_site_changes_total",
    "Installation site mutations by action",
    ["action"],
)
crm_access_denied_total = Counter(
    "crm_access_denied_total",
    "Total reads or writes refused by the ownership policy",
    ["resource"],
)
auth_logins_total = Counter(
    "auth_logins_total",
    "Login attempts by outcome",
    ["outcome"],
)


_TEMPLATE_PARAM_RE = re.compile(r"\{[^{}]+\}")
_NUMERIC_SEGMENT_RE = re.compile(r"/\d+(?=/|$)")


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(template, str) and template:
        return _TEMPLATE_PARAM_RE.sub("{id}", template)
    # Unmatched paths (404s outside any route) still must not leak ids.
    return _NUMERIC_SEGMENT_RE.sub("/{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_converted() -> None:
    crm_leads_converted_total.inc()


def observe_opportunity_status_recomputed(status: str) -> None:
    crm_opportunity_status_recomputed_total.labels(status=status).inc()


def observe_site_change(action: str) -> None:
    crm_site_changes_total.labels(action=action).inc()


def observe_access_denied(resource: str) -> None:
    crm_access_denied_total.labels(resource=resource).inc()


def observe_login(outcome: str) -> None:
    auth_logins_total.labels(outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
