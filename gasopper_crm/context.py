"""Request-scoped context.

The correlation id lives in a ContextVar so log records and spans created
anywhere below the middleware can pick it up. The verified actor is only known
once the auth dependency has run, so it is recorded on ``request.state`` and
read back by the request logger after the response.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass

from starlette.requests import Request

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


@dataclass
class RequestContext:
    correlation_id: str
    actor_id: int | None = None
    actor_role: str | None = None


def request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)


def bind_actor(request: Request, actor_id: int, actor_role: str) -> None:
    context = request_context(request)
    if context is None:
        return
    context.actor_id = actor_id
    context.actor_role = actor_role
