from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
import uvicorn
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from gasopper_crm import __version__
from gasopper_crm.api.routes import router as api_router
from gasopper_crm.core.config import get_settings
from gasopper_crm.core.database import SessionLocal, get_engine
from gasopper_crm.crm.seed import seed_station_types
from gasopper_crm.logging import configure_logging
from gasopper_crm.middleware.correlation_id import CorrelationIdMiddleware
from gasopper_crm.middleware.rate_limit import MutationRateLimitMiddleware
from gasopper_crm.middleware.request_context import RequestContextMiddleware
from gasopper_crm.middleware.request_logging import RequestLoggingMiddleware
from gasopper_crm.otel import SERVICE_NAME, get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("gasopper.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.seed_reference_data:
        session = SessionLocal(bind=get_engine())
        try:
            seed_station_types(session)
        finally:
            session.close()
    logger.info("system.started", extra={"operation": "startup", "status": settings.app_env})
    yield
    logger.info("system.stopped", extra={"operation": "shutdown"})


app = FastAPI(title="Gasopper CRM API", version=__version__, lifespan=lifespan)
# Starlette runs the last-added middleware first: correlation id, then logging, then context, then limits.
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

setup_otel(SERVICE_NAME, get_settings().otel_enabled)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "gasopper_crm.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_debug and settings.app_env == "local",
        log_config=None,
    )


if __name__ == "__main__":
    run()
