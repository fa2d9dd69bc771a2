from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from gasopper_crm.auth.api import router as auth_router
from gasopper_crm.auth.dependencies import get_current_actor
from gasopper_crm.core.config import get_settings
from gasopper_crm.crm.api import leads_router, opportunities_router, sites_router
from gasopper_crm.directory.api import router as users_router
from gasopper_crm.metrics import generate_metrics_payload, metrics_content_type
from gasopper_crm.security.context import Actor

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(leads_router)
router.include_router(opportunities_router)
router.include_router(sites_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(actor: Actor = Depends(get_current_actor)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
