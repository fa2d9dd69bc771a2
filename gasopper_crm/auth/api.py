from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from gasopper_crm.api.errors import crm_error_response
from gasopper_crm.api.schemas import MessageRead
from gasopper_crm.auth.dependencies import auth_service, get_current_actor
from gasopper_crm.auth.schemas import LoginRequest, TokenResponse
from gasopper_crm.core.database import get_db
from gasopper_crm.core.errors import CRMError
from gasopper_crm.directory.schemas import UserRead
from gasopper_crm.security.context import Actor


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(
    request: Request,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> TokenResponse | JSONResponse:
    try:
        return auth_service.login(db, str(dto.email), dto.password)
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.post("/logout", response_model=MessageRead)
def logout(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageRead | JSONResponse:
    try:
        auth_service.logout(db, actor)
        return MessageRead(message="Logged out")
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.get("/me", response_model=UserRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        return auth_service.me(db, actor)
    except CRMError as exc:
        return crm_error_response(request, exc)
