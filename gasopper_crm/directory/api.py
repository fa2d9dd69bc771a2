from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from gasopper_crm.api.errors import crm_error_response
from gasopper_crm.api.schemas import MessageRead
from gasopper_crm.auth.dependencies import get_current_actor, user_service
from gasopper_crm.core.database import get_db
from gasopper_crm.core.errors import CRMError
from gasopper_crm.core.rbac import require_roles
from gasopper_crm.directory.models import Role
from gasopper_crm.directory.schemas import PasswordChange, RoleRead, UserCreate, UserRead, UserUpdate
from gasopper_crm.security.context import Actor


router = APIRouter(prefix="/api", tags=["directory.users"])


@router.get("/users", response_model=list[UserRead])
def list_users(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[UserRead]:
    return user_service.list_users(db, actor)


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        require_roles(actor, Role.ADMIN, Role.MANAGER)
        return user_service.create_user(db, actor, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.get("/users/my-team", response_model=list[UserRead])
def my_team(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[UserRead] | JSONResponse:
    try:
        require_roles(actor, Role.ADMIN, Role.MANAGER)
        return user_service.list_my_team(db, actor)
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.get("/users/roles", response_model=list[RoleRead])
def list_roles(actor: Actor = Depends(get_current_actor)) -> list[RoleRead]:
    return user_service.list_roles()


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        return user_service.get_user(db, actor, user_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.put("/users/{user_id}", response_model=UserRead)
def update_user(
    request: Request,
    user_id: int,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        return user_service.update_user(db, actor, user_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.delete("/users/{user_id}", response_model=MessageRead)
def deactivate_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageRead | JSONResponse:
    try:
        user_service.deactivate_user(db, actor, user_id)
        return MessageRead(message="User deactivated")
    except CRMError as exc:
        return crm_error_response(request, exc)


@router.post("/users/{user_id}/change-password", response_model=MessageRead)
def change_password(
    request: Request,
    user_id: int,
    dto: PasswordChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageRead | JSONResponse:
    try:
        user_service.change_password(db, actor, user_id, dto)
        return MessageRead(message="Password changed")
    except CRMError as exc:
        return crm_error_response(request, exc)
