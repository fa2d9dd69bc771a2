from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gasopper_crm.auth.service import AuthService
from gasopper_crm.context import bind_actor
from gasopper_crm.core.auth import AuthUser, get_current_user
from gasopper_crm.core.database import get_db
from gasopper_crm.core.errors import CRMError
from gasopper_crm.directory.service import UserService
from gasopper_crm.security.context import Actor


user_service = UserService()
auth_service = AuthService(user_service)


def get_current_actor(
    request: Request,
    auth_user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Actor:
    try:
        actor = auth_service.resolve_actor(db, auth_user)
    except CRMError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    bind_actor(request, actor.user_id, actor.role.label)
    return actor
