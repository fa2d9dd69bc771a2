from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from gasopper_crm.auth.schemas import TokenResponse
from gasopper_crm.context import get_correlation_id
from gasopper_crm.core.auth import AuthUser, issue_token
from gasopper_crm.core.errors import AuthenticationFailed, storage_boundary
from gasopper_crm.core.passwords import verify_password
from gasopper_crm.directory.models import UserSession
from gasopper_crm.directory.repository import UserDirectory
from gasopper_crm.directory.schemas import UserRead
from gasopper_crm.directory.service import UserService
from gasopper_crm.metrics import observe_login
from gasopper_crm.security.context import Actor


logger = logging.getLogger("gasopper.auth")


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthService:
    def __init__(self, user_service: UserService) -> None:
        self.users = user_service

    def login(self, session: Session, email: str, password: str) -> TokenResponse:
        with storage_boundary(session, "auth.login"):
            user = UserDirectory(session).get_by_email(email)
            if user is None or not user.is_active or not verify_password(password, user.password_hash):
                observe_login("rejected")
                logger.info("auth.login_failed", extra={"operation": "auth.login"})
                raise AuthenticationFailed("invalid email or password")

            issued = issue_token(
                user_id=user.id,
                role=user.role.label,
                role_id=user.role_id,
                email=user.email,
                name=user.full_name,
                employee_id=user.employee_id,
            )
            session.add(
                UserSession(
                    user_id=user.id,
                    token_id=issued.token_id,
                    issued_at=issued.issued_at,
                    expires_at=issued.expires_at,
                )
            )
            user.last_login = issued.issued_at
            session.commit()
            observe_login("success")
            logger.info("auth.login", extra={"operation": "auth.login", "actor_id": user.id})
            return TokenResponse(
                access_token=issued.access_token,
                expires_at=issued.expires_at,
                user=self.users.to_read(session, user),
            )

    def logout(self, session: Session, actor: Actor) -> None:
        with storage_boundary(session, "auth.logout"):
            UserDirectory(session).revoke_sessions(actor.user_id)
            session.commit()
            logger.info("auth.logout", extra={"operation": "auth.logout", "actor_id": actor.user_id})

    def me(self, session: Session, actor: Actor) -> UserRead:
        with storage_boundary(session, "auth.me"):
            user = UserDirectory(session).get_active_user(actor.user_id)
            if user is None:
                raise AuthenticationFailed("account is not active")
            return self.users.to_read(session, user)

    def resolve_actor(self, session: Session, auth_user: AuthUser) -> Actor:
        """Map verified token claims to a live actor.

        The role comes from the directory, not the token, so a role change or a
        deactivation takes effect on the next request.
        """
        if not auth_user.jti or not auth_user.sub.isdigit():
            raise AuthenticationFailed("invalid bearer token")

        with storage_boundary(session, "auth.resolve_actor"):
            record = session.scalar(
                select(UserSession).where(
                    and_(UserSession.token_id == auth_user.jti, UserSession.user_id == int(auth_user.sub))
                )
            )
            now = datetime.now(timezone.utc)
            if record is None or record.revoked_at is not None or _aware(record.expires_at) <= now:
                raise AuthenticationFailed("session expired or revoked")

            user = UserDirectory(session).get_active_user(record.user_id)
            if user is None:
                raise AuthenticationFailed("account is not active")
            return Actor(user_id=user.id, role=user.role, correlation_id=get_correlation_id())
