from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gasopper_crm.core.errors import (
    ForbiddenOperation,
    NotFoundOrDenied,
    OperationFailed,
    ValidationFailed,
    storage_boundary,
)
from gasopper_crm.core.passwords import hash_password, verify_password
from gasopper_crm.directory.models import Role, User
from gasopper_crm.directory.repository import UserDirectory
from gasopper_crm.directory.schemas import PasswordChange, RoleRead, UserCreate, UserRead, UserUpdate
from gasopper_crm.security.context import Actor
from gasopper_crm.security.policy import AccessPolicy


logger = logging.getLogger("gasopper.directory")

_MANAGING_ROLES = {Role.ADMIN, Role.MANAGER}


def _parse_role(role_id: int) -> Role:
    try:
        return Role(role_id)
    except ValueError as exc:
        raise ValidationFailed("invalid role", details={"role_id": role_id}) from exc


class UserService:
    entity_type = "directory.user"
    profile_fields = ("email", "phone_number", "address", "first_name", "last_name")

    def create_user(self, session: Session, actor: Actor, dto: UserCreate) -> UserRead:
        if actor.role is Role.SALESPERSON:
            raise ForbiddenOperation("salespeople cannot create users")

        with storage_boundary(session, "user.create"):
            directory = UserDirectory(session)
            role = _parse_role(dto.role_id)
            manager_id = dto.manager_id
            if actor.role is Role.MANAGER:
                if role is not Role.SALESPERSON:
                    raise ValidationFailed("managers may only create salespeople", details={"role_id": dto.role_id})
                if manager_id is None:
                    manager_id = actor.user_id
                elif manager_id != actor.user_id:
                    raise ValidationFailed("managers may only create their own reports", details={"manager_id": manager_id})

            self._check_manager(directory, manager_id)
            if directory.natural_key_taken(str(dto.email), dto.employee_id):
                raise ValidationFailed("email or employee id already in use")

            user = User(
                employee_id=dto.employee_id,
                email=str(dto.email),
                phone_number=dto.phone_number,
                address=dto.address,
                first_name=dto.first_name,
                last_name=dto.last_name,
                role_id=int(role),
                manager_id=manager_id,
                password_hash=hash_password(dto.password),
                is_active=True,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationFailed("email or employee id already in use") from exc

            logger.info(
                "user.created",
                extra={"operation": "user.create", "entity_id": user.id, "actor_id": actor.user_id},
            )
            return self.to_read(session, user)

    def get_user(self, session: Session, actor: Actor, user_id: int) -> UserRead:
        with storage_boundary(session, "user.get"):
            user = self._load_visible(session, actor, user_id)
            return self.to_read(session, user)

    def list_users(self, session: Session, actor: Actor) -> list[UserRead]:
        try:
            with storage_boundary(session, "user.list"):
                stmt = AccessPolicy(UserDirectory(session)).apply_owner_scope(select(User), User.id, actor)
                users = session.scalars(stmt.order_by(User.id)).all()
                return self.to_reads(session, users)
        except OperationFailed:
            return []

    def update_user(self, session: Session, actor: Actor, user_id: int, dto: UserUpdate) -> UserRead:
        with storage_boundary(session, "user.update"):
            directory = UserDirectory(session)
            user = self._load_visible(session, actor, user_id)
            payload = dto.model_dump(exclude_unset=True)

            new_email = payload.get("email")
            if new_email and new_email != user.email and directory.natural_key_taken(
                str(new_email), user.employee_id, exclude_id=user.id
            ):
                raise ValidationFailed("email already in use")

            for field_name in self.profile_fields:
                value = payload.get(field_name)
                if value:
                    setattr(user, field_name, str(value))

            # Role, manager and activation are Admin-only; anyone else's values are dropped.
            if actor.role is Role.ADMIN:
                if payload.get("role_id") is not None:
                    user.role_id = int(_parse_role(payload["role_id"]))
                if payload.get("manager_id") is not None:
                    if payload["manager_id"] == user.id:
                        raise ValidationFailed("user cannot manage itself")
                    self._check_manager(directory, payload["manager_id"])
                    user.manager_id = payload["manager_id"]
                if payload.get("is_active") is not None:
                    if not payload["is_active"] and user.id == actor.user_id:
                        raise ValidationFailed("cannot deactivate yourself")
                    user.is_active = payload["is_active"]
                    if not user.is_active:
                        directory.revoke_sessions(user.id)

            session.commit()
            return self.to_read(session, user)

    def deactivate_user(self, session: Session, actor: Actor, user_id: int) -> None:
        if actor.role is not Role.ADMIN:
            raise ForbiddenOperation("only admins can deactivate users")
        if user_id == actor.user_id:
            raise ValidationFailed("cannot deactivate yourself")

        with storage_boundary(session, "user.deactivate"):
            directory = UserDirectory(session)
            user = directory.get_user(user_id)
            if user is None:
                raise NotFoundOrDenied("user not found")
            user.is_active = False
            directory.revoke_sessions(user.id)
            session.commit()
            logger.info(
                "user.deactivated",
                extra={
                    "operation": "user.deactivate",
                    "entity_id": user_id,
                    "actor_id": actor.user_id,
                },
            )

    def list_my_team(self, session: Session, actor: Actor) -> list[UserRead]:
        try:
            with storage_boundary(session, "user.list_team"):
                return self.to_reads(session, UserDirectory(session).list_active_team(actor.user_id))
        except OperationFailed:
            return []

    def change_password(self, session: Session, actor: Actor, user_id: int, dto: PasswordChange) -> None:
        if user_id != actor.user_id:
            raise ForbiddenOperation("you can only change your own password")

        with storage_boundary(session, "user.change_password"):
            user = UserDirectory(session).get_active_user(user_id)
            if user is None:
                raise NotFoundOrDenied("user not found")
            if not verify_password(dto.current_password, user.password_hash):
                raise ValidationFailed("current password is incorrect")
            user.password_hash = hash_password(dto.new_password)
            session.commit()

    def list_roles(self) -> list[RoleRead]:
        return [RoleRead(id=int(role), name=role.label, description=role.description) for role in Role]

    def _load_visible(self, session: Session, actor: Actor, user_id: int) -> User:
        policy = AccessPolicy(UserDirectory(session))
        visible = policy.visible_owner_set(actor)
        user = session.get(User, user_id)
        if user is None or (visible is not None and user_id not in visible):
            if user is not None:
                policy.record_denied(actor, self.entity_type, user_id)
            raise NotFoundOrDenied("user not found")
        return user

    def _check_manager(self, directory: UserDirectory, manager_id: int | None) -> None:
        if manager_id is None:
            return
        manager = directory.get_active_user(manager_id)
        if manager is None or manager.role not in _MANAGING_ROLES:
            raise ValidationFailed("manager must be an active manager or admin", details={"manager_id": manager_id})

    def to_read(self, session: Session, user: User) -> UserRead:
        return self.to_reads(session, [user])[0]

    def to_reads(self, session: Session, users: Sequence[User]) -> list[UserRead]:
        manager_ids = {user.manager_id for user in users if user.manager_id is not None}
        managers: dict[int, str] = {}
        if manager_ids:
            rows = session.execute(
                select(User.id, User.first_name, User.last_name).where(User.id.in_(manager_ids))
            ).all()
            managers = {row.id: f"{row.first_name} {row.last_name}" for row in rows}
        return [
            UserRead(
                id=user.id,
                employee_id=user.employee_id,
                email=user.email,
                phone_number=user.phone_number,
                address=user.address,
                first_name=user.first_name,
                last_name=user.last_name,
                full_name=user.full_name,
                role_id=user.role_id,
                role_name=user.role.label,
                manager_id=user.manager_id,
                manager_name=managers.get(user.manager_id) if user.manager_id is not None else None,
                is_active=user.is_active,
                last_login=user.last_login,
                created_at=user.created_at,
                updated_at=user.updated_at,
            )
            for user in users
        ]
