from __future__ import annotations

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from gasopper_crm.directory.models import User, UserSession, utcnow


class UserDirectory:
    """Read-side lookups over the user hierarchy.

    Every call goes to the session; nothing is cached, so a manager change or a
    deactivation is visible to the very next policy decision.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_user(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def get_active_user(self, user_id: int) -> User | None:
        user = self.get_user(user_id)
        if user is None or not user.is_active:
            return None
        return user

    def get_by_email(self, email: str) -> User | None:
        return self.session.scalar(select(User).where(User.email == email))

    def active_team_ids(self, manager_id: int) -> set[int]:
        rows = self.session.scalars(
            select(User.id).where(and_(User.manager_id == manager_id, User.is_active.is_(True)))
        ).all()
        return set(rows)

    def list_active_team(self, manager_id: int) -> list[User]:
        stmt = (
            select(User)
            .where(and_(User.manager_id == manager_id, User.is_active.is_(True)))
            .order_by(User.first_name, User.last_name)
        )
        return list(self.session.scalars(stmt).all())

    def natural_key_taken(self, email: str, employee_id: str, exclude_id: int | None = None) -> bool:
        stmt = select(User.id).where(or_(User.email == email, User.employee_id == employee_id))
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt.limit(1)) is not None

    def revoke_sessions(self, user_id: int) -> int:
        result = self.session.execute(
            update(UserSession)
            .where(and_(UserSession.user_id == user_id, UserSession.revoked_at.is_(None)))
            .values(revoked_at=utcnow())
        )
        return result.rowcount or 0
