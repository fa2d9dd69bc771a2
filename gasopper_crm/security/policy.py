"""Ownership-based visibility and assignment rules.

The three-tier model is fixed: an Admin sees everything, a Manager sees its own
records and those owned by its active direct reports, a Salesperson sees only
its own. Decisions never raise; callers turn a refusal into ``NotFoundOrDenied``
so that "absent" and "not yours" are indistinguishable.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from sqlalchemy import Select, false
from sqlalchemy.orm import InstrumentedAttribute

from gasopper_crm.directory.models import Role
from gasopper_crm.directory.repository import UserDirectory
from gasopper_crm.metrics import observe_access_denied
from gasopper_crm.security.context import Actor


logger = logging.getLogger("gasopper.security")

SelectT = TypeVar("SelectT", bound=Select[Any])


class AccessPolicy:
    def __init__(self, directory: UserDirectory) -> None:
        self.directory = directory

    def visible_owner_set(self, actor: Actor) -> set[int] | None:
        """Return the owner ids the actor may see, or ``None`` for unrestricted."""
        if actor.role is Role.ADMIN:
            return None
        if actor.role is Role.MANAGER:
            return {actor.user_id} | self.directory.active_team_ids(actor.user_id)
        return {actor.user_id}

    def can_access(self, actor: Actor, owner_id: int | None) -> bool:
        if actor.role is Role.ADMIN:
            return True
        if owner_id is None:
            return False
        if owner_id == actor.user_id:
            return True
        if actor.role is Role.MANAGER:
            # Lookup is live on every call, so a re-parented owner is picked up at once.
            owner = self.directory.get_user(owner_id)
            return owner is not None and owner.manager_id == actor.user_id
        return False

    def can_assign(self, actor: Actor, assignee_id: int) -> bool:
        if assignee_id == actor.user_id:
            return True
        if actor.role is Role.ADMIN:
            return True
        if actor.role is Role.MANAGER:
            visible = self.visible_owner_set(actor)
            return visible is not None and assignee_id in visible
        return False

    def apply_owner_scope(self, stmt: SelectT, column: InstrumentedAttribute[Any], actor: Actor) -> SelectT:
        visible = self.visible_owner_set(actor)
        if visible is None:
            return stmt
        if not visible:
            return stmt.where(false())
        return stmt.where(column.in_(visible))

    def record_denied(self, actor: Actor, resource: str, entity_id: Any) -> None:
        observe_access_denied(resource)
        logger.info(
            "access.denied",
            extra={"actor_id": actor.user_id, "operation": resource, "entity_id": entity_id},
        )
