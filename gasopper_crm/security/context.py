from __future__ import annotations

from dataclasses import dataclass

from gasopper_crm.directory.models import Role


@dataclass(frozen=True, slots=True)
class Actor:
    user_id: int
    role: Role
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
