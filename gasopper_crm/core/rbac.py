from gasopper_crm.core.errors import ForbiddenOperation
from gasopper_crm.directory.models import Role
from gasopper_crm.security.context import Actor


def require_roles(actor: Actor, *roles: Role) -> None:
    if actor.role not in roles:
        raise ForbiddenOperation(
            f"Requires role: {', '.join(role.label for role in roles)}",
            details={"role": actor.role.label},
        )
