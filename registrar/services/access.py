"""
Role checks for registrar-only operations.

Identity is supplied by the caller (the REST layer reads it from request
headers); this module only decides whether the supplied roles suffice.
"""

from typing import Iterable, Optional, Set

from ..core.enums import UserRole
from ..core.exceptions import AuthorizationError


def normalize_roles(roles: Iterable[str]) -> Set[str]:
    return {str(getattr(role, 'value', role)).strip().lower() for role in roles if role}


def require_role(actor_id: Optional[str], roles: Iterable[str], *allowed: UserRole,
                 action: str = "perform this action") -> None:
    if not actor_id:
        raise AuthorizationError(f"An authenticated user is required to {action}", "Unauthenticated")
    granted = normalize_roles(roles)
    if not granted & {role.value for role in allowed}:
        needed = " or ".join(role.value for role in allowed)
        raise AuthorizationError(
            f"User {actor_id} needs the {needed} role to {action}",
            "Forbidden",
            {'actor_id': actor_id, 'required': [role.value for role in allowed]},
        )
