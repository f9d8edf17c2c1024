"""
Role-based authorization for booking writes.
"""

from typing import Collection, Mapping, Optional

from courtbook.core.config import Settings
from courtbook.services.interfaces.authorization import AuthorizationPolicy


class RoleAuthorization(AuthorizationPolicy):
    """Allowed roles per action, straight from settings."""

    def __init__(self, roles_by_action: Mapping[str, Collection[str]]):
        self.roles_by_action = {action: frozenset(roles) for action, roles in roles_by_action.items()}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoleAuthorization":
        return cls({
            "create": settings.CREATE_ROLES,
            "reschedule": settings.RESCHEDULE_ROLES,
            "delete": settings.DELETE_ROLES,
        })

    def allowed(self, role: Optional[str], action: str) -> bool:
        return role is not None and role in self.roles_by_action.get(action, ())
