"""
Authorization policy interface.

The role check is an external concern: role in, yes/no out. Nothing else is
shared between the policy and the scheduling code.
"""

from abc import ABC, abstractmethod
from typing import Optional

from courtbook.core.errors import AuthorizationError


class AuthorizationPolicy(ABC):
    @abstractmethod
    def allowed(self, role: Optional[str], action: str) -> bool:
        """True when ``role`` may perform ``action`` on bookings."""
        pass

    def ensure(self, role: Optional[str], action: str) -> None:
        if not self.allowed(role, action):
            raise AuthorizationError(action, role)
