"""Caller identity forwarded by the upstream authentication layer."""

from dataclasses import dataclass
from typing import Optional

from .errors import AuthenticationError
from .schemas import UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    user_id: str
    role: UserRole = UserRole.BUYER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_headers(cls, user_id: Optional[str], role: Optional[str]) -> "Actor":
        """Build an actor from the ``X-User-ID`` and ``X-User-Role`` headers.

        Raises:
            AuthenticationError: If the user id is missing or the role is unknown
        """
        if not user_id or not user_id.strip():
            raise AuthenticationError("Authentication required")
        try:
            parsed_role = UserRole((role or UserRole.BUYER.value).upper())
        except ValueError:
            raise AuthenticationError(f"Unknown user role: {role}") from None
        return cls(user_id=user_id.strip(), role=parsed_role)
