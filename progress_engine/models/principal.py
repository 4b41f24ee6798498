from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity extracted from a bearer token issued by the auth service.

    user_id: subject from JWT
    roles:   platform roles (user, admin, service)
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles
