"""Caller context consumed at the service boundary."""

from dataclasses import dataclass, field
from typing import FrozenSet


@dataclass(frozen=True)
class UserContext:
    """The authenticated caller: identity, tenant and granted permissions."""
    user_id: str
    organization_id: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def has_any(self, *permissions: str) -> bool:
        return any(p in self.permissions for p in permissions)
