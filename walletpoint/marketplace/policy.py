from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional


@dataclass(frozen=True)
class StatusPolicy:
    """Decides which product status a caller is allowed to list.

    Callers holding a constrained role (students by default) only ever see
    active products, whatever filter they asked for.
    """

    constrained_roles: FrozenSet[str] = frozenset({"mahasiswa"})
    forced_status: str = "active"

    @classmethod
    def from_roles(cls, roles: Iterable[str]) -> "StatusPolicy":
        return cls(constrained_roles=frozenset(r.strip() for r in roles if r and r.strip()))

    def is_constrained(self, role: Optional[str]) -> bool:
        return bool(role) and role in self.constrained_roles

    def override(self, requested_status: str, caller_role: Optional[str]) -> str:
        if self.is_constrained(caller_role):
            return self.forced_status
        return requested_status
