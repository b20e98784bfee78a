"""Role checks performed before any privileged request is built."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from solders.pubkey import Pubkey

from .errors import AuthorizationDenied


class Role(Enum):
    AUTHORITY = "authority"
    EMERGENCY_ADMIN = "emergency_admin"
    UPGRADE_AUTHORITY = "upgrade_authority"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


# Record attribute holding the identity for each role.
ROLE_FIELDS = {
    Role.AUTHORITY: "authority",
    Role.EMERGENCY_ADMIN: "emergency_admin",
    Role.UPGRADE_AUTHORITY: "upgrade_authority",
}


@dataclass(frozen=True)
class Decision:
    role: Role
    allowed: bool
    expected: Optional[Pubkey]
    supplied: Pubkey

    @property
    def reason(self) -> str:
        if self.allowed:
            return f"{self.supplied} holds the {self.role.label} role"
        expected = str(self.expected) if self.expected is not None else "<none>"
        return f"expected {expected}, got {self.supplied}"


def authorize(role: Role, supplied: Pubkey, record: Any) -> Decision:
    """Compare ``supplied`` with the role's field on a freshly fetched record.

    A missing field value (an immutable program has no upgrade authority)
    denies everyone.
    """
    expected = getattr(record, ROLE_FIELDS[role])
    allowed = expected is not None and supplied == expected
    return Decision(role=role, allowed=allowed, expected=expected, supplied=supplied)


def require(role: Role, supplied: Pubkey, record: Any) -> Decision:
    decision = authorize(role, supplied, record)
    if not decision.allowed:
        expected = str(decision.expected) if decision.expected is not None else "<none>"
        raise AuthorizationDenied(role.label, expected, str(supplied))
    return decision
