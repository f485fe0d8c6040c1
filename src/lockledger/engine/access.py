"""Capability-based access control."""

from enum import Enum
from typing import Dict, Set

from .errors import Unauthorized


class Role(str, Enum):
    """Named capabilities that gate mutating entry points."""
    ENTRY_POINT = "ENTRY_POINT"
    FINANCE_MANAGER = "FINANCE_MANAGER"
    GOVERNOR = "GOVERNOR"
    LOCKED_TOKEN_MANAGER = "LOCKED_TOKEN_MANAGER"
    RECEIPT_TOKEN_MINTER = "RECEIPT_TOKEN_MINTER"


class Authorizer:
    """Answers `has(role, caller)`; injected into every component."""

    def __init__(self):
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}

    def grant(self, role: Role, account: str) -> None:
        self._members[Role(role)].add(account)

    def revoke(self, role: Role, account: str) -> None:
        self._members[Role(role)].discard(account)

    def has(self, role: Role, account: str) -> bool:
        return account in self._members[Role(role)]

    def check(self, role: Role, account: str) -> None:
        """Raise Unauthorized unless `account` holds `role`."""
        if not self.has(role, account):
            raise Unauthorized(f"{account} lacks {Role(role).value}")

    def members(self, role: Role) -> Set[str]:
        return set(self._members[Role(role)])
