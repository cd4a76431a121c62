"""
TradeFlow Pools (TFP) - Access Control
Version: 1.0.0

Role grants checked against an explicit caller identity. The policy object is
injected into every service, so any object exposing `require` can stand in.
"""

from enum import Enum
from typing import Dict, Iterable, Set

from tfp_enforcement_v1 import Unauthorized, logger

class Role(Enum):
    ADMIN = "admin"
    VERIFIER = "verifier"  # asset management company
    SERVICER = "servicer"

class AccessPolicy:
    """In-memory role registry."""

    def __init__(self, grants: Dict[str, Iterable[Role]] = None):
        self._grants: Dict[str, Set[Role]] = {}
        for caller, roles in (grants or {}).items():
            for role in roles:
                self.grant(caller, role)

    def grant(self, caller: str, role: Role):
        self._grants.setdefault(caller, set()).add(role)
        logger.info(f"[ACCESS] Granted {role.value} to {caller}")

    def revoke(self, caller: str, role: Role):
        self._grants.get(caller, set()).discard(role)
        logger.info(f"[ACCESS] Revoked {role.value} from {caller}")

    def has_role(self, caller: str, role: Role) -> bool:
        return role in self._grants.get(caller, set())

    def require(self, caller: str, *roles: Role):
        """Raise Unauthorized unless caller holds at least one of roles."""
        if caller and any(self.has_role(caller, role) for role in roles):
            return
        names = "/".join(role.value for role in roles)
        logger.warning(f"AUTHORIZATION VIOLATION: {caller!r} lacks {names}")
        raise Unauthorized(f"{caller!r} requires role {names}")
