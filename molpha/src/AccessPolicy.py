"""AccessPolicy: injected authorization capability.

The core never decides who is an administrator; it asks an ``Authorizer``.
``RoleAuthorizer`` is the in-process implementation holding explicit grants.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from .errors import Unauthorized

logger = logging.getLogger(__name__)

# Gates signer management, pricing updates and feed creation.
ADMIN = "admin"
# Gates claiming rewards on behalf of a signer.
REGISTRY_OWNER = "registry_owner"


@runtime_checkable
class Authorizer(Protocol):
    """Predicate deciding whether a caller holds a role."""

    def require_role(self, caller: str, role: str) -> None:
        """Return normally if caller holds role.

        :raises Unauthorized: Otherwise.
        """
        ...


class RoleAuthorizer:
    """In-memory role grants.

    .. code-block:: python

        >>> auth = RoleAuthorizer({ADMIN: ["0xabc"]})
        >>> auth.has_role("0xABC", ADMIN)
        True
    """

    def __init__(self, grants: dict[str, list[str]] | None = None) -> None:
        """Initialize with optional grants.

        :param grants: Mapping of role name to member addresses.
        """
        self._grants: dict[str, set[str]] = {}
        for role, members in (grants or {}).items():
            for member in members:
                self.grant(member, role)

    def grant(self, caller: str, role: str) -> None:
        self._grants.setdefault(role, set()).add(caller.lower())
        logger.info(f"Granted role {role} to {caller}")

    def revoke(self, caller: str, role: str) -> None:
        self._grants.get(role, set()).discard(caller.lower())
        logger.info(f"Revoked role {role} from {caller}")

    def has_role(self, caller: str, role: str) -> bool:
        return caller.lower() in self._grants.get(role, set())

    def require_role(self, caller: str, role: str) -> None:
        if not self.has_role(caller, role):
            logger.warning(f"Caller {caller} lacks role {role}")
            raise Unauthorized(f"{caller} does not hold role {role}")
