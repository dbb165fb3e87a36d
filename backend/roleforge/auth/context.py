"""
RequestContext: who is asking, with which role, inside which tenant.

Built once per request by `get_request_context()` in api/deps.py from the
bearer token. The acting role is the person's primary assignment (or the
role named in the token when it is still one of their active roles), and
`permissions` is that role's resolved effective permission set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from roleforge.auth.catalog import SpecialPermission
from roleforge.auth.resolver import SUPER_ADMIN, EffectivePermissions
from roleforge.errors import UnauthorizedError
from roleforge.middleware.metrics import authorization_denials_total

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    person_id: int
    role_type: str
    role_level: int
    tenant_id: str | None = None
    email: str = ""
    effective: EffectivePermissions = field(default_factory=dict)

    @property
    def permissions(self) -> set[str]:
        return set(self.effective)

    @property
    def is_unrestricted(self) -> bool:
        return self.role_type == SUPER_ADMIN or SpecialPermission.ALL_PERMISSIONS.value in self.effective

    def has_permission(self, perm: str) -> bool:
        return perm in self.effective

    def require_permission(self, perm: str) -> None:
        """Raise UnauthorizedError if the caller lacks the given permission."""
        if not self.has_permission(perm):
            self._deny(f"Insufficient permissions: requires {perm}")

    def require_any(self, *perms: str) -> None:
        """Raise UnauthorizedError if the caller holds none of the given permissions."""
        if not any(self.has_permission(p) for p in perms):
            self._deny(f"Insufficient permissions: requires one of [{', '.join(perms)}]")

    def _deny(self, message: str) -> None:
        authorization_denials_total.labels(reason="missing_permission").inc()
        logger.warning("Denied %s: %s", self.actor, message)
        raise UnauthorizedError(message)

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        return f"{self.role_type}:{self.person_id}"
