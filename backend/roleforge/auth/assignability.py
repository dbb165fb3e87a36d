"""
Assignability: which roles and permissions an acting role may hand out.

A role may assign any role strictly below it on its own branch (all
descendants, not only direct children). The assignable permissions are the
union of the effective permissions of those roles. SUPER_ADMIN and holders
of ALL_PERMISSIONS may assign everything.

These checks are the server-side gate: services call the `assert_*`
helpers before writing, whatever the UI shows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from roleforge.auth.catalog import all_permission_ids, normalize_permission_id
from roleforge.auth.hierarchy import RoleHierarchy
from roleforge.auth.resolver import holds_all_permissions, resolve_effective_permissions
from roleforge.errors import UnauthorizedError
from roleforge.middleware.metrics import authorization_denials_total

logger = logging.getLogger(__name__)

GrantsByRole = Mapping[str, Iterable]


@dataclass
class Assignable:
    acting_role_type: str
    unrestricted: bool
    roles: list[str]
    permissions: list[str]

    def can_assign_role(self, role_type: str) -> bool:
        return role_type in self.roles

    def can_assign_permission(self, permission_id: str) -> bool:
        return normalize_permission_id(permission_id) in self.permissions

    def to_dict(self) -> dict:
        return {
            "actingRole": self.acting_role_type,
            "assignableRoles": self.roles,
            "assignablePermissions": self.permissions,
        }


def get_assignable_roles_and_permissions(
    hierarchy: RoleHierarchy,
    acting_role_type: str,
    grants_by_role: GrantsByRole,
) -> Assignable:
    acting = hierarchy.get_role(acting_role_type)

    if holds_all_permissions(acting_role_type, grants_by_role.get(acting_role_type, ())):
        return Assignable(
            acting_role_type=acting_role_type,
            unrestricted=True,
            roles=[r.role_type for r in hierarchy.roles()],
            permissions=sorted(all_permission_ids()),
        )

    below = [
        node for node in hierarchy.list_descendants(acting_role_type)
        if node.level > acting.level
    ]
    permissions: set[str] = set()
    for node in below:
        permissions.update(resolve_effective_permissions(node.role_type, grants_by_role.get(node.role_type, ())))

    return Assignable(
        acting_role_type=acting_role_type,
        unrestricted=False,
        roles=[n.role_type for n in sorted(below, key=lambda n: (n.level, n.role_type))],
        permissions=sorted(permissions),
    )


def assert_can_assign_role(assignable: Assignable, target_role_type: str) -> None:
    """Raise UnauthorizedError unless `target_role_type` is assignable."""
    if not assignable.can_assign_role(target_role_type):
        authorization_denials_total.labels(reason="role_not_assignable").inc()
        logger.warning("Denied: %s may not assign role %s", assignable.acting_role_type, target_role_type)
        raise UnauthorizedError(
            f"Role {assignable.acting_role_type} cannot assign role {target_role_type}",
            role_type=target_role_type,
        )


def assert_can_assign_permissions(assignable: Assignable, permission_ids: Iterable[str]) -> None:
    """Raise UnauthorizedError listing every permission outside the assignable set."""
    denied = sorted({
        normalize_permission_id(p) for p in permission_ids
        if not assignable.can_assign_permission(p)
    })
    if denied:
        authorization_denials_total.labels(reason="permission_not_assignable").inc()
        logger.warning("Denied: %s may not assign %s", assignable.acting_role_type, ", ".join(denied))
        raise UnauthorizedError(
            f"Role {assignable.acting_role_type} cannot assign permissions: {', '.join(denied)}",
            permissions=denied,
        )
