"""
Role hierarchy: an in-memory tree built from a flat list of role definitions.

Lower level = more authority (SUPER_ADMIN is level 0). A role's parent is
its stored `parent_role_type` when that role is visible and strictly above
it; otherwise the parent is inferred from levels by `infer_parent`, so
tenants may define custom roles with sparse or non-contiguous levels.

Parent links always point to a strictly lower level, which keeps the
structure acyclic.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from roleforge.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class RoleNode:
    role_type: str
    name: str
    level: int
    description: str = ""
    parent_role_type: str | None = None
    is_custom: bool = False
    tenant_id: str | None = None
    # Filled in by RoleHierarchy
    resolved_parent: str | None = None
    children: list[str] = field(default_factory=list)

    @classmethod
    def from_model(cls, role) -> "RoleNode":
        """Build a node from a RoleDefinition row (or anything shaped like one)."""
        return cls(
            role_type=role.role_type,
            name=role.name,
            level=role.level,
            description=role.description or "",
            parent_role_type=role.parent_role_type,
            is_custom=role.is_custom,
            tenant_id=role.tenant_id,
        )


def _candidate_key(node: RoleNode) -> tuple:
    return (node.role_type,)


def infer_parent(level: int, existing_roles: Iterable[RoleNode]) -> RoleNode | None:
    """
    Pick the parent for a role at `level` from `existing_roles`.

    Policy:
      1. level 0 (or below) is always a root -> None
      2. a role at exactly level - 1; with several, the first by role type
      3. else the nearest role at any lower level (the highest level still
         below `level`), same tie-break
      4. else None (the role becomes a new root)
    """
    if level <= 0:
        return None

    above = [r for r in existing_roles if r.level < level]
    if not above:
        return None

    immediate = [r for r in above if r.level == level - 1]
    if immediate:
        return min(immediate, key=_candidate_key)

    nearest_level = max(r.level for r in above)
    return min((r for r in above if r.level == nearest_level), key=_candidate_key)


class RoleHierarchy:
    """Tree of the roles visible to one tenant (system roles + its custom roles)."""

    def __init__(self, roles: Iterable[RoleNode]):
        self._nodes: dict[str, RoleNode] = {}
        for role in roles:
            if role.role_type in self._nodes:
                # Same role type visible twice: keep the tenant-specific one
                if role.tenant_id is None:
                    continue
            role.children = []
            role.resolved_parent = None
            self._nodes[role.role_type] = role
        self._link()

    # ── construction ─────────────────────────────────────────────────────

    def _link(self) -> None:
        for node in self._nodes.values():
            parent = self._explicit_parent(node)
            if parent is None:
                others = [n for n in self._nodes.values() if n.role_type != node.role_type]
                parent = infer_parent(node.level, others)
            if parent is not None:
                node.resolved_parent = parent.role_type
                parent.children.append(node.role_type)

        for node in self._nodes.values():
            node.children.sort(key=lambda rt: (self._nodes[rt].level, self._nodes[rt].name, rt))

    def _explicit_parent(self, node: RoleNode) -> RoleNode | None:
        if not node.parent_role_type:
            return None
        parent = self._nodes.get(node.parent_role_type)
        if parent is None:
            logger.debug("Role %s: parent %s not visible, inferring from level",
                         node.role_type, node.parent_role_type)
            return None
        if parent.level >= node.level:
            logger.warning(
                "Role %s (level %d) has parent %s at level %d; inferring parent from level instead",
                node.role_type, node.level, parent.role_type, parent.level,
            )
            return None
        return parent

    # ── lookups ──────────────────────────────────────────────────────────

    def __contains__(self, role_type: str) -> bool:
        return role_type in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def roles(self) -> list[RoleNode]:
        return sorted(self._nodes.values(), key=lambda n: (n.level, n.role_type))

    def get_role(self, role_type: str) -> RoleNode:
        node = self._nodes.get(role_type)
        if node is None:
            raise NotFoundError(f"Role {role_type} not found", role_type=role_type)
        return node

    def roots(self) -> list[RoleNode]:
        return [n for n in self.roles() if n.resolved_parent is None]

    def list_children(self, role_type: str) -> list[RoleNode]:
        return [self._nodes[rt] for rt in self.get_role(role_type).children]

    def get_ancestor_chain(self, role_type: str) -> list[RoleNode]:
        """Ancestors ordered from the root down to the immediate parent."""
        chain: list[RoleNode] = []
        current = self.get_role(role_type).resolved_parent
        while current is not None:
            node = self._nodes[current]
            chain.append(node)
            current = node.resolved_parent
        chain.reverse()
        return chain

    def list_descendants(self, role_type: str) -> list[RoleNode]:
        """All transitive children, breadth-first."""
        result: list[RoleNode] = []
        queue = deque(self.get_role(role_type).children)
        while queue:
            node = self._nodes[queue.popleft()]
            result.append(node)
            queue.extend(node.children)
        return result

    def is_ancestor(self, ancestor: str, role_type: str) -> bool:
        return any(n.role_type == ancestor for n in self.get_ancestor_chain(role_type))

    # ── serialisation ────────────────────────────────────────────────────

    def to_tree(self) -> list[dict]:
        def _node(rt: str) -> dict:
            n = self._nodes[rt]
            return {
                "roleType": n.role_type,
                "name": n.name,
                "description": n.description,
                "level": n.level,
                "isCustom": n.is_custom,
                "parentRoleType": n.resolved_parent,
                "children": [_node(c) for c in n.children],
            }

        return [_node(r.role_type) for r in self.roots()]


def build_hierarchy(roles: Iterable) -> RoleHierarchy:
    """Build a RoleHierarchy from RoleDefinition rows or RoleNodes."""
    return RoleHierarchy(r if isinstance(r, RoleNode) else RoleNode.from_model(r) for r in roles)
