"""Tests for the role tree and parent inference."""

import pytest

from roleforge.auth.defaults import SYSTEM_ROLES
from roleforge.auth.hierarchy import RoleHierarchy, RoleNode, build_hierarchy, infer_parent
from roleforge.errors import NotFoundError


def _node(role_type: str, level: int, parent: str | None = None, tenant_id: str | None = None) -> RoleNode:
    return RoleNode(role_type=role_type, name=role_type.title(), level=level,
                    parent_role_type=parent, tenant_id=tenant_id)


def _system_hierarchy() -> RoleHierarchy:
    return RoleHierarchy(_node(r.role_type, r.level, r.parent) for r in SYSTEM_ROLES)


# ── infer_parent ─────────────────────────────────────────────────────────────

class TestInferParent:
    def test_level_zero_is_root(self):
        assert infer_parent(0, [_node("A", 0)]) is None

    def test_no_candidates_is_root(self):
        assert infer_parent(3, []) is None
        assert infer_parent(3, [_node("LOW", 5)]) is None

    def test_immediate_level_preferred(self):
        roles = [_node("TOP", 0), _node("MID", 2), _node("NEAR", 3)]
        assert infer_parent(4, roles).role_type == "NEAR"

    def test_ties_broken_by_role_type(self):
        roles = [_node("ZETA", 1), _node("ALPHA", 1), _node("MIKE", 1)]
        assert infer_parent(2, roles).role_type == "ALPHA"

    def test_sparse_levels_use_nearest_above(self):
        roles = [_node("TOP", 0), _node("MID", 2), _node("OTHER", 2)]
        assert infer_parent(7, roles).role_type == "MID"

    def test_same_level_is_never_a_parent(self):
        assert infer_parent(2, [_node("PEER", 2)]) is None


# ── RoleHierarchy ────────────────────────────────────────────────────────────

class TestRoleHierarchy:
    def test_system_tree_has_single_root(self):
        hierarchy = _system_hierarchy()
        assert [r.role_type for r in hierarchy.roots()] == ["SUPER_ADMIN"]

    def test_ancestor_chain_root_first(self):
        chain = [n.role_type for n in _system_hierarchy().get_ancestor_chain("TRAINING_ADMIN")]
        assert chain == ["SUPER_ADMIN", "ADMIN", "COMPANY_ADMIN"]

    def test_children(self):
        children = {n.role_type for n in _system_hierarchy().list_children("TRAINING_ADMIN")}
        assert children == {"HR_MANAGER", "MANAGER", "DEPARTMENT_HEAD"}

    def test_descendants_breadth_first(self):
        descendants = [n.role_type for n in _system_hierarchy().list_descendants("COORDINATOR")]
        assert descendants[:2] == ["CONSULTANT", "OPERATOR"]
        assert descendants[2:] == ["EMPLOYEE", "VIEWER", "GUEST"]

    def test_is_ancestor(self):
        hierarchy = _system_hierarchy()
        assert hierarchy.is_ancestor("ADMIN", "GUEST")
        assert not hierarchy.is_ancestor("HR_MANAGER", "GUEST")

    def test_unknown_role_raises(self):
        with pytest.raises(NotFoundError):
            _system_hierarchy().get_role("NOPE")

    def test_parent_always_strictly_above(self):
        hierarchy = _system_hierarchy()
        for node in hierarchy.roles():
            if node.resolved_parent:
                assert hierarchy.get_role(node.resolved_parent).level < node.level

    def test_missing_parent_falls_back_to_inference(self):
        hierarchy = RoleHierarchy([_node("TOP", 0), _node("CHILD", 1, parent="GONE")])
        assert hierarchy.get_role("CHILD").resolved_parent == "TOP"

    def test_parent_at_same_level_is_ignored(self):
        hierarchy = RoleHierarchy([_node("TOP", 0), _node("A", 1), _node("B", 1, parent="A")])
        assert hierarchy.get_role("B").resolved_parent == "TOP"

    def test_tenant_row_shadows_system_row(self):
        hierarchy = RoleHierarchy([
            _node("TOP", 0),
            _node("SHARED", 1, tenant_id="t1"),
            _node("SHARED", 1),
        ])
        assert hierarchy.get_role("SHARED").tenant_id == "t1"
        assert len(hierarchy) == 2

    def test_custom_role_with_sparse_level(self):
        nodes = [_node(r.role_type, r.level, r.parent) for r in SYSTEM_ROLES]
        nodes.append(_node("CUSTOM_DEEP", 15))
        hierarchy = RoleHierarchy(nodes)
        assert hierarchy.get_role("CUSTOM_DEEP").resolved_parent == "GUEST"

    def test_to_tree(self):
        tree = RoleHierarchy([_node("TOP", 0), _node("CHILD", 1, parent="TOP")]).to_tree()
        assert len(tree) == 1
        assert tree[0]["roleType"] == "TOP"
        assert tree[0]["children"][0]["roleType"] == "CHILD"
        assert tree[0]["children"][0]["parentRoleType"] == "TOP"
        assert tree[0]["children"][0]["children"] == []

    def test_build_hierarchy_accepts_nodes(self):
        hierarchy = build_hierarchy([_node("TOP", 0)])
        assert "TOP" in hierarchy
