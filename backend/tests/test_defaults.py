"""Sanity checks on the seeded system roles."""

from roleforge.auth.catalog import unknown_permissions
from roleforge.auth.defaults import SYSTEM_ROLE_TYPES, SYSTEM_ROLES


class TestSystemRoles:
    def test_every_default_permission_is_in_catalog(self):
        for role in SYSTEM_ROLES:
            assert unknown_permissions(role.permissions) == [], role.role_type

    def test_role_types_unique(self):
        assert len(SYSTEM_ROLE_TYPES) == len(SYSTEM_ROLES)

    def test_each_role_one_level_below_parent(self):
        by_type = {r.role_type: r for r in SYSTEM_ROLES}
        for role in SYSTEM_ROLES:
            if role.parent is None:
                assert role.level == 0
                continue
            assert role.parent in by_type
            assert role.level == by_type[role.parent].level + 1

    def test_only_super_admin_holds_all_permissions(self):
        holders = [r.role_type for r in SYSTEM_ROLES if "ALL_PERMISSIONS" in r.permissions]
        assert holders == ["SUPER_ADMIN"]

    def test_audit_log_reserved_for_super_admin(self):
        assert not any("VIEW_AUDIT_LOGS" in r.permissions for r in SYSTEM_ROLES)
