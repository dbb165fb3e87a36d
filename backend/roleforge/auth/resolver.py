"""
Effective permission resolution.

A role's effective permissions are its own granted rows, nothing more:
grants are authored per role (seeded from a default template), and the
hierarchy only decides who may assign what. `granted=False` rows mean
"absent"; there is no deny-overrides-ancestor rule.

SUPER_ADMIN, or any role holding a granted ALL_PERMISSIONS row, receives
every catalog permission with scope=all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from roleforge.auth.catalog import (
    SCOPE_BREADTH,
    Scope,
    SpecialPermission,
    all_permission_ids,
    get_entity,
    normalize_permission_id,
    split_permission_id,
)

SUPER_ADMIN = "SUPER_ADMIN"


@dataclass(frozen=True)
class Grant:
    """Canonical in-memory form of one permission grant."""

    permission_id: str
    granted: bool = True
    scope: Scope = Scope.ALL
    tenant_ids: tuple[str, ...] = ()
    field_restrictions: tuple[str, ...] = ()

    @classmethod
    def coerce(cls, row) -> "Grant":
        """Accept a Grant, a PermissionGrant row or anything with the same attributes."""
        if isinstance(row, cls):
            return row
        return cls(
            permission_id=normalize_permission_id(row.permission_id),
            granted=bool(row.granted),
            scope=Scope(row.scope),
            tenant_ids=tuple(sorted(set(row.tenant_ids or ()))),
            field_restrictions=tuple(sorted(set(row.field_restrictions or ()))),
        )

    @property
    def is_effective(self) -> bool:
        # scope=tenant without tenants would otherwise read as "everything"
        return self.granted and not (self.scope == Scope.TENANT and not self.tenant_ids)

    def to_dict(self) -> dict:
        return {
            "permissionId": self.permission_id,
            "granted": self.granted,
            "scope": self.scope.value,
            "tenantIds": list(self.tenant_ids),
            "fieldRestrictions": list(self.field_restrictions),
        }


@dataclass
class EffectivePermission:
    granted: bool = True
    scope: Scope = Scope.ALL
    tenant_ids: set[str] = field(default_factory=set)
    field_restrictions: set[str] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "scope": self.scope.value,
            "tenantIds": sorted(self.tenant_ids),
            "fieldRestrictions": sorted(self.field_restrictions),
        }


EffectivePermissions = dict[str, EffectivePermission]


def holds_all_permissions(role_type: str, grants: Iterable) -> bool:
    if role_type == SUPER_ADMIN:
        return True
    return any(
        g.permission_id == SpecialPermission.ALL_PERMISSIONS.value and g.is_effective
        for g in map(Grant.coerce, grants)
    )


def _everything() -> EffectivePermissions:
    return {pid: EffectivePermission() for pid in sorted(all_permission_ids())}


def resolve_effective_permissions(role_type: str, grants: Iterable) -> EffectivePermissions:
    """Resolve one role's stored grants into `{permission_id: EffectivePermission}`."""
    grants = [Grant.coerce(g) for g in grants]
    if holds_all_permissions(role_type, grants):
        return _everything()

    known = all_permission_ids()
    resolved: EffectivePermissions = {}
    for grant in grants:
        if not grant.is_effective or grant.permission_id not in known:
            continue
        # Storage keeps one row per permission; if a caller passes duplicates the last one wins
        resolved[grant.permission_id] = EffectivePermission(
            scope=grant.scope,
            tenant_ids=set(grant.tenant_ids),
            field_restrictions=set(grant.field_restrictions),
        )
    return dict(sorted(resolved.items()))


def merge_effective(*maps: EffectivePermissions) -> EffectivePermissions:
    """
    Union of several roles' effective permissions (a person holding many roles).

    The broadest scope wins, tenant lists are unioned, and a field stays
    restricted only if every granting role restricts it.
    """
    merged: EffectivePermissions = {}
    for effective in maps:
        for pid, perm in effective.items():
            current = merged.get(pid)
            if current is None:
                merged[pid] = EffectivePermission(
                    scope=perm.scope,
                    tenant_ids=set(perm.tenant_ids),
                    field_restrictions=set(perm.field_restrictions),
                )
                continue
            if SCOPE_BREADTH[perm.scope] > SCOPE_BREADTH[current.scope]:
                current.scope = perm.scope
            current.tenant_ids |= perm.tenant_ids
            current.field_restrictions &= perm.field_restrictions
    return dict(sorted(merged.items()))


def resolve_person_permissions(role_types: Iterable[str], grants_by_role) -> EffectivePermissions:
    """Merged effective permissions of every role a person currently holds."""
    return merge_effective(*(
        resolve_effective_permissions(rt, grants_by_role.get(rt, ())) for rt in dict.fromkeys(role_types)
    ))


def visible_fields(effective: EffectivePermissions, permission_id: str) -> list[str]:
    """Entity fields a holder of `permission_id` may see; empty when not granted."""
    pid = normalize_permission_id(permission_id)
    perm = effective.get(pid)
    parsed = split_permission_id(pid)
    if perm is None or parsed is None:
        return []
    _, entity_name = parsed
    entity = get_entity(entity_name)
    return [f for f in entity.field_ids if f not in perm.field_restrictions]


def scope_allows(
    perm: EffectivePermission | None,
    *,
    acting_person_id: int | None = None,
    record_tenant_id: str | None = None,
    record_owner_id: int | None = None,
) -> bool:
    """Does a granted permission reach a given record?"""
    if perm is None or not perm.granted:
        return False
    if perm.scope == Scope.ALL:
        return True
    if perm.scope == Scope.TENANT:
        return record_tenant_id is not None and record_tenant_id in perm.tenant_ids
    return acting_person_id is not None and acting_person_id == record_owner_id
