"""
Role Service

Tenant-scoped role administration:
- Loading the roles visible to a tenant (system roles + its custom roles)
- Custom role lifecycle (create, update, move, soft delete)
- Replace-by-diff of a role's permission grants

Every write validates its payload against the catalog, then checks the
caller's assignability, and only then touches the database. Each write
bumps the role's version; callers may pass the version they last read to
turn a concurrent edit into a ConflictError instead of a silent overwrite.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.auth.assignability import (
    Assignable,
    assert_can_assign_permissions,
    assert_can_assign_role,
    get_assignable_roles_and_permissions,
)
from roleforge.auth.catalog import (
    Scope,
    get_entity,
    split_permission_id,
    unknown_permissions,
    virtual_entities_for_role,
)
from roleforge.auth.context import RequestContext
from roleforge.auth.defaults import SYSTEM_ROLE_TYPES
from roleforge.auth.hierarchy import RoleHierarchy, build_hierarchy, infer_parent
from roleforge.auth.resolver import EffectivePermissions, Grant, resolve_effective_permissions
from roleforge.errors import ConflictError, UnauthorizedError, ValidationError
from roleforge.middleware.metrics import (
    authorization_denials_total,
    permission_resolutions_total,
    role_mutations_total,
)
from roleforge.models import PermissionGrant, PersonRoleAssignment, RoleDefinition
from roleforge.schemas.schemas import RoleCreate, RoleUpdate, to_grants
from roleforge.services.audit_service import AuditService
from roleforge.services.unit_of_work import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)

_ROLE_TYPE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


def utcnow() -> datetime:
    """Naive UTC, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def custom_role_type(name: str) -> str:
    """'Manager Vendite' -> 'CUSTOM_MANAGER_VENDITE'"""
    slug = _NON_ALNUM.sub("_", name.upper()).strip("_")
    if not slug:
        raise ValidationError("Role name must contain letters or digits", name=name)
    return f"CUSTOM_{slug}"


def validate_grants(grants: list[Grant]) -> None:
    """Reject a grant payload before anything is written."""
    unknown = unknown_permissions(g.permission_id for g in grants)
    if unknown:
        raise ValidationError(f"Unknown permission identifiers: {', '.join(unknown)}", permissions=unknown)

    counts = Counter(g.permission_id for g in grants)
    duplicates = sorted(pid for pid, n in counts.items() if n > 1)
    if duplicates:
        raise ValidationError(f"Duplicate permission identifiers: {', '.join(duplicates)}", permissions=duplicates)

    no_tenants = sorted(g.permission_id for g in grants if g.scope == Scope.TENANT and not g.tenant_ids)
    if no_tenants:
        raise ValidationError("scope=tenant requires at least one tenant id", permissions=no_tenants)

    for grant in grants:
        if not grant.field_restrictions:
            continue
        parsed = split_permission_id(grant.permission_id)
        known_fields = set(get_entity(parsed[1]).field_ids) if parsed else set()
        bad = sorted(set(grant.field_restrictions) - known_fields)
        if bad:
            raise ValidationError(
                f"Unknown fields for {grant.permission_id}: {', '.join(bad)}",
                permission_id=grant.permission_id,
                fields=bad,
            )


# ── Visible role set ─────────────────────────────────────────────────────────

@dataclass
class TenantRoles:
    """Snapshot of the roles one tenant can see, with their stored grants."""

    tenant_id: str | None
    rows: dict[str, RoleDefinition]
    grants: dict[str, list[PermissionGrant]]
    hierarchy: RoleHierarchy

    def row(self, role_type: str) -> RoleDefinition:
        self.hierarchy.get_role(role_type)
        return self.rows[role_type]

    def effective(self, role_type: str) -> EffectivePermissions:
        permission_resolutions_total.labels(kind="role").inc()
        return resolve_effective_permissions(role_type, self.grants.get(role_type, ()))

    def assignable(self, acting_role_type: str) -> Assignable:
        return get_assignable_roles_and_permissions(self.hierarchy, acting_role_type, self.grants)


async def load_tenant_roles(session: AsyncSession, tenant_id: str | None) -> TenantRoles:
    query = select(RoleDefinition).where(
        RoleDefinition.is_active.is_(True),
        RoleDefinition.deleted_at.is_(None),
    )
    if tenant_id is None:
        query = query.where(RoleDefinition.tenant_id.is_(None))
    else:
        query = query.where(or_(RoleDefinition.tenant_id.is_(None), RoleDefinition.tenant_id == tenant_id))

    result = await session.execute(query.order_by(RoleDefinition.level, RoleDefinition.role_type))
    rows: dict[str, RoleDefinition] = {}
    for row in result.scalars():
        # A tenant row shadows a system row of the same type
        if row.role_type in rows and row.tenant_id is None:
            continue
        rows[row.role_type] = row

    grants: dict[str, list[PermissionGrant]] = {rt: [] for rt in rows}
    by_id = {row.id: rt for rt, row in rows.items()}
    if by_id:
        result = await session.execute(
            select(PermissionGrant)
            .where(PermissionGrant.role_definition_id.in_(list(by_id)))
            .order_by(PermissionGrant.permission_id)
        )
        for grant in result.scalars():
            grants[by_id[grant.role_definition_id]].append(grant)

    return TenantRoles(tenant_id, rows, grants, build_hierarchy(rows.values()))


# ── Service ──────────────────────────────────────────────────────────────────

class RoleService:
    """Role administration on behalf of one caller."""

    def __init__(self, session: AsyncSession, ctx: RequestContext):
        self.session = session
        self.ctx = ctx
        self.audit = AuditService(session)
        self._roles: TenantRoles | None = None

    async def roles(self) -> TenantRoles:
        if self._roles is None:
            self._roles = await load_tenant_roles(self.session, self.ctx.tenant_id)
        return self._roles

    # ── reads ────────────────────────────────────────────────────────────

    async def list_roles(self) -> list[dict]:
        roles = await self.roles()
        return [self._summary(roles, node.role_type) for node in roles.hierarchy.roles()]

    async def hierarchy_mapping(self) -> dict[str, dict]:
        """`{roleType: {name, description, level, assignableRoles, permissions, parentRoleType, isCustom}}`"""
        roles = await self.roles()
        mapping: dict[str, dict] = {}
        for node in roles.hierarchy.roles():
            mapping[node.role_type] = {
                "name": node.name,
                "description": node.description,
                "level": node.level,
                "assignableRoles": roles.assignable(node.role_type).roles,
                "permissions": list(roles.effective(node.role_type)),
                "parentRoleType": node.resolved_parent,
                "isCustom": node.is_custom,
            }
        return mapping

    async def hierarchy_tree(self) -> list[dict]:
        return (await self.roles()).hierarchy.to_tree()

    async def get_role(self, role_type: str) -> dict:
        roles = await self.roles()
        role_type = role_type.upper()
        detail = self._summary(roles, role_type)
        detail["permissions"] = {pid: p.to_dict() for pid, p in roles.effective(role_type).items()}
        detail["ancestors"] = [n.role_type for n in roles.hierarchy.get_ancestor_chain(role_type)]
        detail["children"] = [n.role_type for n in roles.hierarchy.list_children(role_type)]
        detail["virtualEntities"] = virtual_entities_for_role(role_type)
        return detail

    async def effective_permission_ids(self, role_type: str) -> list[str]:
        roles = await self.roles()
        role_type = role_type.upper()
        roles.row(role_type)
        return list(roles.effective(role_type))

    async def list_grants(self, role_type: str) -> list[dict]:
        roles = await self.roles()
        role_type = role_type.upper()
        roles.row(role_type)
        return [Grant.coerce(g).to_dict() for g in roles.grants[role_type]]

    async def assignable_for(self, acting_role_type: str | None = None) -> Assignable:
        """Assignable set of `acting_role_type` (default: the caller's own role)."""
        roles = await self.roles()
        acting = (acting_role_type or self.ctx.role_type).upper()
        roles.hierarchy.get_role(acting)
        if acting != self.ctx.role_type and not self.ctx.is_unrestricted:
            assert_can_assign_role(roles.assignable(self.ctx.role_type), acting)
        return roles.assignable(acting)

    # ── writes ───────────────────────────────────────────────────────────

    async def replace_permissions(self, role_type: str, grants: list[Grant],
                                  expected_version: int | None = None) -> dict:
        validate_grants(grants)
        roles = await self.roles()
        row = roles.row(role_type.upper())
        self._assert_can_manage(roles, row)
        self._assert_can_grant(roles, grants)
        self._check_version(row, expected_version)

        async with unit_of_work(self.session, "replace_permissions") as uow:
            changes = await self._apply_grants(row, roles.grants[row.role_type], grants, uow)
            changed = any(changes.values())
            if changed:
                self._touch(row)
                await self.audit.log_permissions_replaced(
                    row.role_type, row.tenant_id, self.ctx.actor,
                    changes["added"], changes["updated"], changes["removed"],
                )
                uow.step("audit")

        if changed:
            role_mutations_total.labels(operation="replace_permissions").inc()
            logger.info(
                "Permissions of %s replaced by %s: +%d ~%d -%d",
                row.role_type, self.ctx.actor,
                len(changes["added"]), len(changes["updated"]), len(changes["removed"]),
            )
        self._roles = None
        return {
            "roleType": row.role_type,
            "version": row.version,
            "permissions": list(resolve_effective_permissions(row.role_type, grants)),
            "changes": changes,
        }

    async def create_custom_role(self, body: RoleCreate) -> dict:
        grants = to_grants(body.permissions)
        validate_grants(grants)
        if self.ctx.tenant_id is None:
            raise ValidationError("Custom roles belong to a tenant; select one with the X-Tenant-Id header")

        role_type = body.role_type or custom_role_type(body.name)
        if not _ROLE_TYPE.match(role_type):
            raise ValidationError(f"Invalid role type {role_type!r}", role_type=role_type)

        roles = await self.roles()
        parent, stored_parent, level = self._place(roles, body.level, body.parent_role_type)
        if not self.ctx.is_unrestricted:
            if level <= self.ctx.role_level:
                self._deny("level_too_high", f"New roles must sit below {self.ctx.role_type} "
                                             f"(level > {self.ctx.role_level})")
            if parent != self.ctx.role_type:
                if parent is None:
                    self._deny("role_not_assignable", "A root role can only be created by a super administrator")
                assert_can_assign_role(roles.assignable(self.ctx.role_type), parent)
        self._assert_can_grant(roles, grants)
        # Existence is only reported to callers allowed to create the role
        if role_type in SYSTEM_ROLE_TYPES or role_type in roles.hierarchy:
            raise ConflictError(f"Role {role_type} already exists", role_type=role_type)

        previous = await self._deleted_row(role_type)
        async with unit_of_work(self.session, "create_role") as uow:
            if previous is None:
                row = RoleDefinition(role_type=role_type, tenant_id=self.ctx.tenant_id, is_custom=True)
                self.session.add(row)
            else:
                # Re-creating a deleted custom role reuses its row
                row = previous
                await self.session.execute(
                    delete(PermissionGrant).where(PermissionGrant.role_definition_id == row.id)
                )
            row.name = body.name
            row.description = body.description
            row.level = level
            row.parent_role_type = stored_parent
            row.is_active = True
            row.deleted_at = None
            row.created_by = self.ctx.actor
            await self.session.flush()
            uow.step("role")

            await self._apply_grants(row, [], grants, uow)
            await self.audit.log_role_created(
                role_type, row.tenant_id, self.ctx.actor, level, parent,
                sorted(g.permission_id for g in grants),
            )
            uow.step("audit")

        role_mutations_total.labels(operation="create_role").inc()
        logger.info("Custom role %s (level %d, parent %s) created by %s", role_type, level, parent, self.ctx.actor)
        self._roles = None
        return await self.get_role(role_type)

    async def update_role(self, role_type: str, body: RoleUpdate, expected_version: int | None = None) -> dict:
        """Name/description and, optionally, a full grant replacement, in one transaction."""
        grants = to_grants(body.permissions) if body.permissions is not None else None
        if grants is not None:
            validate_grants(grants)
        roles = await self.roles()
        row = roles.row(role_type.upper())
        self._assert_can_manage(roles, row)
        if grants is not None:
            self._assert_can_grant(roles, grants)
        if row.tenant_id is None and body.name is not None and body.name != row.name:
            raise ConflictError(f"System role {row.role_type} cannot be renamed", role_type=row.role_type)
        self._check_version(row, expected_version)

        changes: dict = {}
        async with unit_of_work(self.session, "update_role") as uow:
            if grants is not None:
                diff = await self._apply_grants(row, roles.grants[row.role_type], grants, uow)
                if any(diff.values()):
                    changes["permissions"] = diff
            if body.name is not None and body.name != row.name:
                changes["name"] = {"old": row.name, "new": body.name}
                row.name = body.name
            if body.description is not None and body.description != row.description:
                changes["description"] = {"old": row.description, "new": body.description}
                row.description = body.description
            if changes:
                self._touch(row)
                await self.session.flush()
                uow.step("role")
                await self.audit.log_role_updated(row.role_type, row.tenant_id, self.ctx.actor, changes)
                uow.step("audit")

        if changes:
            role_mutations_total.labels(operation="update_role").inc()
            logger.info("Role %s updated by %s: %s", row.role_type, self.ctx.actor, ", ".join(changes))
        self._roles = None
        return await self.get_role(row.role_type)

    async def move_role(self, role_type: str, new_parent_type: str, expected_version: int | None = None) -> dict:
        """Re-parent a custom role; levels of the whole subtree are recomputed."""
        roles = await self.roles()
        row = roles.row(role_type.upper())
        role_type = row.role_type
        if row.tenant_id is None or not row.is_custom:
            raise ConflictError(f"System role {role_type} cannot be moved", role_type=role_type)
        self._assert_can_manage(roles, row)

        parent = roles.hierarchy.get_role(new_parent_type.upper())
        descendants = roles.hierarchy.list_descendants(role_type)
        if parent.role_type == role_type or parent.role_type in {d.role_type for d in descendants}:
            raise ConflictError(
                f"Moving {role_type} under {parent.role_type} would make it its own ancestor",
                role_type=role_type,
            )
        if not self.ctx.is_unrestricted and parent.role_type != self.ctx.role_type:
            assert_can_assign_role(roles.assignable(self.ctx.role_type), parent.role_type)
        self._check_version(row, expected_version)

        node = roles.hierarchy.get_role(role_type)
        old_parent, old_level = node.resolved_parent, row.level
        levels = {role_type: parent.level + 1}

        async with unit_of_work(self.session, "move_role") as uow:
            row.parent_role_type = parent.role_type
            row.level = levels[role_type]
            self._touch(row)
            await self.session.flush()
            uow.step("role")

            # Breadth-first, so every parent's new level is known before its children
            for child in descendants:
                levels[child.role_type] = levels[child.resolved_parent] + 1
                child_row = roles.rows[child.role_type]
                child_row.parent_role_type = child.resolved_parent
                child_row.level = levels[child.role_type]
            if descendants:
                await self.session.flush()
                uow.step("descendants")

            await self.audit.log_role_moved(
                role_type, row.tenant_id, self.ctx.actor,
                old_parent, parent.role_type, old_level, levels[role_type],
            )
            uow.step("audit")

        role_mutations_total.labels(operation="move_role").inc()
        logger.info("Role %s moved %s -> %s by %s (%d descendants re-levelled)",
                    role_type, old_parent, parent.role_type, self.ctx.actor, len(descendants))
        self._roles = None
        return await self.get_role(role_type)

    async def delete_role(self, role_type: str, expected_version: int | None = None) -> None:
        """Soft-delete a custom role that has no child roles and no active assignments."""
        roles = await self.roles()
        row = roles.row(role_type.upper())
        role_type = row.role_type
        if row.tenant_id is None or not row.is_custom:
            raise ConflictError(f"System role {role_type} cannot be deleted", role_type=role_type)
        self._assert_can_manage(roles, row)

        children = [n.role_type for n in roles.hierarchy.list_children(role_type)]
        if children:
            raise ConflictError(f"Role {role_type} still has child roles", children=children)

        active = await self.session.scalar(
            select(func.count()).select_from(PersonRoleAssignment).where(
                PersonRoleAssignment.role_type == role_type,
                PersonRoleAssignment.tenant_id == row.tenant_id,
                PersonRoleAssignment.is_active.is_(True),
                PersonRoleAssignment.deleted_at.is_(None),
            )
        )
        if active:
            raise ConflictError(f"Role {role_type} is still assigned to {active} person(s)", active_assignments=active)
        self._check_version(row, expected_version)

        async with unit_of_work(self.session, "delete_role") as uow:
            row.is_active = False
            row.deleted_at = utcnow()
            await self.session.flush()
            uow.step("role")
            await self.audit.log_role_deleted(role_type, row.tenant_id, self.ctx.actor)
            uow.step("audit")

        role_mutations_total.labels(operation="delete_role").inc()
        logger.info("Custom role %s deleted by %s", role_type, self.ctx.actor)
        self._roles = None

    # ── helpers ──────────────────────────────────────────────────────────

    def _summary(self, roles: TenantRoles, role_type: str) -> dict:
        node = roles.hierarchy.get_role(role_type)
        row = roles.rows[role_type]
        return {
            "roleType": node.role_type,
            "name": node.name,
            "description": node.description,
            "level": node.level,
            "parentRoleType": node.resolved_parent,
            "isCustom": node.is_custom,
            "tenantId": row.tenant_id,
            "version": row.version,
        }

    def _place(self, roles: TenantRoles, level: int | None,
               parent_type: str | None) -> tuple[str | None, str | None, int]:
        """
        Work out (parent, stored parent, level) for a new role.

        An explicit parent fixes the level at parent.level + 1; a level that
        disagrees is a conflict. A bare level gets its parent from
        `infer_parent`; the link is stored only when it is exactly one level
        up, otherwise it is re-inferred whenever the tree is built.
        """
        if parent_type:
            parent = roles.hierarchy.get_role(parent_type)
            expected = parent.level + 1
            if level is not None and level != expected:
                raise ConflictError(
                    f"Level {level} is inconsistent with parent {parent.role_type} (level {parent.level})",
                    expected_level=expected,
                )
            return parent.role_type, parent.role_type, expected

        if level is None:
            raise ValidationError("Either level or parentRoleType is required")
        inferred = infer_parent(level, roles.hierarchy.roles())
        if inferred is None:
            return None, None, level
        stored = inferred.role_type if inferred.level == level - 1 else None
        return inferred.role_type, stored, level

    def _assert_can_manage(self, roles: TenantRoles, row: RoleDefinition) -> None:
        if row.tenant_id is None and not self.ctx.is_unrestricted:
            self._deny("system_role", f"System role {row.role_type} can only be changed by a super administrator")
        if not self.ctx.is_unrestricted:
            assert_can_assign_role(roles.assignable(self.ctx.role_type), row.role_type)

    def _assert_can_grant(self, roles: TenantRoles, grants: list[Grant]) -> None:
        if self.ctx.is_unrestricted:
            return
        assert_can_assign_permissions(
            roles.assignable(self.ctx.role_type),
            [g.permission_id for g in grants if g.granted],
        )

    def _deny(self, reason: str, message: str) -> None:
        authorization_denials_total.labels(reason=reason).inc()
        logger.warning("Denied %s: %s", self.ctx.actor, message)
        raise UnauthorizedError(message)

    @staticmethod
    def _check_version(row: RoleDefinition, expected: int | None) -> None:
        if expected is not None and row.version != expected:
            raise ConflictError(
                f"Role {row.role_type} is at version {row.version}, not {expected}",
                role_type=row.role_type,
                current_version=row.version,
            )

    @staticmethod
    def _touch(row: RoleDefinition) -> None:
        # Any UPDATE of the row increments its version
        row.updated_at = utcnow()

    async def _deleted_row(self, role_type: str) -> RoleDefinition | None:
        return (await self.session.execute(
            select(RoleDefinition).where(
                RoleDefinition.tenant_id == self.ctx.tenant_id,
                RoleDefinition.role_type == role_type,
            )
        )).scalar_one_or_none()

    async def _apply_grants(self, row: RoleDefinition, current: list[PermissionGrant],
                            grants: list[Grant], uow: UnitOfWork) -> dict:
        """Replace by diff: insert new ids, update changed rows, delete missing ones."""
        existing = {g.permission_id: g for g in current}
        incoming = {g.permission_id: g for g in grants}
        added, updated, removed = [], [], []

        for pid, grant in incoming.items():
            stored = existing.get(pid)
            if stored is None:
                self.session.add(PermissionGrant(
                    role_definition_id=row.id,
                    permission_id=pid,
                    granted=grant.granted,
                    scope=grant.scope.value,
                    tenant_ids=list(grant.tenant_ids),
                    field_restrictions=list(grant.field_restrictions),
                ))
                added.append(pid)
            elif Grant.coerce(stored) != grant:
                stored.granted = grant.granted
                stored.scope = grant.scope.value
                stored.tenant_ids = list(grant.tenant_ids)
                stored.field_restrictions = list(grant.field_restrictions)
                updated.append(pid)

        for pid in existing.keys() - incoming.keys():
            await self.session.delete(existing[pid])
            removed.append(pid)

        if added or updated or removed:
            await self.session.flush()
            uow.step("grants")
        return {"added": sorted(added), "updated": sorted(updated), "removed": sorted(removed)}
