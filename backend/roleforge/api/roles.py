"""
Roles API: hierarchy, effective permissions, assignability and custom role administration.

Static paths (/hierarchy, /assignable) are declared before /{role_type}.
Writes accept an optional If-Match header carrying the role version last
read; a stale version is rejected with 409.
"""

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.api.deps import etag, expected_version, get_db, require_any
from roleforge.auth.catalog import SpecialPermission
from roleforge.auth.context import RequestContext
from roleforge.schemas.schemas import (
    PermissionEntry,
    PermissionsEnvelope,
    RoleCreate,
    RoleMove,
    RoleUpdate,
    to_grants,
)
from roleforge.services.assignment_service import AssignmentService
from roleforge.services.role_service import RoleService

router = APIRouter(prefix="/api/roles", tags=["roles"])

_ROLE_MANAGEMENT = SpecialPermission.ROLE_MANAGEMENT.value

can_read = require_any("VIEW_ROLES", _ROLE_MANAGEMENT)
can_create = require_any("CREATE_ROLES", _ROLE_MANAGEMENT)
can_edit = require_any("EDIT_ROLES", _ROLE_MANAGEMENT)
can_delete = require_any("DELETE_ROLES", _ROLE_MANAGEMENT)
can_move = require_any("MANAGE_HIERARCHY", SpecialPermission.HIERARCHY_MANAGEMENT.value)
can_query_assignable = require_any("VIEW_ROLES", SpecialPermission.ASSIGN_ROLES.value, _ROLE_MANAGEMENT)
can_list_persons = require_any("VIEW_USERS", SpecialPermission.ASSIGN_ROLES.value, SpecialPermission.MANAGE_USERS.value)


# ── Hierarchy ──

@router.get("/hierarchy")
async def get_hierarchy(ctx: RequestContext = Depends(can_read), db: AsyncSession = Depends(get_db)):
    """Every visible role keyed by role type, with assignable roles and effective permissions."""
    return await RoleService(db, ctx).hierarchy_mapping()


@router.get("/hierarchy/tree")
async def get_hierarchy_tree(ctx: RequestContext = Depends(can_read), db: AsyncSession = Depends(get_db)):
    return await RoleService(db, ctx).hierarchy_tree()


# ── Assignability ──

@router.get("/assignable")
async def get_assignable(
    acting_role: str | None = Query(None, alias="actingRole", description="Defaults to the caller's role"),
    ctx: RequestContext = Depends(can_query_assignable),
    db: AsyncSession = Depends(get_db),
):
    """Roles and permissions the acting role may hand out."""
    assignable = await RoleService(db, ctx).assignable_for(acting_role)
    return assignable.to_dict()


# ── Roles ──

@router.get("")
async def list_roles(ctx: RequestContext = Depends(can_read), db: AsyncSession = Depends(get_db)):
    return await RoleService(db, ctx).list_roles()


@router.post("", status_code=201)
async def create_role(
    body: RoleCreate,
    response: Response,
    ctx: RequestContext = Depends(can_create),
    db: AsyncSession = Depends(get_db),
):
    """Create a custom role in the caller's tenant, with its grants, in one transaction."""
    role = await RoleService(db, ctx).create_custom_role(body)
    response.headers["ETag"] = etag(role["version"])
    return role


@router.get("/{role_type}")
async def get_role(
    role_type: str,
    response: Response,
    ctx: RequestContext = Depends(can_read),
    db: AsyncSession = Depends(get_db),
):
    role = await RoleService(db, ctx).get_role(role_type)
    response.headers["ETag"] = etag(role["version"])
    return role


@router.put("/{role_type}")
async def update_role(
    role_type: str,
    body: RoleUpdate,
    response: Response,
    version: int | None = Depends(expected_version),
    ctx: RequestContext = Depends(can_edit),
    db: AsyncSession = Depends(get_db),
):
    """Update name/description and optionally replace all grants atomically."""
    role = await RoleService(db, ctx).update_role(role_type, body, version)
    response.headers["ETag"] = etag(role["version"])
    return role


@router.put("/{role_type}/move")
async def move_role(
    role_type: str,
    body: RoleMove,
    response: Response,
    version: int | None = Depends(expected_version),
    ctx: RequestContext = Depends(can_move),
    db: AsyncSession = Depends(get_db),
):
    role = await RoleService(db, ctx).move_role(role_type, body.parent_role_type, version)
    response.headers["ETag"] = etag(role["version"])
    return role


@router.delete("/{role_type}", status_code=204)
async def delete_role(
    role_type: str,
    version: int | None = Depends(expected_version),
    ctx: RequestContext = Depends(can_delete),
    db: AsyncSession = Depends(get_db),
):
    """Soft-delete a custom role."""
    await RoleService(db, ctx).delete_role(role_type, version)


# ── Permissions of a role ──

@router.get("/{role_type}/permissions")
async def get_role_permissions(
    role_type: str,
    ctx: RequestContext = Depends(can_read),
    db: AsyncSession = Depends(get_db),
) -> list[str]:
    """Effective permission ids, uppercase and sorted."""
    return await RoleService(db, ctx).effective_permission_ids(role_type)


@router.get("/{role_type}/permissions/grants")
async def get_role_grants(
    role_type: str,
    ctx: RequestContext = Depends(can_read),
    db: AsyncSession = Depends(get_db),
):
    """Stored grant rows, including granted=false ones."""
    return await RoleService(db, ctx).list_grants(role_type)


@router.put("/{role_type}/permissions")
async def replace_role_permissions(
    role_type: str,
    response: Response,
    body: list[PermissionEntry] | PermissionsEnvelope = Body(...),
    version: int | None = Depends(expected_version),
    ctx: RequestContext = Depends(can_edit),
    db: AsyncSession = Depends(get_db),
):
    """Replace the role's grant set; accepts a bare array or `{"permissions": [...]}`."""
    entries = body.permissions if isinstance(body, PermissionsEnvelope) else body
    result = await RoleService(db, ctx).replace_permissions(role_type, to_grants(entries), version)
    response.headers["ETag"] = etag(result["version"])
    return result


# ── Persons holding a role ──

@router.get("/{role_type}/persons")
async def list_role_persons(
    role_type: str,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    search: str | None = Query(None, description="Matches name or email"),
    is_active: bool | None = Query(None, alias="isActive"),
    ctx: RequestContext = Depends(can_list_persons),
    db: AsyncSession = Depends(get_db),
):
    """Persons of the caller's tenant currently holding the role, by name."""
    return await AssignmentService(db, ctx).persons_with_role(role_type, page, size, search, is_active)
