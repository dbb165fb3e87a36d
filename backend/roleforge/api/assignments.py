"""Person role assignments: assign (one or many), revoke, primary switching, per-person view."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.api.deps import get_db, get_request_context, require_any
from roleforge.auth.catalog import SpecialPermission
from roleforge.auth.context import RequestContext
from roleforge.schemas.schemas import AssignmentCreate, BulkAssignmentCreate
from roleforge.services.assignment_service import AssignmentService

router = APIRouter(prefix="/api", tags=["assignments"])

can_assign = require_any(SpecialPermission.ASSIGN_ROLES.value, SpecialPermission.MANAGE_USERS.value)
can_revoke = require_any(SpecialPermission.REVOKE_ROLES.value, SpecialPermission.ASSIGN_ROLES.value)


@router.post("/assignments", status_code=201)
async def assign_role(
    body: AssignmentCreate,
    ctx: RequestContext = Depends(can_assign),
    db: AsyncSession = Depends(get_db),
):
    """Assign a role to a person; the caller must be able to assign that role."""
    return await AssignmentService(db, ctx).assign(body)


@router.post("/assignments/bulk")
async def bulk_assign_role(
    body: BulkAssignmentCreate,
    ctx: RequestContext = Depends(can_assign),
    db: AsyncSession = Depends(get_db),
):
    """Assign one role to many persons at once; persons already holding it are skipped."""
    return await AssignmentService(db, ctx).bulk_assign(body)


@router.delete("/assignments/{assignment_id}", status_code=204)
async def revoke_assignment(
    assignment_id: int,
    ctx: RequestContext = Depends(can_revoke),
    db: AsyncSession = Depends(get_db),
):
    """Revoke (soft delete) an assignment."""
    await AssignmentService(db, ctx).revoke(assignment_id)


@router.put("/assignments/{assignment_id}/primary")
async def set_primary_assignment(
    assignment_id: int,
    ctx: RequestContext = Depends(can_assign),
    db: AsyncSession = Depends(get_db),
):
    return await AssignmentService(db, ctx).set_primary(assignment_id)


@router.get("/persons/{person_id}/roles")
async def get_person_roles(
    person_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Current assignments and merged effective permissions. Anyone may read their own."""
    if person_id != ctx.person_id:
        ctx.require_any("VIEW_USERS", SpecialPermission.ASSIGN_ROLES.value, SpecialPermission.MANAGE_USERS.value)
    return await AssignmentService(db, ctx).person_roles(person_id)
