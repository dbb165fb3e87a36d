"""
Audit API: query the role/assignment audit trail and verify hash-chain integrity.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.api.deps import get_db, require
from roleforge.auth.context import RequestContext
from roleforge.services.audit_service import AuditService

router = APIRouter(prefix="/api/audit", tags=["audit"])

can_read_audit = require("VIEW_AUDIT_LOGS")


@router.get("")
async def list_audit_entries(
    event_type: str | None = Query(None, description="Filter by event type"),
    resource_id: str | None = Query(None, description="Filter by role type or assignment id"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(can_read_audit),
    db: AsyncSession = Depends(get_db),
):
    """Newest first. Tenant callers only see their own tenant's entries."""
    service = AuditService(db)
    tenant_id = None if ctx.is_unrestricted else ctx.tenant_id
    entries = await service.get_entries(
        event_type=event_type,
        tenant_id=tenant_id,
        resource_id=resource_id,
        limit=size,
        offset=(page - 1) * size,
    )
    total = await service.get_entry_count(event_type, tenant_id, resource_id)
    return {
        "total": total,
        "page": page,
        "size": size,
        "items": [
            {
                "eventId": e.event_id,
                "eventType": e.event_type,
                "actor": e.actor,
                "action": e.action,
                "tenantId": e.tenant_id,
                "resourceType": e.resource_type,
                "resourceId": e.resource_id,
                "details": e.details,
                "createdAt": e.created_at.isoformat() if e.created_at else None,
            }
            for e in entries
        ],
    }


@router.get("/verify")
async def verify_integrity(
    ctx: RequestContext = Depends(can_read_audit),
    db: AsyncSession = Depends(get_db),
):
    """Walk the full chain and report the first broken link, if any."""
    return await AuditService(db).verify_chain_integrity()
