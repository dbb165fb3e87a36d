"""Permission catalog API."""

from fastapi import APIRouter, Depends

from roleforge.api.deps import get_request_context
from roleforge.auth.catalog import catalog_by_entity, list_entities
from roleforge.auth.context import RequestContext

router = APIRouter(prefix="/api/permissions", tags=["permissions"])


@router.get("/catalog")
async def get_catalog(ctx: RequestContext = Depends(get_request_context)):
    """Every permission id, grouped by entity (plus a `special` group)."""
    return catalog_by_entity()


@router.get("/entities")
async def get_entities(ctx: RequestContext = Depends(get_request_context)):
    """Entity definitions with their actions and fields."""
    return [e.to_dict() for e in list_entities()]
