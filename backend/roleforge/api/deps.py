"""
API Dependencies: DB session, auth context, permission guards.

`get_request_context`:
  1. Extracts the Bearer token from the Authorization header
  2. Decodes and validates the JWT
  3. Loads the person and picks the acting role: the role named in the
     token if the person still holds it, else their primary assignment
  4. Resolves that role's effective permissions from the database

Super administrators may act inside a tenant by sending X-Tenant-Id.

Unauthenticated endpoints (/api/auth/login, /api/health, /metrics) simply
do not depend on the context.
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.database import async_session
from roleforge.auth.context import RequestContext
from roleforge.auth.jwt import decode_access_token
from roleforge.auth.resolver import holds_all_permissions
from roleforge.errors import NotFoundError, UnauthorizedError, ValidationError
from roleforge.models import Person, Tenant
from roleforge.services.assignment_service import current_assignments
from roleforge.services.role_service import load_tenant_roles

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Request context (JWT authentication) ──────────────────────────────────────

async def get_request_context(request: Request, db: AsyncSession = Depends(get_db)) -> RequestContext:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    try:
        claims = decode_access_token(auth_header[7:])
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    person = await db.get(Person, int(claims["sub"]))
    if person is None or not person.is_active or person.deleted_at is not None:
        raise HTTPException(status_code=401, detail="Account not found or disabled")

    held = await current_assignments(db, person.id, person.tenant_id)
    if not held:
        raise UnauthorizedError("No active role assignment")
    acting = next((a for a in held if a.role_type == claims.get("role")), None)
    acting = acting or next((a for a in held if a.is_primary), held[0])

    tenant_id = person.tenant_id
    roles = await load_tenant_roles(db, tenant_id)
    if acting.role_type not in roles.hierarchy:
        raise UnauthorizedError(f"Role {acting.role_type} no longer exists")

    override = _extract_tenant_id(request)
    if override and override != tenant_id:
        if not holds_all_permissions(acting.role_type, roles.grants.get(acting.role_type, ())):
            raise UnauthorizedError("Only super administrators may select another tenant")
        if await db.get(Tenant, override) is None:
            raise NotFoundError(f"Tenant {override} not found", tenant_id=override)
        tenant_id = override
        roles = await load_tenant_roles(db, tenant_id)

    node = roles.hierarchy.get_role(acting.role_type)
    return RequestContext(
        person_id=person.id,
        role_type=node.role_type,
        role_level=node.level,
        tenant_id=tenant_id,
        email=person.email,
        effective=roles.effective(node.role_type),
    )


def _extract_tenant_id(request: Request) -> str | None:
    """X-Tenant-Id header, then tenant_id query parameter."""
    value = request.headers.get("X-Tenant-Id") or request.query_params.get("tenant_id")
    return value.strip() if value else None


# ── Optimistic concurrency ───────────────────────────────────────────────────

def expected_version(if_match: str | None = Header(None, alias="If-Match")) -> int | None:
    """Parse `If-Match: "3"` (or W/"3", or 3) into a role version."""
    if if_match is None:
        return None
    raw = if_match.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    if not raw.isdigit():
        raise ValidationError("If-Match must carry a role version", if_match=if_match)
    return int(raw)


def etag(version: int) -> str:
    return f'"{version}"'


# ── Permission guards ────────────────────────────────────────────────────────

def require(*perms: str):
    """
    FastAPI dependency that checks the caller has ALL listed permissions.

    Usage:
        @router.get("/roles")
        async def list_roles(ctx: RequestContext = Depends(require("VIEW_ROLES"))):
            ...
    """
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        for p in perms:
            ctx.require_permission(p)
        return ctx
    return _check


def require_any(*perms: str):
    """FastAPI dependency that checks the caller has AT LEAST ONE of the listed permissions."""
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        ctx.require_any(*perms)
        return ctx
    return _check
