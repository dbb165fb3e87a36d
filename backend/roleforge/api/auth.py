"""Authentication API: login and profile."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.config import settings
from roleforge.api.deps import get_db, get_request_context
from roleforge.auth.context import RequestContext
from roleforge.auth.jwt import create_access_token
from roleforge.auth.passwords import verify_password
from roleforge.models import Person
from roleforge.schemas.schemas import LoginRequest
from roleforge.services.assignment_service import assignment_to_dict, current_assignments

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = settings.access_token_expire_minutes * 60
    person: dict


def _person_to_dict(person: Person, role_type: str, assignments: list) -> dict:
    return {
        "id": person.id,
        "email": person.email,
        "fullName": person.full_name,
        "tenantId": person.tenant_id,
        "roleType": role_type,
        "roles": [assignment_to_dict(a) for a in assignments],
    }


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate with email + password; the token acts as the primary role unless roleType is given."""
    person = (await db.execute(
        select(Person).where(Person.email == body.email, Person.deleted_at.is_(None))
    )).scalar_one_or_none()

    if not person or not verify_password(body.password, person.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not person.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    held = await current_assignments(db, person.id, person.tenant_id)
    if not held:
        raise HTTPException(status_code=403, detail="No active role assignment")

    if body.role_type:
        acting = next((a for a in held if a.role_type == body.role_type.strip().upper()), None)
        if acting is None:
            raise HTTPException(status_code=403, detail=f"Role {body.role_type} is not assigned to this account")
    else:
        acting = next((a for a in held if a.is_primary), held[0])

    logger.info("Login: %s as %s", person.email, acting.role_type)
    return TokenResponse(
        access_token=create_access_token(person.id, person.email, person.tenant_id, acting.role_type),
        person=_person_to_dict(person, acting.role_type, held),
    )


@router.get("/me")
async def me(ctx: RequestContext = Depends(get_request_context),
             db: AsyncSession = Depends(get_db)):
    """Current person, acting role and its effective permissions."""
    person = await db.get(Person, ctx.person_id)
    if person is None:
        raise HTTPException(status_code=404, detail="Person not found")
    held = await current_assignments(db, person.id, person.tenant_id)
    profile = _person_to_dict(person, ctx.role_type, held)
    profile["actingTenantId"] = ctx.tenant_id
    profile["roleLevel"] = ctx.role_level
    profile["permissions"] = list(ctx.effective)
    return profile
