"""Tests for the system role seed."""

import pytest
from sqlalchemy import func, select

from roleforge.auth.defaults import SYSTEM_ROLES
from roleforge.models import PermissionGrant, Person, PersonRoleAssignment, RoleDefinition
from roleforge.seed.system_roles import seed_super_admin, seed_system_roles


@pytest.mark.asyncio
class TestSeedSystemRoles:
    async def test_seed_creates_every_role(self, db_session):
        summary = await seed_system_roles(db_session)
        await db_session.commit()
        assert summary["created"] == len(SYSTEM_ROLES)
        count = await db_session.scalar(select(func.count()).select_from(RoleDefinition))
        assert count == len(SYSTEM_ROLES)
        grants = await db_session.scalar(select(func.count()).select_from(PermissionGrant))
        assert grants == summary["grants"] == sum(len(r.permissions) for r in SYSTEM_ROLES)

    async def test_seed_is_idempotent(self, db_session):
        await seed_system_roles(db_session)
        await db_session.commit()
        again = await seed_system_roles(db_session)
        assert again == {"created": 0, "skipped": len(SYSTEM_ROLES), "grants": 0}

    async def test_seed_keeps_edited_roles(self, db_session):
        await seed_system_roles(db_session)
        admin = (await db_session.execute(
            select(RoleDefinition).where(RoleDefinition.role_type == "ADMIN")
        )).scalar_one()
        admin.description = "Edited"
        await db_session.commit()

        await seed_system_roles(db_session)
        await db_session.refresh(admin)
        assert admin.description == "Edited"

    async def test_system_rows_are_global(self, db_session):
        await seed_system_roles(db_session)
        tenants = (await db_session.execute(select(RoleDefinition.tenant_id).distinct())).scalars().all()
        assert tenants == [None]


@pytest.mark.asyncio
class TestSeedSuperAdmin:
    async def test_creates_person_with_primary_assignment(self, db_session):
        person = await seed_super_admin(db_session, "Root@RoleForge.io", "LongEnough1!")
        await db_session.commit()
        assert person.email == "root@roleforge.io"
        assignment = (await db_session.execute(
            select(PersonRoleAssignment).where(PersonRoleAssignment.person_id == person.id)
        )).scalar_one()
        assert assignment.role_type == "SUPER_ADMIN"
        assert assignment.is_primary
        assert assignment.tenant_id is None

    async def test_existing_email_untouched(self, db_session):
        await seed_super_admin(db_session, "root@roleforge.io", "LongEnough1!")
        assert await seed_super_admin(db_session, "root@roleforge.io", "Different1!") is None
        count = await db_session.scalar(select(func.count()).select_from(Person))
        assert count == 1

    async def test_short_password_rejected(self, db_session):
        assert await seed_super_admin(db_session, "root@roleforge.io", "short") is None
