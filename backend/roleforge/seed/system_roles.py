"""
Seed the global system roles and, optionally, the bootstrap super administrator.

Usage:
    cd backend && python -m roleforge.seed.system_roles

Idempotent: roles that already exist are left exactly as they are, so grants
edited by an administrator survive a re-run. Unknown permission ids in the
default sets are logged and skipped; the rest of the role is still seeded.
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from roleforge.auth.catalog import unknown_permissions
from roleforge.auth.defaults import SYSTEM_ROLES, SystemRole
from roleforge.auth.passwords import MIN_PASSWORD_LENGTH, hash_password
from roleforge.auth.resolver import SUPER_ADMIN
from roleforge.config import settings
from roleforge.models import PermissionGrant, Person, PersonRoleAssignment, RoleDefinition

logger = logging.getLogger(__name__)

SEED_ACTOR = "system"


async def _existing_system_roles(session: AsyncSession) -> set[str]:
    result = await session.execute(
        select(RoleDefinition.role_type).where(RoleDefinition.tenant_id.is_(None))
    )
    return set(result.scalars())


async def _seed_role(session: AsyncSession, role: SystemRole) -> int:
    """Insert one system role with its grants; returns the number of grants written."""
    unknown = set(unknown_permissions(role.permissions))
    for pid in sorted(unknown):
        logger.error("Skipping unknown permission %s for system role %s", pid, role.role_type)

    row = RoleDefinition(
        role_type=role.role_type,
        name=role.name,
        description=role.description,
        level=role.level,
        parent_role_type=role.parent,
        is_custom=False,
        tenant_id=None,
        is_active=True,
        created_by=SEED_ACTOR,
    )
    session.add(row)
    await session.flush()

    granted = sorted(role.permissions - unknown)
    session.add_all(
        PermissionGrant(role_definition_id=row.id, permission_id=pid, granted=True, scope="all",
                        tenant_ids=[], field_restrictions=[])
        for pid in granted
    )
    await session.flush()
    return len(granted)


async def seed_system_roles(session: AsyncSession) -> dict:
    """Create every missing system role. The caller commits."""
    existing = await _existing_system_roles(session)
    created = grants = 0

    for role in SYSTEM_ROLES:
        if role.role_type in existing:
            logger.debug("System role %s already present", role.role_type)
            continue
        grants += await _seed_role(session, role)
        created += 1
        logger.info("Seeded system role %s (level %d)", role.role_type, role.level)

    summary = {"created": created, "skipped": len(SYSTEM_ROLES) - created, "grants": grants}
    logger.info("System role seed: %s", summary)
    return summary


async def seed_super_admin(session: AsyncSession, email: str, password: str,
                           full_name: str = "Super Administrator") -> Person | None:
    """Create the platform-level super administrator if no account uses `email` yet."""
    email = email.strip().lower()
    result = await session.execute(select(Person).where(Person.email == email))
    person = result.scalar_one_or_none()
    if person is not None:
        logger.info("Bootstrap admin %s already exists", email)
        return None
    if len(password) < MIN_PASSWORD_LENGTH:
        logger.error("Bootstrap admin password shorter than %d characters, not creating %s",
                     MIN_PASSWORD_LENGTH, email)
        return None

    person = Person(email=email, full_name=full_name, password_hash=hash_password(password), tenant_id=None)
    session.add(person)
    await session.flush()
    session.add(PersonRoleAssignment(
        person_id=person.id,
        role_type=SUPER_ADMIN,
        tenant_id=None,
        is_active=True,
        is_primary=True,
        assigned_by=SEED_ACTOR,
    ))
    await session.flush()
    logger.info("Created bootstrap admin %s", email)
    return person


async def main():
    from roleforge.middleware.logging_config import configure_logging

    configure_logging(settings.log_level, settings.log_format)
    engine = create_async_engine(settings.database_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    print("Seeding system roles...")
    async with session_factory() as session:
        summary = await seed_system_roles(session)
        print(f"  Roles created: {summary['created']}, already present: {summary['skipped']}")
        print(f"  Grants written: {summary['grants']}")

        if settings.bootstrap_admin_password:
            admin = await seed_super_admin(session, settings.bootstrap_admin_email,
                                           settings.bootstrap_admin_password)
            if admin is not None:
                print(f"  Bootstrap admin: {admin.email}")
        await session.commit()

    await engine.dispose()
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
