"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time; point them at an in-memory database first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

from contextlib import asynccontextmanager  # noqa: E402
from dataclasses import dataclass, field  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from roleforge.database import Base  # noqa: E402
from roleforge.main import app  # noqa: E402
from roleforge.api.deps import get_db  # noqa: E402
from roleforge.auth.jwt import create_access_token  # noqa: E402
from roleforge.auth.passwords import hash_password  # noqa: E402
from roleforge.models import Person, PersonRoleAssignment, Tenant  # noqa: E402
from roleforge.seed.system_roles import seed_system_roles  # noqa: E402

TEST_PASSWORD = "TestPass123!"


@dataclass
class Seeded:
    """Ids created by the `seeded` fixture."""

    acme_id: str
    globex_id: str
    persons: dict[str, Person] = field(default_factory=dict)

    def person(self, key: str) -> Person:
        return self.persons[key]


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database per test; StaticPool keeps it on one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def _add_person(session: AsyncSession, email: str, role_type: str,
                      tenant_id: str | None, with_password: bool = False) -> Person:
    person = Person(
        email=email,
        full_name=email.split("@")[0].replace("-", " ").title(),
        password_hash=hash_password(TEST_PASSWORD) if with_password else None,
        tenant_id=tenant_id,
    )
    session.add(person)
    await session.flush()
    session.add(PersonRoleAssignment(
        person_id=person.id, role_type=role_type, tenant_id=tenant_id,
        is_active=True, is_primary=True, assigned_by="system",
    ))
    await session.flush()
    return person


@pytest_asyncio.fixture
async def seeded(session_factory) -> Seeded:
    """System roles, two tenants and one person per interesting role."""
    async with session_factory() as session:
        await seed_system_roles(session)
        acme = Tenant(name="Acme Training", slug="acme")
        globex = Tenant(name="Globex", slug="globex")
        session.add_all([acme, globex])
        await session.flush()

        data = Seeded(acme_id=acme.id, globex_id=globex.id)
        data.persons["super"] = await _add_person(session, "superadmin@roleforge.io", "SUPER_ADMIN", None,
                                                  with_password=True)
        data.persons["admin"] = await _add_person(session, "admin@acme.io", "ADMIN", acme.id,
                                                  with_password=True)
        data.persons["company_admin"] = await _add_person(session, "company-admin@acme.io",
                                                          "COMPANY_ADMIN", acme.id)
        data.persons["employee"] = await _add_person(session, "employee@acme.io", "EMPLOYEE", acme.id)
        data.persons["outsider"] = await _add_person(session, "employee@globex.io", "EMPLOYEE", globex.id)
        await session.commit()
    return data


def _override_db(factory: async_sessionmaker):
    """Same contract as the real get_db: commit on success, rollback on error."""
    async def _get_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _get_db


def auth_header(person: Person, role_type: str) -> dict:
    token = create_access_token(person.id, person.email, person.tenant_id, role_type)
    return {"Authorization": f"Bearer {token}"}


@asynccontextmanager
async def _client(factory: async_sessionmaker, headers: dict | None = None):
    app.dependency_overrides[get_db] = _override_db(factory)
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test", headers=headers or {}) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def super_client(session_factory, seeded) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as the platform super administrator (no tenant)."""
    async with _client(session_factory, auth_header(seeded.person("super"), "SUPER_ADMIN")) as client:
        yield client


@pytest_asyncio.fixture
async def admin_client(session_factory, seeded) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as ADMIN of tenant acme."""
    async with _client(session_factory, auth_header(seeded.person("admin"), "ADMIN")) as client:
        yield client


@pytest_asyncio.fixture
async def company_admin_client(session_factory, seeded) -> AsyncGenerator[AsyncClient, None]:
    async with _client(session_factory, auth_header(seeded.person("company_admin"), "COMPANY_ADMIN")) as client:
        yield client


@pytest_asyncio.fixture
async def employee_client(session_factory, seeded) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as EMPLOYEE (read-only on courses and documents)."""
    async with _client(session_factory, auth_header(seeded.person("employee"), "EMPLOYEE")) as client:
        yield client


@pytest_asyncio.fixture
async def anon_client(session_factory, seeded) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with no authentication."""
    async with _client(session_factory) as client:
        yield client
