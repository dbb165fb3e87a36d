"""Tests for authentication endpoints and JWT flow."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from jose import JWTError, jwt
from sqlalchemy import update

from roleforge.config import settings
from roleforge.auth.jwt import ALGORITHM, create_access_token, decode_access_token
from roleforge.models import Person
from tests.conftest import TEST_PASSWORD, _client, auth_header


# ── JWT utility tests ─────────────────────────────────────────────────────────

class TestJWTUtils:
    def test_create_and_decode_access_token(self):
        token = create_access_token(1, "user@acme.io", "tenant-1", "ADMIN")
        claims = decode_access_token(token)
        assert claims["sub"] == "1"
        assert claims["email"] == "user@acme.io"
        assert claims["tenant_id"] == "tenant-1"
        assert claims["role"] == "ADMIN"
        assert claims["type"] == "access"

    def test_decode_invalid_token_raises(self):
        with pytest.raises(JWTError):
            decode_access_token("invalid.token.here")

    def test_wrong_token_type_rejected(self):
        token = jwt.encode(
            {"sub": "1", "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.secret_key, algorithm=ALGORITHM,
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_non_numeric_subject_rejected(self):
        token = jwt.encode(
            {"sub": "admin", "type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.secret_key, algorithm=ALGORITHM,
        )
        with pytest.raises(JWTError):
            decode_access_token(token)


# ── Login endpoint tests ─────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, anon_client: AsyncClient, seeded):
        resp = await anon_client.post("/api/auth/login", json={
            "email": "admin@acme.io",
            "password": TEST_PASSWORD,
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["person"]["roleType"] == "ADMIN"
        assert data["person"]["tenantId"] == seeded.acme_id
        assert decode_access_token(data["access_token"])["role"] == "ADMIN"

    async def test_login_wrong_password(self, anon_client: AsyncClient):
        resp = await anon_client.post("/api/auth/login", json={
            "email": "admin@acme.io",
            "password": "Wrong123!",
        })
        assert resp.status_code == 401

    async def test_login_nonexistent_person(self, anon_client: AsyncClient):
        resp = await anon_client.post("/api/auth/login", json={
            "email": "nobody@acme.io",
            "password": "Whatever123!",
        })
        assert resp.status_code == 401

    async def test_login_without_password_set(self, anon_client: AsyncClient):
        resp = await anon_client.post("/api/auth/login", json={
            "email": "employee@acme.io",
            "password": TEST_PASSWORD,
        })
        assert resp.status_code == 401

    async def test_login_as_role_not_held(self, anon_client: AsyncClient):
        resp = await anon_client.post("/api/auth/login", json={
            "email": "admin@acme.io",
            "password": TEST_PASSWORD,
            "roleType": "SUPER_ADMIN",
        })
        assert resp.status_code == 403

    async def test_disabled_account(self, anon_client: AsyncClient, session_factory):
        async with session_factory() as session:
            await session.execute(update(Person).where(Person.email == "admin@acme.io").values(is_active=False))
            await session.commit()
        resp = await anon_client.post("/api/auth/login", json={
            "email": "admin@acme.io",
            "password": TEST_PASSWORD,
        })
        assert resp.status_code == 403


# ── Profile / acting role ────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestMe:
    async def test_me_lists_effective_permissions(self, admin_client: AsyncClient, seeded):
        resp = await admin_client.get("/api/auth/me")
        assert resp.status_code == 200
        data = resp.json()
        assert data["roleType"] == "ADMIN"
        assert data["roleLevel"] == 1
        assert data["actingTenantId"] == seeded.acme_id
        assert "ROLE_MANAGEMENT" in data["permissions"]
        assert "VIEW_AUDIT_LOGS" not in data["permissions"]

    async def test_token_role_no_longer_held_falls_back_to_primary(self, session_factory, seeded):
        employee = seeded.person("employee")
        async with _client(session_factory, auth_header(employee, "TRAINER")) as client:
            resp = await client.get("/api/auth/me")
        assert resp.status_code == 200
        assert resp.json()["roleType"] == "EMPLOYEE"

    async def test_token_can_select_secondary_role(self, admin_client: AsyncClient, session_factory, seeded):
        employee = seeded.person("employee")
        resp = await admin_client.post("/api/assignments", json={"personId": employee.id, "roleType": "TRAINER"})
        assert resp.status_code == 201
        async with _client(session_factory, auth_header(employee, "TRAINER")) as client:
            resp = await client.get("/api/auth/me")
        assert resp.json()["roleType"] == "TRAINER"
        assert "EDIT_COURSES" in resp.json()["permissions"]

    async def test_disabled_person_token_rejected(self, session_factory, seeded):
        admin = seeded.person("admin")
        async with session_factory() as session:
            await session.execute(update(Person).where(Person.id == admin.id).values(is_active=False))
            await session.commit()
        async with _client(session_factory, auth_header(admin, "ADMIN")) as client:
            resp = await client.get("/api/auth/me")
        assert resp.status_code == 401


# ── Auth enforcement tests ───────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAuthEnforcement:
    async def test_missing_token_returns_401(self, anon_client: AsyncClient):
        resp = await anon_client.get("/api/permissions/catalog")
        assert resp.status_code == 401

    async def test_invalid_token_returns_401(self, session_factory, seeded):
        async with _client(session_factory, {"Authorization": "Bearer garbage"}) as client:
            resp = await client.get("/api/roles")
        assert resp.status_code == 401

    async def test_catalog_open_to_any_authenticated_person(self, employee_client: AsyncClient):
        resp = await employee_client.get("/api/permissions/catalog")
        assert resp.status_code == 200
        assert "VIEW_COMPANIES" in resp.json()["companies"]["permissions"]

    async def test_entities(self, employee_client: AsyncClient):
        entities = (await employee_client.get("/api/permissions/entities")).json()
        names = [e["name"] for e in entities]
        assert "employees" in names
        assert "trainers" in names

    async def test_health_endpoint_is_public(self, anon_client: AsyncClient):
        resp = await anon_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] in ("healthy", "degraded", "unhealthy")

    async def test_metrics_endpoint(self, anon_client: AsyncClient):
        await anon_client.get("/api/health")
        resp = await anon_client.get("/metrics")
        assert resp.status_code == 200
        assert "http_requests_total" in resp.text
