"""Tests for person role assignments, bulk assignment and role holders."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient


async def _assign(client: AsyncClient, person_id: int, role_type: str, **extra):
    return await client.post("/api/assignments", json={"personId": person_id, "roleType": role_type, **extra})


@pytest.mark.asyncio
class TestAssign:
    async def test_assign_secondary_role(self, admin_client, seeded):
        employee = seeded.person("employee")
        resp = await _assign(admin_client, employee.id, "TRAINER")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["roleType"] == "TRAINER"
        assert data["tenantId"] == seeded.acme_id
        assert data["isPrimary"] is False
        assert data["assignedBy"] == f"ADMIN:{seeded.person('admin').id}"

    async def test_duplicate_assignment_conflicts(self, admin_client, seeded):
        employee = seeded.person("employee")
        resp = await _assign(admin_client, employee.id, "EMPLOYEE")
        assert resp.status_code == 409

    async def test_company_admin_cannot_assign_admin(self, company_admin_client, seeded):
        resp = await _assign(company_admin_client, seeded.person("employee").id, "ADMIN")
        assert resp.status_code == 403
        assert resp.json()["error"] == "unauthorized"

    async def test_company_admin_assigns_role_below(self, company_admin_client, seeded):
        resp = await _assign(company_admin_client, seeded.person("employee").id, "TRAINER")
        assert resp.status_code == 201

    async def test_cross_tenant_person_denied(self, admin_client, seeded):
        resp = await _assign(admin_client, seeded.person("outsider").id, "TRAINER")
        assert resp.status_code == 403

    async def test_super_admin_assigns_in_any_tenant(self, super_client, seeded):
        resp = await _assign(super_client, seeded.person("outsider").id, "TRAINER")
        assert resp.status_code == 201
        assert resp.json()["tenantId"] == seeded.globex_id

    async def test_unknown_person_404(self, admin_client):
        resp = await _assign(admin_client, 999_999, "TRAINER")
        assert resp.status_code == 404

    async def test_unknown_role_404(self, admin_client, seeded):
        resp = await _assign(admin_client, seeded.person("employee").id, "ASTRONAUT")
        assert resp.status_code == 404

    async def test_valid_until_in_past_rejected(self, admin_client, seeded):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        resp = await _assign(admin_client, seeded.person("employee").id, "TRAINER", validUntil=past)
        assert resp.status_code == 422

    async def test_employee_cannot_assign(self, employee_client, seeded):
        resp = await _assign(employee_client, seeded.person("employee").id, "GUEST")
        assert resp.status_code == 403

    async def test_new_primary_replaces_old(self, admin_client, seeded):
        employee = seeded.person("employee")
        resp = await _assign(admin_client, employee.id, "TRAINER", isPrimary=True)
        assert resp.json()["isPrimary"] is True

        roles = (await admin_client.get(f"/api/persons/{employee.id}/roles")).json()
        primaries = [a["roleType"] for a in roles["assignments"] if a["isPrimary"]]
        assert primaries == ["TRAINER"]


@pytest.mark.asyncio
class TestRevokeAndPrimary:
    async def test_revoke(self, admin_client, seeded):
        employee = seeded.person("employee")
        assignment = (await _assign(admin_client, employee.id, "TRAINER")).json()

        resp = await admin_client.delete(f"/api/assignments/{assignment['id']}")
        assert resp.status_code == 204

        roles = (await admin_client.get(f"/api/persons/{employee.id}/roles")).json()
        assert [a["roleType"] for a in roles["assignments"]] == ["EMPLOYEE"]

    async def test_revoke_twice_404(self, admin_client, seeded):
        assignment = (await _assign(admin_client, seeded.person("employee").id, "TRAINER")).json()
        await admin_client.delete(f"/api/assignments/{assignment['id']}")
        resp = await admin_client.delete(f"/api/assignments/{assignment['id']}")
        assert resp.status_code == 404

    async def test_reassign_after_revoke(self, admin_client, seeded):
        employee = seeded.person("employee")
        assignment = (await _assign(admin_client, employee.id, "TRAINER")).json()
        await admin_client.delete(f"/api/assignments/{assignment['id']}")
        resp = await _assign(admin_client, employee.id, "TRAINER")
        assert resp.status_code == 201

    async def test_set_primary(self, admin_client, seeded):
        employee = seeded.person("employee")
        assignment = (await _assign(admin_client, employee.id, "TRAINER")).json()

        resp = await admin_client.put(f"/api/assignments/{assignment['id']}/primary")
        assert resp.status_code == 200
        assert resp.json()["isPrimary"] is True

        roles = (await admin_client.get(f"/api/persons/{employee.id}/roles")).json()
        primaries = [a["roleType"] for a in roles["assignments"] if a["isPrimary"]]
        assert primaries == ["TRAINER"]

    async def test_changes_are_audited(self, admin_client, super_client, seeded):
        employee = seeded.person("employee")
        assignment = (await _assign(admin_client, employee.id, "TRAINER")).json()
        await admin_client.put(f"/api/assignments/{assignment['id']}/primary")
        await admin_client.delete(f"/api/assignments/{assignment['id']}")

        items = (await super_client.get("/api/audit", params={"resource_id": str(assignment["id"])})).json()["items"]
        assert [e["eventType"] for e in items] == ["role_revoked", "primary_role_changed", "role_assigned"]


@pytest.mark.asyncio
class TestPersonRoles:
    async def test_effective_permissions_merge_all_roles(self, admin_client, seeded):
        employee = seeded.person("employee")
        await _assign(admin_client, employee.id, "TRAINER")

        data = (await admin_client.get(f"/api/persons/{employee.id}/roles")).json()
        assert data["personId"] == employee.id
        assert {a["roleType"] for a in data["assignments"]} == {"EMPLOYEE", "TRAINER"}
        effective = data["effectivePermissions"]
        assert "EDIT_COURSES" in effective
        assert "VIEW_DOCUMENTS" in effective
        assert effective["VIEW_COURSES"]["scope"] == "all"

    async def test_person_reads_own_roles(self, employee_client, seeded):
        resp = await employee_client.get(f"/api/persons/{seeded.person('employee').id}/roles")
        assert resp.status_code == 200

    async def test_person_cannot_read_others(self, employee_client, seeded):
        resp = await employee_client.get(f"/api/persons/{seeded.person('admin').id}/roles")
        assert resp.status_code == 403

    async def test_other_tenant_hidden(self, admin_client, seeded):
        resp = await admin_client.get(f"/api/persons/{seeded.person('outsider').id}/roles")
        assert resp.status_code == 403


async def _bulk(client: AsyncClient, person_ids: list[int], role_type: str, **extra):
    return await client.post("/api/assignments/bulk", json={"personIds": person_ids, "roleType": role_type, **extra})


@pytest.mark.asyncio
class TestBulkAssign:
    async def test_assigns_every_person(self, admin_client, super_client, seeded):
        ids = [seeded.person("employee").id, seeded.person("company_admin").id]
        resp = await _bulk(admin_client, ids, "TRAINER")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["roleType"] == "TRAINER"
        assert sorted(a["personId"] for a in data["assigned"]) == sorted(ids)
        assert data["skipped"] == []

        audit = (await super_client.get("/api/audit", params={"event_type": "role_assigned"})).json()
        assert audit["total"] == 2

    async def test_current_holders_are_skipped(self, admin_client, seeded):
        employee, company_admin = seeded.person("employee"), seeded.person("company_admin")
        data = (await _bulk(admin_client, [employee.id, company_admin.id], "EMPLOYEE")).json()
        assert data["skipped"] == [employee.id]
        assert [a["personId"] for a in data["assigned"]] == [company_admin.id]
        assert data["assigned"][0]["isPrimary"] is False

    async def test_nothing_to_do(self, admin_client, seeded):
        data = (await _bulk(admin_client, [seeded.person("employee").id], "EMPLOYEE")).json()
        assert data["assigned"] == []

    async def test_person_of_other_tenant_blocks_whole_batch(self, admin_client, seeded):
        employee = seeded.person("employee")
        resp = await _bulk(admin_client, [employee.id, seeded.person("outsider").id], "TRAINER")
        assert resp.status_code == 403
        assert resp.json()["person_ids"] == [seeded.person("outsider").id]

        roles = (await admin_client.get(f"/api/persons/{employee.id}/roles")).json()
        assert [a["roleType"] for a in roles["assignments"]] == ["EMPLOYEE"]

    async def test_unknown_person_404(self, admin_client, seeded):
        resp = await _bulk(admin_client, [seeded.person("employee").id, 999_999], "TRAINER")
        assert resp.status_code == 404
        assert resp.json()["person_ids"] == [999_999]

    async def test_empty_list_rejected(self, admin_client):
        resp = await _bulk(admin_client, [], "TRAINER")
        assert resp.status_code == 422

    async def test_role_above_caller_denied(self, company_admin_client, seeded):
        resp = await _bulk(company_admin_client, [seeded.person("employee").id], "ADMIN")
        assert resp.status_code == 403

    async def test_unknown_role_404(self, admin_client, seeded):
        resp = await _bulk(admin_client, [seeded.person("employee").id], "ASTRONAUT")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestPersonsByRole:
    async def test_lists_holders_in_own_tenant(self, admin_client, seeded):
        data = (await admin_client.get("/api/roles/EMPLOYEE/persons")).json()
        assert data["total"] == 1
        assert [p["email"] for p in data["items"]] == ["employee@acme.io"]
        assert data["items"][0]["isPrimary"] is True

    async def test_paging_and_search(self, admin_client, seeded):
        ids = [seeded.person("employee").id, seeded.person("company_admin").id]
        await _bulk(admin_client, ids, "TRAINER")

        page = (await admin_client.get("/api/roles/TRAINER/persons", params={"size": 1})).json()
        assert page["total"] == 2
        assert [p["email"] for p in page["items"]] == ["company-admin@acme.io"]

        found = (await admin_client.get("/api/roles/TRAINER/persons", params={"search": "EMPLOYEE@"})).json()
        assert [p["id"] for p in found["items"]] == [seeded.person("employee").id]

        inactive = (await admin_client.get("/api/roles/TRAINER/persons", params={"isActive": "false"})).json()
        assert inactive["total"] == 0

    async def test_revoked_holder_not_listed(self, admin_client, seeded):
        assignment = (await _assign(admin_client, seeded.person("employee").id, "TRAINER")).json()
        await admin_client.delete(f"/api/assignments/{assignment['id']}")
        data = (await admin_client.get("/api/roles/TRAINER/persons")).json()
        assert data["items"] == []

    async def test_unknown_role_404(self, admin_client):
        resp = await admin_client.get("/api/roles/ASTRONAUT/persons")
        assert resp.status_code == 404

    async def test_requires_user_access(self, employee_client):
        resp = await employee_client.get("/api/roles/EMPLOYEE/persons")
        assert resp.status_code == 403
