"""
Assignment Service

Person <-> role assignments: assign, soft revoke, primary switching and the
merged effective permissions of everything a person currently holds.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.auth.assignability import assert_can_assign_role
from roleforge.auth.context import RequestContext
from roleforge.auth.resolver import resolve_person_permissions
from roleforge.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from roleforge.middleware.metrics import authorization_denials_total, permission_resolutions_total, role_mutations_total
from roleforge.models import Person, PersonRoleAssignment
from roleforge.schemas.schemas import AssignmentCreate, BulkAssignmentCreate
from roleforge.services.audit_service import AuditService
from roleforge.services.role_service import TenantRoles, load_tenant_roles, utcnow
from roleforge.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def assignment_to_dict(a: PersonRoleAssignment) -> dict:
    return {
        "id": a.id,
        "personId": a.person_id,
        "roleType": a.role_type,
        "tenantId": a.tenant_id,
        "isActive": a.is_active,
        "isPrimary": a.is_primary,
        "assignedBy": a.assigned_by,
        "assignedAt": a.assigned_at.isoformat() if a.assigned_at else None,
        "validUntil": a.valid_until.isoformat() if a.valid_until else None,
    }


async def current_assignments(session: AsyncSession, person_id: int,
                              tenant_id: str | None, now: datetime | None = None) -> list[PersonRoleAssignment]:
    """Active, unrevoked, unexpired assignments of a person within one tenant."""
    now = now or utcnow()
    query = select(PersonRoleAssignment).where(
        PersonRoleAssignment.person_id == person_id,
        PersonRoleAssignment.is_active.is_(True),
        PersonRoleAssignment.deleted_at.is_(None),
    )
    if tenant_id is None:
        query = query.where(PersonRoleAssignment.tenant_id.is_(None))
    else:
        query = query.where(PersonRoleAssignment.tenant_id == tenant_id)
    result = await session.execute(query.order_by(PersonRoleAssignment.id))
    return [a for a in result.scalars() if a.is_current(now)]


class AssignmentService:
    def __init__(self, session: AsyncSession, ctx: RequestContext):
        self.session = session
        self.ctx = ctx
        self.audit = AuditService(session)
        self._caller_roles: TenantRoles | None = None

    async def _caller_assignable(self):
        if self._caller_roles is None:
            self._caller_roles = await load_tenant_roles(self.session, self.ctx.tenant_id)
        return self._caller_roles.assignable(self.ctx.role_type)

    async def _get_person(self, person_id: int) -> Person:
        person = await self.session.get(Person, person_id)
        if person is None or person.deleted_at is not None:
            raise NotFoundError(f"Person {person_id} not found", person_id=person_id)
        if not self.ctx.is_unrestricted and person.tenant_id != self.ctx.tenant_id:
            authorization_denials_total.labels(reason="cross_tenant").inc()
            logger.warning("Denied %s: person %d belongs to another tenant", self.ctx.actor, person_id)
            raise UnauthorizedError(f"Person {person_id} belongs to another tenant", person_id=person_id)
        return person

    async def _get_assignment(self, assignment_id: int) -> PersonRoleAssignment:
        assignment = await self.session.get(PersonRoleAssignment, assignment_id)
        if assignment is None or assignment.deleted_at is not None or not assignment.is_active:
            raise NotFoundError(f"Assignment {assignment_id} not found", assignment_id=assignment_id)
        await self._get_person(assignment.person_id)
        return assignment

    async def _assert_can_assign(self, role_type: str) -> None:
        if self.ctx.is_unrestricted:
            return
        assert_can_assign_role(await self._caller_assignable(), role_type)

    async def _clear_primary(self, person_id: int, tenant_id: str | None, keep_id: int) -> None:
        tenant_clause = (
            PersonRoleAssignment.tenant_id.is_(None) if tenant_id is None
            else PersonRoleAssignment.tenant_id == tenant_id
        )
        await self.session.execute(
            update(PersonRoleAssignment)
            .where(
                PersonRoleAssignment.person_id == person_id,
                tenant_clause,
                PersonRoleAssignment.id != keep_id,
                PersonRoleAssignment.is_primary.is_(True),
            )
            .values(is_primary=False)
            .execution_options(synchronize_session="fetch")
        )

    # ── operations ───────────────────────────────────────────────────────

    async def assign(self, body: AssignmentCreate) -> dict:
        person = await self._get_person(body.person_id)
        tenant_roles = await load_tenant_roles(self.session, person.tenant_id)
        tenant_roles.hierarchy.get_role(body.role_type)
        await self._assert_can_assign(body.role_type)

        now = utcnow()
        valid_until = _naive_utc(body.valid_until)
        if valid_until is not None and valid_until <= now:
            raise ValidationError("validUntil must be in the future")

        current = await current_assignments(self.session, person.id, person.tenant_id, now)
        if any(a.role_type == body.role_type for a in current):
            raise ConflictError(
                f"Person {person.id} already holds role {body.role_type}",
                person_id=person.id, role_type=body.role_type,
            )
        make_primary = body.is_primary or not any(a.is_primary for a in current)

        async with unit_of_work(self.session, "assign_role") as uow:
            assignment = PersonRoleAssignment(
                person_id=person.id,
                role_type=body.role_type,
                tenant_id=person.tenant_id,
                is_active=True,
                is_primary=make_primary,
                assigned_by=self.ctx.actor,
                valid_until=valid_until,
            )
            self.session.add(assignment)
            await self.session.flush()
            uow.step("assignment")
            if make_primary:
                await self._clear_primary(person.id, person.tenant_id, assignment.id)
                uow.step("primary")
            await self.audit.log_role_assigned(
                assignment.id, person.id, body.role_type, person.tenant_id, self.ctx.actor,
            )
            uow.step("audit")

        role_mutations_total.labels(operation="assign_role").inc()
        logger.info("Role %s assigned to person %d by %s", body.role_type, person.id, self.ctx.actor)
        return assignment_to_dict(assignment)

    async def bulk_assign(self, body: BulkAssignmentCreate) -> dict:
        """
        Assign one role to many persons in a single transaction.

        Every person must exist and be visible to the caller; persons who
        already hold the role are skipped. Nothing is written unless all
        checks pass.
        """
        result = await self.session.execute(
            select(Person).where(Person.id.in_(body.person_ids), Person.deleted_at.is_(None))
        )
        persons = {p.id: p for p in result.scalars()}
        missing = [pid for pid in body.person_ids if pid not in persons]
        if missing:
            raise NotFoundError(f"Persons not found: {', '.join(map(str, missing))}", person_ids=missing)
        if not self.ctx.is_unrestricted:
            foreign = [pid for pid in body.person_ids if persons[pid].tenant_id != self.ctx.tenant_id]
            if foreign:
                authorization_denials_total.labels(reason="cross_tenant").inc()
                logger.warning("Denied %s: bulk assignment to persons of another tenant %s", self.ctx.actor, foreign)
                raise UnauthorizedError("Some persons belong to another tenant", person_ids=foreign)

        tenant_roles: dict[str | None, TenantRoles] = {}
        for person in persons.values():
            if person.tenant_id not in tenant_roles:
                tenant_roles[person.tenant_id] = await load_tenant_roles(self.session, person.tenant_id)
            tenant_roles[person.tenant_id].hierarchy.get_role(body.role_type)
        await self._assert_can_assign(body.role_type)

        now = utcnow()
        valid_until = _naive_utc(body.valid_until)
        if valid_until is not None and valid_until <= now:
            raise ValidationError("validUntil must be in the future")

        pending: list[tuple[Person, bool]] = []
        skipped: list[int] = []
        for pid in body.person_ids:
            person = persons[pid]
            current = await current_assignments(self.session, person.id, person.tenant_id, now)
            if any(a.role_type == body.role_type for a in current):
                skipped.append(pid)
            else:
                pending.append((person, not any(a.is_primary for a in current)))

        created: list[PersonRoleAssignment] = []
        if pending:
            async with unit_of_work(self.session, "bulk_assign") as uow:
                for person, make_primary in pending:
                    assignment = PersonRoleAssignment(
                        person_id=person.id,
                        role_type=body.role_type,
                        tenant_id=person.tenant_id,
                        is_active=True,
                        is_primary=make_primary,
                        assigned_by=self.ctx.actor,
                        valid_until=valid_until,
                    )
                    self.session.add(assignment)
                    await self.session.flush()
                    await self.audit.log_role_assigned(
                        assignment.id, person.id, body.role_type, person.tenant_id, self.ctx.actor,
                    )
                    uow.step(f"person:{person.id}")
                    created.append(assignment)
            role_mutations_total.labels(operation="assign_role").inc(len(created))

        logger.info("Role %s bulk-assigned by %s: %d assigned, %d skipped",
                    body.role_type, self.ctx.actor, len(created), len(skipped))
        return {
            "roleType": body.role_type,
            "assigned": [assignment_to_dict(a) for a in created],
            "skipped": skipped,
        }

    async def persons_with_role(self, role_type: str, page: int = 1, size: int = 50,
                                search: str | None = None, is_active: bool | None = None) -> dict:
        """Paged persons of the caller's tenant currently holding `role_type`."""
        role_type = role_type.upper()
        if self._caller_roles is None:
            self._caller_roles = await load_tenant_roles(self.session, self.ctx.tenant_id)
        self._caller_roles.hierarchy.get_role(role_type)

        now = utcnow()
        query = (
            select(Person, PersonRoleAssignment)
            .join(PersonRoleAssignment, PersonRoleAssignment.person_id == Person.id)
            .where(
                PersonRoleAssignment.role_type == role_type,
                PersonRoleAssignment.is_active.is_(True),
                PersonRoleAssignment.deleted_at.is_(None),
                or_(PersonRoleAssignment.valid_until.is_(None), PersonRoleAssignment.valid_until > now),
                Person.deleted_at.is_(None),
            )
        )
        if self.ctx.tenant_id is None:
            query = query.where(PersonRoleAssignment.tenant_id.is_(None))
        else:
            query = query.where(PersonRoleAssignment.tenant_id == self.ctx.tenant_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(Person.full_name.ilike(pattern), Person.email.ilike(pattern)))
        if is_active is not None:
            query = query.where(Person.is_active.is_(is_active))

        total = (await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar_one()
        rows = await self.session.execute(
            query.order_by(Person.full_name, Person.id).limit(size).offset((page - 1) * size)
        )
        return {
            "roleType": role_type,
            "total": total,
            "page": page,
            "size": size,
            "items": [
                {
                    "id": person.id,
                    "email": person.email,
                    "fullName": person.full_name,
                    "isActive": person.is_active,
                    "assignmentId": assignment.id,
                    "isPrimary": assignment.is_primary,
                    "validUntil": assignment.valid_until.isoformat() if assignment.valid_until else None,
                }
                for person, assignment in rows.all()
            ],
        }

    async def revoke(self, assignment_id: int) -> None:
        assignment = await self._get_assignment(assignment_id)
        await self._assert_can_assign(assignment.role_type)

        async with unit_of_work(self.session, "revoke_role") as uow:
            assignment.is_active = False
            assignment.is_primary = False
            assignment.deleted_at = utcnow()
            await self.session.flush()
            uow.step("assignment")
            await self.audit.log_role_revoked(
                assignment.id, assignment.person_id, assignment.role_type,
                assignment.tenant_id, self.ctx.actor,
            )
            uow.step("audit")

        role_mutations_total.labels(operation="revoke_role").inc()
        logger.info("Role %s revoked from person %d by %s",
                    assignment.role_type, assignment.person_id, self.ctx.actor)

    async def set_primary(self, assignment_id: int) -> dict:
        assignment = await self._get_assignment(assignment_id)
        if not assignment.is_current(utcnow()):
            raise ConflictError(f"Assignment {assignment_id} has expired", assignment_id=assignment_id)
        await self._assert_can_assign(assignment.role_type)

        if not assignment.is_primary:
            async with unit_of_work(self.session, "set_primary") as uow:
                await self._clear_primary(assignment.person_id, assignment.tenant_id, assignment.id)
                uow.step("clear_primary")
                assignment.is_primary = True
                await self.session.flush()
                uow.step("assignment")
                await self.audit.log_primary_changed(
                    assignment.id, assignment.person_id, assignment.role_type,
                    assignment.tenant_id, self.ctx.actor,
                )
                uow.step("audit")
            role_mutations_total.labels(operation="set_primary").inc()
            logger.info("Primary role of person %d set to %s by %s",
                        assignment.person_id, assignment.role_type, self.ctx.actor)
        return assignment_to_dict(assignment)

    async def person_roles(self, person_id: int) -> dict:
        """Current assignments of a person and the merged effective permissions."""
        person = await self._get_person(person_id)
        assignments = await current_assignments(self.session, person.id, person.tenant_id)
        tenant_roles = await load_tenant_roles(self.session, person.tenant_id)
        # Assignments to roles deleted since are ignored
        held = [a for a in assignments if a.role_type in tenant_roles.hierarchy]
        permission_resolutions_total.labels(kind="person").inc()
        effective = resolve_person_permissions((a.role_type for a in held), tenant_roles.grants)
        return {
            "personId": person.id,
            "tenantId": person.tenant_id,
            "assignments": [assignment_to_dict(a) for a in held],
            "effectivePermissions": {pid: p.to_dict() for pid, p in effective.items()},
        }
