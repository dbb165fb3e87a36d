"""
Audit Service

Hash-chained audit trail for role, permission and assignment changes.
Every mutation made through the role and assignment services writes one
entry inside the same transaction, so a rolled-back request leaves no trace.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from roleforge.models import AuditLog


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    @staticmethod
    def _content(entry: AuditLog) -> dict:
        return {
            "event_type": entry.event_type,
            "actor": entry.actor,
            "action": entry.action,
            "tenant_id": entry.tenant_id,
            "resource_type": entry.resource_type,
            "resource_id": entry.resource_id,
            "details": entry.details,
        }

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(AuditLog.current_hash)
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar()

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        tenant_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        """
        Write an audit entry chained to the previous one.

        Args:
            event_type: e.g. "role_created", "permissions_replaced", "role_assigned"
            actor: "ROLE:person_id" of the caller, or "system" for the seed
            action: Human-readable description
            tenant_id: Tenant the change applies to (None for system roles)
            resource_type: "role" or "assignment"
            resource_id: Role type or assignment id
            details: Full event details as dict
        """
        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            tenant_id=tenant_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            previous_hash=await self._get_latest_hash(),
        )
        entry.current_hash = self._calculate_hash(self._content(entry), entry.previous_hash)
        self.session.add(entry)
        await self.session.flush()
        return entry

    # ── role events ──────────────────────────────────────────────────────

    async def log_role_created(self, role_type: str, tenant_id: str | None, actor: str,
                               level: int, parent: str | None, permissions: list[str]) -> AuditLog:
        return await self.log_event(
            event_type="role_created",
            actor=actor,
            action=f"Custom role {role_type} created at level {level}",
            tenant_id=tenant_id,
            resource_type="role",
            resource_id=role_type,
            details={"level": level, "parent_role_type": parent, "permissions": permissions},
        )

    async def log_role_updated(self, role_type: str, tenant_id: str | None, actor: str, changes: dict) -> AuditLog:
        return await self.log_event(
            event_type="role_updated",
            actor=actor,
            action=f"Role {role_type} updated",
            tenant_id=tenant_id,
            resource_type="role",
            resource_id=role_type,
            details=changes,
        )

    async def log_permissions_replaced(self, role_type: str, tenant_id: str | None, actor: str,
                                       added: list[str], updated: list[str], removed: list[str]) -> AuditLog:
        return await self.log_event(
            event_type="permissions_replaced",
            actor=actor,
            action=f"Permissions of {role_type}: +{len(added)} ~{len(updated)} -{len(removed)}",
            tenant_id=tenant_id,
            resource_type="role",
            resource_id=role_type,
            details={"added": added, "updated": updated, "removed": removed},
        )

    async def log_role_moved(self, role_type: str, tenant_id: str | None, actor: str,
                             old_parent: str | None, new_parent: str, old_level: int, new_level: int) -> AuditLog:
        return await self.log_event(
            event_type="role_moved",
            actor=actor,
            action=f"Role {role_type} moved: {old_parent} -> {new_parent}",
            tenant_id=tenant_id,
            resource_type="role",
            resource_id=role_type,
            details={
                "old_parent": old_parent, "new_parent": new_parent,
                "old_level": old_level, "new_level": new_level,
            },
        )

    async def log_role_deleted(self, role_type: str, tenant_id: str | None, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="role_deleted",
            actor=actor,
            action=f"Custom role {role_type} deleted",
            tenant_id=tenant_id,
            resource_type="role",
            resource_id=role_type,
        )

    # ── assignment events ────────────────────────────────────────────────

    async def log_role_assigned(self, assignment_id: int, person_id: int, role_type: str,
                                tenant_id: str | None, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="role_assigned",
            actor=actor,
            action=f"Role {role_type} assigned to person {person_id}",
            tenant_id=tenant_id,
            resource_type="assignment",
            resource_id=str(assignment_id),
            details={"person_id": person_id, "role_type": role_type},
        )

    async def log_role_revoked(self, assignment_id: int, person_id: int, role_type: str,
                               tenant_id: str | None, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="role_revoked",
            actor=actor,
            action=f"Role {role_type} revoked from person {person_id}",
            tenant_id=tenant_id,
            resource_type="assignment",
            resource_id=str(assignment_id),
            details={"person_id": person_id, "role_type": role_type},
        )

    async def log_primary_changed(self, assignment_id: int, person_id: int, role_type: str,
                                  tenant_id: str | None, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="primary_role_changed",
            actor=actor,
            action=f"Primary role of person {person_id} set to {role_type}",
            tenant_id=tenant_id,
            resource_type="assignment",
            resource_id=str(assignment_id),
            details={"person_id": person_id, "role_type": role_type},
        )

    # ── reads ────────────────────────────────────────────────────────────

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.id.asc())
        )
        entries = list(result.scalars())

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            expected_hash = self._calculate_hash(self._content(entry), entry.previous_hash)
            if entry.current_hash != expected_hash:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

    async def get_entries(
        self,
        event_type: str | None = None,
        tenant_id: str | None = None,
        resource_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Query audit entries with optional filters, newest first."""
        query = select(AuditLog).order_by(AuditLog.id.desc())

        if event_type:
            query = query.where(AuditLog.event_type == event_type)
        if tenant_id:
            query = query.where(AuditLog.tenant_id == tenant_id)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)

        query = query.offset(offset).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())

    async def get_entry_count(
        self,
        event_type: str | None = None,
        tenant_id: str | None = None,
        resource_id: str | None = None,
    ) -> int:
        query = select(func.count()).select_from(AuditLog)
        if event_type:
            query = query.where(AuditLog.event_type == event_type)
        if tenant_id:
            query = query.where(AuditLog.tenant_id == tenant_id)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        result = await self.session.execute(query)
        return result.scalar() or 0
