"""
Pydantic schemas for API request bodies.

Field names follow the JSON contract (camelCase) through aliases; either
spelling is accepted on input.
"""

from datetime import datetime
from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Discriminator, EmailStr, Field, Tag, field_validator

from roleforge.auth.catalog import Scope, normalize_permission_id
from roleforge.auth.resolver import Grant

ROLE_TYPE_PATTERN = r"^[A-Z][A-Z0-9_]*$"


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Permission grants ──

class GrantIn(_Body):
    permission_id: str = Field(..., alias="permissionId")
    granted: bool = True
    scope: Scope = Scope.ALL
    tenant_ids: list[str] = Field(default_factory=list, alias="tenantIds")
    field_restrictions: list[str] = Field(default_factory=list, alias="fieldRestrictions")

    @field_validator("permission_id")
    @classmethod
    def _normalize_id(cls, v: str) -> str:
        return normalize_permission_id(v)

    def to_grant(self) -> Grant:
        return Grant(
            permission_id=self.permission_id,
            granted=self.granted,
            scope=self.scope,
            tenant_ids=tuple(sorted({t.strip() for t in self.tenant_ids if t.strip()})),
            field_restrictions=tuple(sorted({f.strip() for f in self.field_restrictions if f.strip()})),
        )


def _entry_kind(value: Any) -> str:
    return "id" if isinstance(value, str) else "grant"


# A bare permission id or a full grant object
PermissionEntry = Annotated[
    Union[Annotated[str, Tag("id")], Annotated[GrantIn, Tag("grant")]],
    Discriminator(_entry_kind),
]


def to_grants(entries: list) -> list[Grant]:
    """Normalize either accepted payload shape into canonical grants."""
    grants = []
    for entry in entries:
        if isinstance(entry, str):
            grants.append(Grant(permission_id=normalize_permission_id(entry)))
        else:
            grants.append(entry.to_grant())
    return grants


class PermissionsEnvelope(_Body):
    permissions: list[PermissionEntry]


# ── Roles ──

class RoleCreate(_Body):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    level: int | None = Field(None, ge=0)
    parent_role_type: str | None = Field(None, alias="parentRoleType")
    role_type: str | None = Field(None, alias="roleType")
    permissions: list[PermissionEntry] = Field(default_factory=list)

    @field_validator("parent_role_type", "role_type")
    @classmethod
    def _upper(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else None


class RoleUpdate(_Body):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    permissions: list[PermissionEntry] | None = None


class RoleMove(_Body):
    parent_role_type: str = Field(..., alias="parentRoleType")

    @field_validator("parent_role_type")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


# ── Assignments ──

class AssignmentCreate(_Body):
    person_id: int = Field(..., alias="personId")
    role_type: str = Field(..., alias="roleType")
    is_primary: bool = Field(False, alias="isPrimary")
    valid_until: datetime | None = Field(None, alias="validUntil")

    @field_validator("role_type")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


class BulkAssignmentCreate(_Body):
    person_ids: list[int] = Field(..., alias="personIds", min_length=1, max_length=500)
    role_type: str = Field(..., alias="roleType")
    valid_until: datetime | None = Field(None, alias="validUntil")

    @field_validator("person_ids")
    @classmethod
    def _dedupe(cls, v: list[int]) -> list[int]:
        return list(dict.fromkeys(v))

    @field_validator("role_type")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


# ── Auth ──

class LoginRequest(_Body):
    email: EmailStr
    password: str
    # Act as one of the person's other active roles instead of the primary one
    role_type: str | None = Field(None, alias="roleType")
