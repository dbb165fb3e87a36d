"""
Permission catalog: the exhaustive list of permission identifiers.

Every identifier follows the pattern `ACTION_ENTITY` (e.g. `VIEW_COMPANIES`),
generated from the entity definitions below, plus a handful of special
administrative permissions that do not map to a single entity.

This module is the single source of truth: request validation, the seed
defaults and the resolver all check against `all_permission_ids()`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from roleforge.errors import NotFoundError


class Action(str, Enum):
    VIEW = "VIEW"
    CREATE = "CREATE"
    EDIT = "EDIT"
    DELETE = "DELETE"
    # ── entity-specific extras ──
    EXPORT = "EXPORT"
    DOWNLOAD = "DOWNLOAD"
    MANAGE = "MANAGE"
    SEND = "SEND"
    REGENERATE = "REGENERATE"


CRUD_ACTIONS = (Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE)


class Scope(str, Enum):
    ALL = "all"          # every record
    TENANT = "tenant"    # records of the listed tenants
    OWN = "own"          # records owned by the acting person


# Broadest first; used when merging grants from several roles
SCOPE_BREADTH = {Scope.ALL: 3, Scope.TENANT: 2, Scope.OWN: 1}


class SpecialPermission(str, Enum):
    ALL_PERMISSIONS = "ALL_PERMISSIONS"          # short-circuits resolution
    ROLE_MANAGEMENT = "ROLE_MANAGEMENT"          # create/edit roles and their grants
    USER_MANAGEMENT = "USER_MANAGEMENT"
    TENANT_MANAGEMENT = "TENANT_MANAGEMENT"
    HIERARCHY_MANAGEMENT = "HIERARCHY_MANAGEMENT"  # move roles in the tree
    MANAGE_USERS = "MANAGE_USERS"
    ASSIGN_ROLES = "ASSIGN_ROLES"                # assign roles to persons
    REVOKE_ROLES = "REVOKE_ROLES"
    ADMIN_PANEL = "ADMIN_PANEL"
    SYSTEM_SETTINGS = "SYSTEM_SETTINGS"
    MANAGE_ENROLLMENTS = "MANAGE_ENROLLMENTS"
    MANAGE_CONSENTS = "MANAGE_CONSENTS"


@dataclass(frozen=True)
class FieldDefinition:
    id: str
    display_name: str
    type: str = "string"
    sensitive: bool = False


@dataclass(frozen=True)
class EntityDefinition:
    name: str
    display_name: str
    fields: tuple[FieldDefinition, ...] = ()
    extra_actions: tuple[Action, ...] = ()
    virtual: bool = False
    # For virtual entities: the person role types the projection selects
    member_role_types: tuple[str, ...] = ()

    @property
    def actions(self) -> tuple[Action, ...]:
        return CRUD_ACTIONS + self.extra_actions

    @property
    def field_ids(self) -> tuple[str, ...]:
        return tuple(f.id for f in self.fields)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "virtual": self.virtual,
            "actions": [a.value for a in self.actions],
            "fields": [
                {"id": f.id, "displayName": f.display_name, "type": f.type, "sensitive": f.sensitive}
                for f in self.fields
            ],
        }


F = FieldDefinition

_PERSON_FIELDS = (
    F("firstName", "First name"),
    F("lastName", "Last name"),
    F("email", "Email", "email", sensitive=True),
    F("phone", "Phone", "phone", sensitive=True),
    F("address", "Address", sensitive=True),
    F("fiscalCode", "Fiscal code", sensitive=True),
    F("birthDate", "Birth date", "date", sensitive=True),
)

_ENTITIES: tuple[EntityDefinition, ...] = (
    EntityDefinition("persons", "Persons", _PERSON_FIELDS + (F("salary", "Salary", "number", sensitive=True),)),
    EntityDefinition("companies", "Companies", (
        F("name", "Company name"),
        F("vatNumber", "VAT number"),
        F("address", "Address"),
        F("phone", "Phone", "phone"),
        F("email", "Email", "email"),
    )),
    EntityDefinition("sites", "Company sites", (
        F("siteName", "Site name"),
        F("city", "City"),
        F("address", "Address"),
        F("phone", "Phone"),
        F("email", "Email", "email"),
    )),
    EntityDefinition("departments", "Departments", (
        F("name", "Department name"),
        F("code", "Department code"),
        F("budget", "Budget", "number", sensitive=True),
    )),
    EntityDefinition("courses", "Courses", (
        F("title", "Title"),
        F("description", "Description"),
        F("startDate", "Start date", "date"),
        F("endDate", "End date", "date"),
        F("maxParticipants", "Max participants", "number"),
    )),
    EntityDefinition("trainings", "Training sessions", (
        F("title", "Session title"),
        F("startDate", "Start date", "date"),
        F("endDate", "End date", "date"),
        F("location", "Location"),
        F("instructor", "Instructor"),
        F("status", "Status"),
    )),
    EntityDefinition("schedules", "Schedules", (
        F("title", "Title"),
        F("date", "Date", "date"),
        F("location", "Location"),
    )),
    EntityDefinition("documents", "Documents", (
        F("title", "Title"),
        F("type", "Type"),
        F("version", "Version"),
        F("createdDate", "Created", "date"),
        F("content", "Content", sensitive=True),
    ), extra_actions=(Action.DOWNLOAD,)),
    EntityDefinition("certificates", "Certificates", (
        F("name", "Certificate name"),
        F("issuer", "Issuer"),
        F("issueDate", "Issue date", "date"),
        F("expiryDate", "Expiry date", "date"),
        F("status", "Status"),
    )),
    EntityDefinition("roles", "Roles", (
        F("name", "Role name"),
        F("description", "Description"),
        F("level", "Level", "number"),
    )),
    EntityDefinition("hierarchy", "Hierarchy", (
        F("name", "Node name"),
        F("type", "Type"),
        F("level", "Level", "number"),
        F("manager", "Manager"),
    ), extra_actions=(Action.MANAGE,)),
    EntityDefinition("users", "Users", (
        F("username", "Username"),
        F("email", "Email", "email", sensitive=True),
        F("lastLogin", "Last login", "date"),
    )),
    EntityDefinition("tenants", "Tenants", (
        F("name", "Tenant name"),
        F("slug", "Slug"),
        F("isActive", "Active", "boolean"),
    )),
    EntityDefinition("reports", "Reports", (
        F("title", "Title"),
        F("period", "Period"),
        F("data", "Data", sensitive=True),
    ), extra_actions=(Action.EXPORT,)),
    EntityDefinition("gdpr", "GDPR records", (
        F("title", "Title"),
        F("dataType", "Data type", sensitive=True),
        F("purpose", "Purpose"),
        F("retention", "Retention"),
    ), extra_actions=(Action.EXPORT,)),
    EntityDefinition("cms", "Public content", (
        F("title", "Title"),
        F("slug", "Slug"),
        F("body", "Body"),
    )),
    EntityDefinition("form_templates", "Form templates", (
        F("name", "Name"),
        F("schema", "Schema"),
    ), extra_actions=(Action.MANAGE,)),
    EntityDefinition("submissions", "Form submissions", (
        F("form", "Form"),
        F("submittedAt", "Submitted", "date"),
        F("payload", "Payload", sensitive=True),
    ), extra_actions=(Action.EXPORT, Action.MANAGE)),
    EntityDefinition("notifications", "Notifications", (
        F("title", "Title"),
        F("channel", "Channel"),
    ), extra_actions=(Action.SEND,)),
    EntityDefinition("audit_logs", "Audit logs", (
        F("action", "Action"),
        F("actor", "Actor"),
        F("details", "Details", sensitive=True),
    ), extra_actions=(Action.EXPORT,)),
    EntityDefinition("api_keys", "API keys", (
        F("name", "Name"),
        F("prefix", "Key prefix"),
        F("expiresAt", "Expires", "date"),
    ), extra_actions=(Action.REGENERATE,)),
    EntityDefinition("quotes", "Quotes", (
        F("number", "Quote number"),
        F("amount", "Amount", "number", sensitive=True),
    )),
    EntityDefinition("invoices", "Invoices", (
        F("number", "Invoice number"),
        F("amount", "Amount", "number", sensitive=True),
        F("dueDate", "Due date", "date"),
    )),
    # ── Virtual entities: Person projections selected by role type ──
    EntityDefinition(
        "employees", "Employees",
        (F("id", "ID", "number"),) + _PERSON_FIELDS + (
            F("salary", "Salary", "number", sensitive=True),
            F("jobTitle", "Job title"),
            F("department", "Department"),
            F("hireDate", "Hire date", "date"),
        ),
        virtual=True,
        member_role_types=(
            "COMPANY_ADMIN", "HR_MANAGER", "MANAGER", "TRAINER_COORDINATOR",
            "SENIOR_TRAINER", "TRAINER", "EMPLOYEE",
        ),
    ),
    EntityDefinition(
        "trainers", "Trainers",
        (
            F("id", "ID", "number"),
            F("firstName", "First name"),
            F("lastName", "Last name"),
            F("email", "Email", "email", sensitive=True),
            F("phone", "Phone", "phone", sensitive=True),
            F("specialization", "Specialization"),
            F("certifications", "Certifications"),
            F("hourlyRate", "Hourly rate", "number", sensitive=True),
        ),
        virtual=True,
        member_role_types=("TRAINER_COORDINATOR", "SENIOR_TRAINER", "TRAINER", "EXTERNAL_TRAINER"),
    ),
)

_ENTITY_BY_NAME: dict[str, EntityDefinition] = {e.name: e for e in _ENTITIES}


def normalize_permission_id(raw: str) -> str:
    return raw.strip().upper()


def permission_id_for(entity: str, action: Action | str) -> str:
    """Build the `ACTION_ENTITY` identifier, e.g. ("companies", "create") -> CREATE_COMPANIES."""
    action_value = action.value if isinstance(action, Action) else str(action)
    return normalize_permission_id(f"{action_value.strip()}_{entity.strip()}")


def _build_index() -> dict[str, tuple[Action, str]]:
    index: dict[str, tuple[Action, str]] = {}
    for entity in _ENTITIES:
        for action in entity.actions:
            index[permission_id_for(entity.name, action)] = (action, entity.name)
    return index


# permission id -> (action, entity name), for entity-bound permissions only
_ENTITY_PERMISSIONS = _build_index()

_ALL_PERMISSION_IDS: frozenset[str] = frozenset(_ENTITY_PERMISSIONS) | frozenset(
    p.value for p in SpecialPermission
)


def list_entities() -> list[EntityDefinition]:
    return list(_ENTITIES)


def get_entity(name: str) -> EntityDefinition:
    entity = _ENTITY_BY_NAME.get(name.strip().lower())
    if entity is None:
        raise NotFoundError(f"Entity {name} not found")
    return entity


def all_permission_ids() -> frozenset[str]:
    return _ALL_PERMISSION_IDS


def is_known_permission(permission_id: str) -> bool:
    return normalize_permission_id(permission_id) in _ALL_PERMISSION_IDS


def split_permission_id(permission_id: str) -> tuple[Action, str] | None:
    """Return (action, entity) for entity-bound ids, None for special permissions."""
    return _ENTITY_PERMISSIONS.get(normalize_permission_id(permission_id))


def unknown_permissions(permission_ids) -> list[str]:
    return sorted({normalize_permission_id(p) for p in permission_ids} - _ALL_PERMISSION_IDS)


def virtual_entities_for_role(role_type: str) -> list[str]:
    """Names of the virtual entities a person holding `role_type` belongs to."""
    return [e.name for e in _ENTITIES if e.virtual and role_type in e.member_role_types]


def catalog_by_entity() -> dict[str, dict]:
    """Catalog grouped by entity, plus a `special` group, for the catalog endpoint."""
    grouped: dict[str, dict] = {}
    for entity in _ENTITIES:
        grouped[entity.name] = {
            "displayName": entity.display_name,
            "virtual": entity.virtual,
            "permissions": [permission_id_for(entity.name, a) for a in entity.actions],
        }
    grouped["special"] = {
        "displayName": "Administration",
        "virtual": False,
        "permissions": sorted(p.value for p in SpecialPermission),
    }
    return grouped
