"""
System role definitions: the global role tree and each role's default grants.

Levels: lower = more authority. Every role sits exactly one level below its
parent:

    SUPER_ADMIN (0)
      ADMIN (1)
        TENANT_ADMIN (2)
        COMPANY_ADMIN (2)
          TRAINING_ADMIN (3)
            HR_MANAGER (4)
              TRAINER_COORDINATOR (5)
                SENIOR_TRAINER (6)
                  TRAINER (7), EXTERNAL_TRAINER (7)
              COMPANY_MANAGER (5)
            MANAGER (4)
              AUDITOR (5)
            DEPARTMENT_HEAD (4)
              SUPERVISOR (5)
                COORDINATOR (6)
                  CONSULTANT (7)
                  OPERATOR (7)
                    EMPLOYEE (8)
                      VIEWER (9)
                        GUEST (10)

Grants are authored per role; nothing is inherited from the parent. These
sets only seed a fresh database and are validated against the catalog.
"""

from dataclasses import dataclass

from roleforge.auth.catalog import Action, SpecialPermission, permission_id_for

V, C, E, D = Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE


def _perms(entity: str, *actions: Action) -> set[str]:
    return {permission_id_for(entity, a) for a in actions}


def _crud(*entities: str) -> set[str]:
    out: set[str] = set()
    for entity in entities:
        out |= _perms(entity, V, C, E, D)
    return out


@dataclass(frozen=True)
class SystemRole:
    role_type: str
    name: str
    description: str
    level: int
    parent: str | None
    permissions: frozenset[str]


# ── Super admin: short-circuits to the whole catalog ──
_SUPER_ADMIN_PERMS: set[str] = {SpecialPermission.ALL_PERMISSIONS.value}

# ── Admin: full tenant administration ──
_ADMIN_PERMS: set[str] = {
    SpecialPermission.ROLE_MANAGEMENT.value,
    SpecialPermission.USER_MANAGEMENT.value,
    SpecialPermission.TENANT_MANAGEMENT.value,
    SpecialPermission.HIERARCHY_MANAGEMENT.value,
    SpecialPermission.MANAGE_USERS.value,
    SpecialPermission.ASSIGN_ROLES.value,
    SpecialPermission.REVOKE_ROLES.value,
    SpecialPermission.ADMIN_PANEL.value,
    SpecialPermission.SYSTEM_SETTINGS.value,
    *_crud("roles", "companies", "employees", "trainers", "users", "courses", "documents"),
    *_perms("hierarchy", V, C, E, D, Action.MANAGE),
    *_perms("reports", V, C),
}

# ── Tenant admin: tenant-wide management without system settings ──
_TENANT_ADMIN_PERMS: set[str] = {
    SpecialPermission.TENANT_MANAGEMENT.value,
    SpecialPermission.MANAGE_USERS.value,
    SpecialPermission.ASSIGN_ROLES.value,
    SpecialPermission.REVOKE_ROLES.value,
    *_crud("roles"),
    *_perms("hierarchy", V, C, E, D, Action.MANAGE),
    *_perms("companies", V, C, E),
    *_perms("employees", V, C, E),
    *_perms("trainers", V, C, E),
    *_perms("users", V, C, E),
    *_perms("courses", V, C, E),
}

# ── Company admin: own company, its people and courses ──
_COMPANY_ADMIN_PERMS: set[str] = {
    SpecialPermission.MANAGE_USERS.value,
    SpecialPermission.ASSIGN_ROLES.value,
    *_perms("roles", V, C, E),
    *_perms("hierarchy", V),
    *_perms("companies", V, E),
    *_perms("employees", V, C, E),
    *_perms("trainers", V, C, E),
    *_perms("users", V, C, E),
    *_perms("courses", V, C, E),
    *_perms("documents", V, C, E),
}

_TRAINING_ADMIN_PERMS: set[str] = {
    *_crud("employees", "trainers", "courses", "documents"),
    *_perms("reports", V, C, E),
}

_HR_MANAGER_PERMS: set[str] = {
    *_crud("employees"),
    *_perms("trainers", V, C, E),
    *_perms("courses", V),
    *_perms("documents", V, C),
}

_MANAGER_PERMS: set[str] = {
    *_perms("employees", V, C, E),
    *_perms("trainers", V, C, E),
    *_perms("courses", V, C, E),
    *_perms("documents", V, C, E),
    *_perms("reports", V),
}

_DEPARTMENT_HEAD_PERMS: set[str] = {
    *_perms("employees", V, C, E),
    *_perms("trainers", V, C),
    *_perms("courses", V, C, E),
    *_perms("documents", V, C),
}

_TRAINER_COORDINATOR_PERMS: set[str] = {
    *_perms("trainers", V, C, E),
    *_perms("courses", V, C, E),
    *_perms("documents", V, C),
}

_COMPANY_MANAGER_PERMS: set[str] = {
    *_perms("employees", V, E),
    *_perms("courses", V, E),
    *_perms("documents", V, C),
    *_perms("reports", V),
}

_AUDITOR_PERMS: set[str] = {
    *_perms("reports", V),
    *_perms("documents", V),
    *_perms("employees", V),
}

_SUPERVISOR_PERMS: set[str] = {
    *_perms("employees", V, E),
    *_perms("courses", V),
    *_perms("documents", V),
}

_SENIOR_TRAINER_PERMS: set[str] = {
    *_perms("courses", V, C, E),
    *_perms("employees", V),
    *_perms("documents", V, C),
}

_TRAINER_PERMS: set[str] = {
    *_perms("courses", V, E),
    *_perms("employees", V),
    *_perms("documents", V, C),
}

_COORDINATOR_PERMS: set[str] = _perms("employees", V) | _perms("courses", V) | _perms("documents", V)

_BASIC_PERMS: set[str] = _perms("courses", V) | _perms("documents", V)

_CONSULTANT_PERMS: set[str] = _BASIC_PERMS | _perms("reports", V)

_GUEST_PERMS: set[str] = _perms("courses", V)


SYSTEM_ROLES: tuple[SystemRole, ...] = (
    SystemRole("SUPER_ADMIN", "Super Administrator", "Full access to the whole system", 0, None,
               frozenset(_SUPER_ADMIN_PERMS)),
    SystemRole("ADMIN", "Administrator", "Full tenant administration", 1, "SUPER_ADMIN",
               frozenset(_ADMIN_PERMS)),
    SystemRole("COMPANY_ADMIN", "Company Administrator", "Manages own company and its employees", 2, "ADMIN",
               frozenset(_COMPANY_ADMIN_PERMS)),
    SystemRole("TENANT_ADMIN", "Tenant Administrator", "Manages the tenant", 2, "ADMIN",
               frozenset(_TENANT_ADMIN_PERMS)),
    SystemRole("TRAINING_ADMIN", "Training Administrator", "Manages training and workforce", 3, "COMPANY_ADMIN",
               frozenset(_TRAINING_ADMIN_PERMS)),
    SystemRole("HR_MANAGER", "HR Manager", "Human resources", 4, "TRAINING_ADMIN",
               frozenset(_HR_MANAGER_PERMS)),
    SystemRole("MANAGER", "Manager", "Operations and coordination", 4, "TRAINING_ADMIN",
               frozenset(_MANAGER_PERMS)),
    SystemRole("DEPARTMENT_HEAD", "Department Head", "Runs a single department", 4, "TRAINING_ADMIN",
               frozenset(_DEPARTMENT_HEAD_PERMS)),
    SystemRole("TRAINER_COORDINATOR", "Trainer Coordinator", "Coordinates training activities", 5, "HR_MANAGER",
               frozenset(_TRAINER_COORDINATOR_PERMS)),
    SystemRole("COMPANY_MANAGER", "Company Manager", "Company-level responsibilities", 5, "HR_MANAGER",
               frozenset(_COMPANY_MANAGER_PERMS)),
    SystemRole("SUPERVISOR", "Supervisor", "Operational supervision", 5, "DEPARTMENT_HEAD",
               frozenset(_SUPERVISOR_PERMS)),
    SystemRole("AUDITOR", "Auditor", "Controls and audits", 5, "MANAGER",
               frozenset(_AUDITOR_PERMS)),
    SystemRole("SENIOR_TRAINER", "Senior Trainer", "Advanced training and mentoring", 6, "TRAINER_COORDINATOR",
               frozenset(_SENIOR_TRAINER_PERMS)),
    SystemRole("COORDINATOR", "Coordinator", "Coordinates activities", 6, "SUPERVISOR",
               frozenset(_COORDINATOR_PERMS)),
    SystemRole("TRAINER", "Trainer", "Runs courses", 7, "SENIOR_TRAINER",
               frozenset(_TRAINER_PERMS)),
    SystemRole("EXTERNAL_TRAINER", "External Trainer", "External specialist trainer", 7, "SENIOR_TRAINER",
               frozenset(_BASIC_PERMS)),
    SystemRole("OPERATOR", "Operator", "Basic operations", 7, "COORDINATOR",
               frozenset(_BASIC_PERMS)),
    SystemRole("CONSULTANT", "Consultant", "Specialist consulting", 7, "COORDINATOR",
               frozenset(_CONSULTANT_PERMS)),
    SystemRole("EMPLOYEE", "Employee", "Basic access", 8, "OPERATOR",
               frozenset(_BASIC_PERMS)),
    SystemRole("VIEWER", "Viewer", "Read-only access", 9, "EMPLOYEE",
               frozenset(_BASIC_PERMS)),
    SystemRole("GUEST", "Guest", "Limited access", 10, "VIEWER",
               frozenset(_GUEST_PERMS)),
)

SYSTEM_ROLE_TYPES: frozenset[str] = frozenset(r.role_type for r in SYSTEM_ROLES)
