from roleforge.models.tenant import Tenant  # noqa: F401
from roleforge.models.person import Person  # noqa: F401
from roleforge.models.role import RoleDefinition, PermissionGrant  # noqa: F401
from roleforge.models.assignment import PersonRoleAssignment  # noqa: F401
from roleforge.models.audit import AuditLog  # noqa: F401
