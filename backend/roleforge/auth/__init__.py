from roleforge.auth.catalog import Action, Scope, SpecialPermission, all_permission_ids, is_known_permission
from roleforge.auth.hierarchy import RoleHierarchy, RoleNode, infer_parent
from roleforge.auth.resolver import Grant, resolve_effective_permissions, merge_effective
from roleforge.auth.assignability import Assignable, get_assignable_roles_and_permissions
from roleforge.auth.context import RequestContext

__all__ = [
    "Action", "Scope", "SpecialPermission", "all_permission_ids", "is_known_permission",
    "RoleHierarchy", "RoleNode", "infer_parent",
    "Grant", "resolve_effective_permissions", "merge_effective",
    "Assignable", "get_assignable_roles_and_permissions",
    "RequestContext",
]
