"""Access Control - default-deny role authorization"""
from carekeep.access.authorizer import Decision, RoleAuthorizer, assess_risk, normalize_action
from carekeep.access.roles import (
    DEFAULT_ROLES,
    AccessLevel,
    Capability,
    Role,
    RoleTable,
    default_role_table,
)

__all__ = [
    "RoleAuthorizer",
    "Decision",
    "normalize_action",
    "assess_risk",
    "Role",
    "RoleTable",
    "AccessLevel",
    "Capability",
    "DEFAULT_ROLES",
    "default_role_table",
]
