"""
permcheck - Role-permission consistency checker for NestJS projects

Compares the rules declared in an XML policy document with the permissions
the project's controllers actually implement.
"""

from .exceptions import PermissionCheckError, PolicyParseError, ArchiveExtractionError, ConfigError
from .config import CheckerConfig
from .permission_schema import PolicyRule, ImplementedPermission, ReconciliationResult
from .permission_checker import PermissionChecker, CheckRun, check_project_permissions

__all__ = [
    'PermissionCheckError',
    'PolicyParseError',
    'ArchiveExtractionError',
    'ConfigError',
    'CheckerConfig',
    'PolicyRule',
    'ImplementedPermission',
    'ReconciliationResult',
    'PermissionChecker',
    'CheckRun',
    'check_project_permissions',
]
