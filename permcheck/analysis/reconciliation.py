"""
Reconciliation Engine

Compares declared PolicyRules with ImplementedPermissions.

Equality: role, action and resource match case-insensitively; conditions
match after every whitespace character is removed from both sides.
"""

from typing import List, Sequence

from permcheck.permission_schema import ImplementedPermission, PermissionTuple, PolicyRule, ReconciliationResult
from permcheck.policy_parser import strip_whitespace


def permission_matches_rule(rule: PermissionTuple, permission: PermissionTuple) -> bool:
    return (
        rule.role.lower() == permission.role.lower()
        and rule.action.upper() == permission.action.upper()
        and rule.resource.lower() == permission.resource.lower()
        and strip_whitespace(rule.condition) == strip_whitespace(permission.condition)
    )


def find_redundant_permissions(permissions: Sequence[ImplementedPermission],
                               rules: Sequence[PolicyRule]) -> List[ImplementedPermission]:
    """Implemented permissions with no equal declared rule, in input order"""
    return [p for p in permissions if not any(permission_matches_rule(r, p) for r in rules)]


def find_lacking_rules(permissions: Sequence[ImplementedPermission],
                       rules: Sequence[PolicyRule]) -> List[PolicyRule]:
    """Declared rules with no equal implemented permission, in input order"""
    return [r for r in rules if not any(permission_matches_rule(r, p) for p in permissions)]


def matched_count(permissions: Sequence[ImplementedPermission],
                  rules: Sequence[PolicyRule],
                  from_rules: bool = True) -> int:
    """
    Size of the intersection, counted from the rule side or the permission side
    """
    if from_rules:
        return sum(1 for r in rules if any(permission_matches_rule(r, p) for p in permissions))
    return sum(1 for p in permissions if any(permission_matches_rule(r, p) for r in rules))


def reconcile(rules: Sequence[PolicyRule], permissions: Sequence[ImplementedPermission]) -> ReconciliationResult:
    return ReconciliationResult(
        redundant_rules=find_redundant_permissions(permissions, rules),
        lack_rules=find_lacking_rules(permissions, rules),
    )
