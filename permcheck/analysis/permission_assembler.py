#!/usr/bin/env python3
"""
Permission Fact Assembler

Merges the per-method role, action, resource and condition mappings of one
controller into ImplementedPermission records.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from permcheck.analysis.controller_facts import ControllerFacts
from permcheck.analysis.cross_file_resolver import module_name_from_base_path
from permcheck.permission_schema import ImplementedPermission

logger = logging.getLogger(__name__)

_MISSING = object()


class CompletenessPolicy(str, Enum):
    """Which facts a method needs before it becomes an ImplementedPermission"""
    ALL_FACTS = "all_facts"  # role, action, resource and a resolved condition
    CONDITION_OPTIONAL = "condition_optional"  # unresolved condition becomes ""


def lookup(mappings: Sequence[Dict[str, Any]], key: str, default: Any = None) -> Any:
    """First value for key in a list of single-entry mappings"""
    for mapping in mappings:
        if key in mapping:
            return mapping[key]
    return default


def ordered_keys(*mapping_lists: Sequence[Dict[str, Any]]) -> List[str]:
    """Union of keys across mapping lists, in order of first appearance"""
    seen = []
    for mappings in mapping_lists:
        for mapping in mappings:
            for key in mapping:
                if key not in seen:
                    seen.append(key)
    return seen


def join_through(left: Sequence[Dict[str, str]], right: Dict[str, str]) -> List[Dict[str, str]]:
    """
    Combine {a: b} mappings with a {b: c} dict into {a: c} mappings

    Entries whose intermediate value has no answer in right are dropped.
    """
    joined = []
    for mapping in left:
        for key, intermediate in mapping.items():
            if intermediate in right:
                joined.append({key: right[intermediate]})
    return joined


def entity_mappings(facts: ControllerFacts, service_property: str,
                    entities: Dict[str, str]) -> List[Dict[str, str]]:
    """
    controller method -> entity, through the first service method each endpoint calls
    """
    first_call: Dict[str, str] = {}
    for ref in facts.service_calls_for(service_property):
        first_call.setdefault(ref.controller_method, ref.service_method)

    controller_to_service = [{method: first_call[method]} for method in facts.methods if method in first_call]
    return join_through(controller_to_service, entities)


def base_path_mappings(facts: ControllerFacts) -> List[Dict[str, str]]:
    """controller method -> first segment of the @Controller path"""
    resource = module_name_from_base_path(facts.base_path)
    return [{method: resource} for method in facts.methods]


def constraint_mappings(facts: ControllerFacts,
                        constraints: Optional[Dict[str, str]]) -> List[Dict[str, Optional[str]]]:
    """
    controller method -> constraint text

    Methods without a policy marker get "" (no condition). Methods whose
    policy has no answer get None (unresolved).
    """
    constraints = constraints or {}
    mappings = []
    for entry in facts.policies:
        for method, policy_name in entry.items():
            if not policy_name:
                mappings.append({method: ''})
            else:
                mappings.append({method: constraints.get(policy_name)})
    return mappings


def assemble_permissions(roles: Sequence[Dict[str, Any]],
                         actions: Sequence[Dict[str, str]],
                         resources: Sequence[Dict[str, str]],
                         conditions: Sequence[Dict[str, Optional[str]]],
                         policy: CompletenessPolicy = CompletenessPolicy.ALL_FACTS) -> List[ImplementedPermission]:
    """
    Build ImplementedPermission records keyed by method name

    The key set is the union of keys in all four lists. A method becomes a
    permission only when it has a role, an action and a resource, and (under
    ALL_FACTS) a resolved condition. A method with several roles yields one
    permission per role.

    Args:
        roles: {method: [roles]} (a plain string is accepted as one role)
        actions: {method: HTTP verb}
        resources: {method: entity or resource name}
        conditions: {method: constraint}; "" means none, None means unresolved
        policy: Completeness policy

    Returns:
        Permissions in method order
    """
    policy = CompletenessPolicy(policy)
    permissions = []

    for method in ordered_keys(roles, actions, resources, conditions):
        role_value = lookup(roles, method, [])
        role_list = [role_value] if isinstance(role_value, str) else list(role_value or [])
        role_list = [r.strip() for r in role_list if r and r.strip()]
        action = (lookup(actions, method, '') or '').strip()
        resource = (lookup(resources, method, '') or '').strip()
        condition = lookup(conditions, method, _MISSING)

        missing = [name for name, value in (('role', role_list), ('action', action), ('resource', resource)) if not value]
        if condition is _MISSING or condition is None:
            if policy == CompletenessPolicy.ALL_FACTS:
                missing.append('condition')
            else:
                condition = ''

        if missing:
            logger.debug(f"[ASSEMBLER] Dropping {method}: missing {', '.join(missing)}")
            continue

        for role in role_list:
            permissions.append(ImplementedPermission(
                role=role,
                action=action,
                resource=resource,
                condition=condition.strip(),
            ))
    return permissions
