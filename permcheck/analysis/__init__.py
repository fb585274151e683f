"""
Controller Analysis

Each module covers one step between a controller file and the permissions
it implements.
"""

from .controller_facts import ControllerFactExtractor, ControllerFacts
from .cross_file_resolver import CrossFileResolver, ServiceResolution, PolicyResolution
from .resolution_oracle import (
    ResolutionOracle,
    LLMResolutionOracle,
    StaticResolutionOracle,
    MappingResolutionOracle,
    create_oracle,
)
from .permission_assembler import CompletenessPolicy, assemble_permissions
from .reconciliation import reconcile, permission_matches_rule

__all__ = [
    'ControllerFactExtractor',
    'ControllerFacts',
    'CrossFileResolver',
    'ServiceResolution',
    'PolicyResolution',
    'ResolutionOracle',
    'LLMResolutionOracle',
    'StaticResolutionOracle',
    'MappingResolutionOracle',
    'create_oracle',
    'CompletenessPolicy',
    'assemble_permissions',
    'reconcile',
    'permission_matches_rule',
]
