"""
Pydantic schema for role-permission consistency checking

Declared policy (PolicyRule) and implemented behavior (ImplementedPermission)
share the same four fields so they can be compared directly.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List


class PermissionTuple(BaseModel):
    """Role/action/resource/condition tuple"""
    role: str = Field(
        ...,
        description="Role identifier (e.g., ADMIN), compared case-insensitively"
    )
    action: str = Field(
        ...,
        description="HTTP verb: GET|POST|PUT|DELETE|PATCH"
    )
    resource: str = Field(
        ...,
        description="Controlled resource or entity name, compared case-insensitively"
    )
    condition: str = Field(
        "",
        description="Constraint expression; empty string means no extra condition"
    )

    model_config = ConfigDict(frozen=True)

    def as_dict(self) -> Dict[str, str]:
        return self.model_dump()


class PolicyRule(PermissionTuple):
    """Declared authorization intent from the XML policy document"""
    pass


class ImplementedPermission(PermissionTuple):
    """Authorization behavior recovered from controller source"""
    pass


class RuleDeclaration(BaseModel):
    """Raw <Rule> node of a policy module"""
    rule_id: str = ""
    effect: str = ""
    role: str = ""
    action: str = ""
    resource: str = ""
    name: str = ""
    restrictions: List[str] = Field(
        default_factory=list,
        description="Restriction texts with internal whitespace removed"
    )

    @property
    def condition(self) -> str:
        return '&&'.join(self.restrictions)


class ModuleDeclaration(BaseModel):
    """Named policy grouping (<Module>) with its rules"""
    name: str = ""
    rules: List[RuleDeclaration] = Field(default_factory=list)


class ServiceMethodReference(BaseModel):
    """this.<service_property>.<service_method>() call inside a controller method"""
    controller_method: str
    service_property: str
    service_method: str

    model_config = ConfigDict(frozen=True)


class ReconciliationResult(BaseModel):
    """Set differences between declared policy and implemented permissions"""
    redundant_rules: List[ImplementedPermission] = Field(
        default_factory=list,
        alias='redundantRule',
        description="Implemented but not declared"
    )
    lack_rules: List[PolicyRule] = Field(
        default_factory=list,
        alias='lackRule',
        description="Declared but not implemented"
    )

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        """JSON-serializable {redundantRule, lackRule} shape"""
        return self.model_dump(by_alias=True)
