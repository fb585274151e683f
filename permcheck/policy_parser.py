#!/usr/bin/env python3
"""
Policy Document Parser

Reads the declarative XML policy model:

    <Policys>
      <Module>
        <Name>transaction</Name>
        <Controller1>
          <Rule>
            <RuleId>1</RuleId>
            <Effect>Allow</Effect>
            <Role>TELLER</Role>
            <Action>GET</Action>
            <Resource>transaction</Resource>
            <Name>TellerPolicy</Name>
            <Condition><Restriction>user.branch == transaction.branch</Restriction></Condition>
          </Rule>
        </Controller1>
      </Module>
    </Policys>

and flattens it into PolicyRule records.
"""

import logging
from typing import List, Union
from xml.etree.ElementTree import Element

import defusedxml.ElementTree as DefusedET
from defusedxml import DefusedXmlException

from permcheck.exceptions import PolicyParseError
from permcheck.permission_schema import ModuleDeclaration, PolicyRule, RuleDeclaration

logger = logging.getLogger(__name__)

ROOT_TAG = 'Policys'
MODULE_TAG = 'Module'
CONTROLLER_TAG_PREFIX = 'Controller'
RULE_TAG = 'Rule'


def strip_whitespace(text: str) -> str:
    """Remove every whitespace character (conditions compare whitespace-insensitively)"""
    return ''.join((text or '').split())


def parse_policy_document(xml_text: Union[str, bytes]) -> List[ModuleDeclaration]:
    """
    Parse XML policy text into module declarations

    Args:
        xml_text: Raw XML document

    Returns:
        Ordered list of ModuleDeclaration (empty if the document has no modules)

    Raises:
        PolicyParseError: If the XML is malformed or uses forbidden constructs
    """
    try:
        root = DefusedET.fromstring(xml_text, forbid_dtd=True)
    except DefusedET.ParseError as e:
        raise PolicyParseError(f"Error parsing XML policy document: {e}") from e
    except DefusedXmlException as e:
        raise PolicyParseError(f"XML policy document uses forbidden constructs: {e}") from e

    if root.tag != ROOT_TAG:
        logger.warning(f"[POLICY] Root element is <{root.tag}>, expected <{ROOT_TAG}>; no rules loaded")
        return []

    module_nodes = root.findall(MODULE_TAG)
    if not module_nodes:
        logger.warning("[POLICY] Policy document has no <Module> entries; no rules loaded")
        return []

    modules = [_parse_module(node) for node in module_nodes]
    logger.debug(f"[POLICY] Parsed {len(modules)} modules")
    return modules


def _parse_module(node: Element) -> ModuleDeclaration:
    rules = []
    # Controller1, Controller2, ... each appear once or repeated
    for controller in node:
        if not controller.tag.startswith(CONTROLLER_TAG_PREFIX):
            continue
        for rule_node in controller.findall(RULE_TAG):
            rules.append(_parse_rule(rule_node))

    return ModuleDeclaration(name=_text(node, 'Name'), rules=rules)


def _parse_rule(node: Element) -> RuleDeclaration:
    restrictions = []
    condition = node.find('Condition')
    if condition is not None:
        restriction_nodes = condition.findall('Restriction')
        if restriction_nodes:
            texts = [r.text for r in restriction_nodes]
        else:
            texts = [condition.text]
        restrictions = [strip_whitespace(t) for t in texts if strip_whitespace(t)]

    return RuleDeclaration(
        rule_id=_text(node, 'RuleId'),
        effect=_text(node, 'Effect'),
        role=_text(node, 'Role'),
        action=_text(node, 'Action'),
        resource=_text(node, 'Resource'),
        name=_text(node, 'Name'),
        restrictions=restrictions,
    )


def _text(node: Element, tag: str) -> str:
    return (node.findtext(tag) or '').strip()


def build_policy_rules(modules: List[ModuleDeclaration]) -> List[PolicyRule]:
    """
    Flatten module declarations into PolicyRule records

    Rules missing a role, action or resource are skipped with a warning.
    """
    rules = []
    for module in modules:
        for decl in module.rules:
            missing = [f for f in ('role', 'action', 'resource') if not getattr(decl, f)]
            if missing:
                logger.warning(
                    f"[POLICY] Skipping rule {decl.rule_id or decl.name or '?'} in module "
                    f"{module.name or '?'}: missing {', '.join(missing)}"
                )
                continue

            rules.append(PolicyRule(
                role=decl.role,
                action=decl.action,
                resource=decl.resource,
                condition=decl.condition,
            ))
    return rules


def load_policy_rules(xml_text: Union[str, bytes]) -> List[PolicyRule]:
    """Parse and flatten in one step"""
    return build_policy_rules(parse_policy_document(xml_text))
