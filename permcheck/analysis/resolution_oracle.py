#!/usr/bin/env python3
"""
Entity/Constraint Resolution Oracles

An oracle maps service method names to the entity they manipulate and policy
class names to the constraint they enforce. Oracle output is untrusted: every
implementation returns plain {name: value} dicts and the checker treats a
missing or empty value as unresolved.

Implementations:
- LLMResolutionOracle: asks Claude through AIClient
- StaticResolutionOracle: reads repository/ORM usage and super('...') calls
- MappingResolutionOracle: fixed answers (tests, offline replays)
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from tree_sitter import Node

from permcheck.analysis.controller_facts import find_nodes, literal_value, node_text, parse_typescript

logger = logging.getLogger(__name__)

# Values an LLM uses to mean "nothing"
EMPTY_ANSWERS = {'', 'none', 'null', 'n/a', 'na', 'entityname', 'constraint', '""', "''"}


# ============================================================================
# Response parsing
# ============================================================================

def clean_llm_output(text: str) -> str:
    """
    Reduce model chatter to 'name: value' pairs joined by commas

    Lines without a colon (introductions, code fences) are dropped.
    """
    if not text:
        return ''

    pairs = []
    for chunk in re.split(r'[\n,]', text):
        match = re.match(r'^\s*(?:[-*•]|\d+[.)])?\s*`?(\w+)`?\s*:\s*(.*?)\s*$', chunk)
        if match:
            pairs.append(f"{match.group(1)}: {match.group(2)}")
    return ','.join(pairs)


def parse_name_value_pairs(text: str, expected_names: List[str]) -> Dict[str, str]:
    """
    Parse a comma-separated 'name: value' response

    Tolerates extra whitespace, quotes and unknown names. Every expected name
    is present in the result; names missing from the response map to ''.

    Args:
        text: Oracle response
        expected_names: Names the caller asked about

    Returns:
        Dict with exactly the expected names as keys
    """
    result = {name: '' for name in expected_names}
    by_lower = {name.lower(): name for name in expected_names}

    for pair in (text or '').split(','):
        if ':' not in pair:
            continue
        raw_name, raw_value = pair.split(':', 1)
        name = raw_name.strip().strip('`"\'')
        value = raw_value.strip().strip('`"\'').strip()

        key = name if name in result else by_lower.get(name.lower())
        if key is None:
            continue
        if value.lower() in EMPTY_ANSWERS:
            value = ''
        if value and not result[key]:
            result[key] = value
    return result


# ============================================================================
# Oracle interface
# ============================================================================

class ResolutionOracle(ABC):
    """Resolves entity names and constraint strings from source text"""

    name = 'oracle'

    @abstractmethod
    def resolve_entity_names(self, method_names: List[str], source_text: str) -> Dict[str, str]:
        """Map each service method name to the entity it manipulates"""

    @abstractmethod
    def resolve_constraints(self, operation_names: List[str], policy_references: List[Dict[str, str]],
                            source_text: str) -> Dict[str, str]:
        """
        Map each policy class name to its constraint text

        Args:
            operation_names: Policy class names to resolve
            policy_references: {controller_method: policy_name} mappings using them
            source_text: Policy file content
        """


class LLMResolutionOracle(ResolutionOracle):
    """Oracle backed by Claude"""

    name = 'llm'

    def __init__(self, ai_client, max_tokens: int = 1000, temperature: float = 0.0, debug: bool = False):
        self.ai = ai_client
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.debug = debug

    def resolve_entity_names(self, method_names: List[str], source_text: str) -> Dict[str, str]:
        if not method_names:
            return {}

        response = self.ai.call_claude(
            self.build_entity_prompt(method_names, source_text),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if self.debug:
            logger.debug(f"[ORACLE] Entity response: {response}")
        return parse_name_value_pairs(clean_llm_output(response), method_names)

    def resolve_constraints(self, operation_names: List[str], policy_references: List[Dict[str, str]],
                            source_text: str) -> Dict[str, str]:
        if not operation_names:
            return {}

        response = self.ai.call_claude(
            self.build_constraint_prompt(operation_names, source_text),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if self.debug:
            logger.debug(f"[ORACLE] Constraint response: {response}")
        return parse_name_value_pairs(clean_llm_output(response), operation_names)

    @staticmethod
    def build_entity_prompt(method_names: List[str], source_text: str) -> str:
        methods_text = '\n'.join(method_names)
        response_format = ','.join(f"{m}: entityName" for m in method_names)
        return f"""Extract the SINGLE most important entity being directly manipulated in each of these functions:
{methods_text}

Instructions:
1. For each function, identify exactly ONE entity name: the primary data object being manipulated.
2. If several entities appear, choose the one central to the function's purpose.
3. Use the data model/object name, not a variable or DTO name.

Format your response exactly as follows:
{response_format}

Respond with ONLY the entity names in that format. No introduction, explanation or extra text.

Source code:
\"\"\"
{source_text}
\"\"\""""

    @staticmethod
    def build_constraint_prompt(operation_names: List[str], source_text: str) -> str:
        response_format = ','.join(f"{p}: constraint" for p in operation_names)
        return f"""Identify the constraint enforced by each of these policy classes: {', '.join(operation_names)}

The constraint of a policy class is the string passed to super('...') in its constructor.

Format your response exactly as follows:
{response_format}

Use an empty value for a class without a constraint. No explanations or extra text.

Source code:
\"\"\"
{source_text}
\"\"\""""


class StaticResolutionOracle(ResolutionOracle):
    """
    Deterministic oracle reading the TypeScript directly

    Entities come from the data access used in each service method:
    this.<entity>Repository, this.prisma.<entity>, this.<entity>Model, or a
    property typed Repository<Entity>. Constraints come from the super('...')
    call in each policy class.
    """

    name = 'static'

    def resolve_entity_names(self, method_names: List[str], source_text: str) -> Dict[str, str]:
        if not method_names:
            return {}

        root = parse_typescript(source_text).root_node
        typed_repositories = self._typed_repository_properties(source_text)
        bodies = self._method_bodies(root)

        result = {}
        for method in method_names:
            body = bodies.get(method)
            result[method] = self._entity_from_body(node_text(body), typed_repositories) if body else ''
        return result

    def resolve_constraints(self, operation_names: List[str], policy_references: List[Dict[str, str]],
                            source_text: str) -> Dict[str, str]:
        if not operation_names:
            return {}

        root = parse_typescript(source_text).root_node
        classes = {
            node_text(c.child_by_field_name('name')): c
            for c in find_nodes(root, ('class_declaration',))
        }

        result = {}
        for policy_name in operation_names:
            class_node = classes.get(policy_name)
            result[policy_name] = self._super_argument(class_node) if class_node is not None else ''
        return result

    @staticmethod
    def _method_bodies(root: Node) -> Dict[str, Node]:
        bodies = {}
        for method in find_nodes(root, ('method_definition',)):
            name = node_text(method.child_by_field_name('name'))
            body = method.child_by_field_name('body')
            if name and body is not None and name not in bodies:
                bodies[name] = body
        return bodies

    @staticmethod
    def _typed_repository_properties(source_text: str) -> Dict[str, str]:
        """property -> Entity for `private accounts: Repository<Account>` or `@InjectRepository(Account) repo`"""
        typed = dict(re.findall(r'(\w+)\s*:\s*(?:Repository|Model|MongoRepository)\s*<\s*(\w+)\s*>', source_text))
        for entity, prop in re.findall(
                r'@Inject(?:Repository|Model)\(\s*(\w+)(?:\.name)?\s*\)\s*(?:(?:private|protected|public|readonly)\s+)*(\w+)',
                source_text):
            typed.setdefault(prop, entity)
        return typed

    @staticmethod
    def _entity_from_body(body: str, typed_repositories: Dict[str, str]) -> str:
        for prop in re.findall(r'this\.(\w+)\s*\.', body):
            if prop in typed_repositories:
                return typed_repositories[prop]

        for pattern in (r'this\.prisma\.(\w+)', r'this\.(\w+?)Repository\b', r'this\.(\w+?)Model\b'):
            match = re.search(pattern, body)
            if match:
                return match.group(1)
        return ''

    @staticmethod
    def _super_argument(class_node: Node) -> str:
        for call in find_nodes(class_node, ('call_expression',)):
            function = call.child_by_field_name('function')
            if function is None or function.type != 'super':
                continue
            arguments = call.child_by_field_name('arguments')
            if arguments is not None and arguments.named_children:
                first = arguments.named_children[0]
                if first.type in ('string', 'template_string'):
                    return literal_value(first)
            return ''
        return ''


class MappingResolutionOracle(ResolutionOracle):
    """Oracle answering from fixed mappings; records every call it receives"""

    name = 'mapping'

    def __init__(self, entities: Optional[Dict[str, str]] = None, constraints: Optional[Dict[str, str]] = None):
        self.entities = entities or {}
        self.constraints = constraints or {}
        self.calls: List[tuple] = []

    def resolve_entity_names(self, method_names: List[str], source_text: str) -> Dict[str, str]:
        self.calls.append(('entities', list(method_names)))
        return {m: self.entities[m] for m in method_names if m in self.entities}

    def resolve_constraints(self, operation_names: List[str], policy_references: List[Dict[str, str]],
                            source_text: str) -> Dict[str, str]:
        self.calls.append(('constraints', list(operation_names)))
        return {p: self.constraints[p] for p in operation_names if p in self.constraints}


def create_oracle(kind: str, ai_client=None, max_tokens: int = 1000, temperature: float = 0.0,
                  debug: bool = False) -> ResolutionOracle:
    """
    Build the configured oracle

    Falls back to the static oracle when 'llm' is requested but no AI client
    is available.
    """
    if kind == 'llm':
        if ai_client is not None and ai_client.is_available():
            return LLMResolutionOracle(ai_client, max_tokens=max_tokens, temperature=temperature, debug=debug)
        logger.warning("[ORACLE] No AI client available (Bedrock or Anthropic API); using static oracle")
    return StaticResolutionOracle()
