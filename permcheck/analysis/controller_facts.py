#!/usr/bin/env python3
"""
Controller Fact Extractor

Parses a NestJS controller with tree-sitter and recovers, per endpoint method:

- the HTTP action (@Get, @Post, @Put, @Delete, @Patch)
- the declared roles (@Roles('ADMIN') or @Roles(Role.ADMIN))
- the policy class attached through @CheckPolicies(new XPolicy())
- the service calls made through this.<service>.<method>()

Markers bind to the nearest preceding method-level decorator of their kind.
A decorator never binds across another method declaration, so each method
only sees the decorators written directly above it.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import tree_sitter_typescript
from tree_sitter import Language, Node, Parser

from permcheck.permission_schema import ServiceMethodReference

logger = logging.getLogger(__name__)

TS_LANGUAGE = Language(tree_sitter_typescript.language_typescript())

HTTP_ACTION_DECORATORS = {'Get', 'Post', 'Put', 'Delete', 'Patch'}
ROLE_DECORATORS = {'Roles'}
POLICY_DECORATORS = {'CheckPolicies'}
CONTROLLER_DECORATOR = 'Controller'

# Decorators whose parent is one of these apply to class members
MEMBER_DECORATOR_PARENTS = ('class_body', 'method_definition')


@dataclass
class DecoratorOccurrence:
    """One decorator call found in the syntax tree"""
    name: str
    position: int
    arguments: List[str] = field(default_factory=list)
    constructed: List[str] = field(default_factory=list)  # class names in `new X()` arguments


@dataclass
class MethodDeclaration:
    name: str
    position: int
    line: int
    body: Optional[Node] = None


@dataclass
class ImportedName:
    """Named import: import { name } from 'path'"""
    name: str
    path: str


@dataclass
class ControllerFacts:
    """
    Facts recovered from one controller file

    roles, actions and policies are parallel lists of single-entry
    {method_name: value} mappings, one entry per endpoint method.
    """
    class_name: str = ''
    base_path: str = ''
    methods: List[str] = field(default_factory=list)
    roles: List[Dict[str, List[str]]] = field(default_factory=list)
    actions: List[Dict[str, str]] = field(default_factory=list)
    policies: List[Dict[str, str]] = field(default_factory=list)
    routes: Dict[str, str] = field(default_factory=dict)
    lines: Dict[str, int] = field(default_factory=dict)
    service_calls: List[ServiceMethodReference] = field(default_factory=list)
    constructor_params: List[Tuple[str, str]] = field(default_factory=list)
    imports: List[ImportedName] = field(default_factory=list)

    @property
    def policy_names(self) -> List[str]:
        """Sorted, deduplicated policy class names attached to any method"""
        return sorted({value for entry in self.policies for value in entry.values() if value})

    def service_calls_for(self, service_property: str) -> List[ServiceMethodReference]:
        return [ref for ref in self.service_calls if ref.service_property == service_property]


def parse_typescript(source: str):
    """Parse TypeScript source into a tree-sitter tree"""
    parser = Parser(TS_LANGUAGE)
    return parser.parse(source.encode('utf-8'))


def node_text(node: Optional[Node]) -> str:
    if node is None:
        return ''
    return node.text.decode('utf-8', errors='replace')


def find_nodes(root: Node, types) -> List[Node]:
    """Pre-order (source order) list of root and descendants with a type in types"""
    found = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in types:
            found.append(node)
        stack.extend(reversed(node.children))
    return found


def literal_value(node: Node) -> str:
    """
    Best-effort value of an argument expression

    'ADMIN' -> ADMIN, Role.ADMIN -> ADMIN, ADMIN -> ADMIN
    """
    if node.type in ('string', 'template_string'):
        return node_text(node)[1:-1]
    if node.type == 'member_expression':
        return node_text(node.child_by_field_name('property'))
    return node_text(node)


class ControllerFactExtractor:
    """Extracts role/action/policy facts from NestJS controller source"""

    def __init__(self, debug: bool = False):
        self.debug = debug

    def extract(self, source: str) -> ControllerFacts:
        """
        Extract per-method facts from controller source

        Args:
            source: Full text of a *.controller.ts file

        Returns:
            ControllerFacts (empty lists if no controller class is found)
        """
        tree = parse_typescript(source)
        root = tree.root_node
        if root.has_error:
            logger.debug("[FACTS] Syntax tree contains errors; continuing with partial tree")

        facts = ControllerFacts(imports=self._collect_imports(root))

        class_node = self._controller_class(root)
        if class_node is not None:
            facts.class_name = node_text(class_node.child_by_field_name('name'))
            controller_decorator = next(
                (d for d in self._class_decorators(class_node) if d.name == CONTROLLER_DECORATOR), None
            )
            if controller_decorator is not None and controller_decorator.arguments:
                facts.base_path = controller_decorator.arguments[0]
            self._extract_class_body(class_node.child_by_field_name('body'), facts)

        if self.debug:
            logger.debug(f"[FACTS] {facts.class_name or '<anonymous>'}: {len(facts.methods)} methods")
        return facts

    def _controller_class(self, root: Node) -> Optional[Node]:
        """First @Controller class; the first class when none is decorated"""
        classes = [
            node for node in find_nodes(root, ('class_declaration', 'abstract_class_declaration'))
            if node.child_by_field_name('body') is not None
        ]
        for class_node in classes:
            if any(d.name == CONTROLLER_DECORATOR for d in self._class_decorators(class_node)):
                return class_node
        if len(classes) > 1:
            logger.debug(f"[FACTS] No @{CONTROLLER_DECORATOR} class among {len(classes)}; using the first")
        return classes[0] if classes else None

    # ------------------------------------------------------------------
    # Class members
    # ------------------------------------------------------------------

    def _extract_class_body(self, body: Node, facts: ControllerFacts):
        methods: List[MethodDeclaration] = []
        decorators: List[DecoratorOccurrence] = []

        for node in find_nodes(body, ('method_definition', 'decorator')):
            if node.type == 'method_definition' and node.parent is not None and node.parent.id == body.id:
                name_node = node.child_by_field_name('name')
                methods.append(MethodDeclaration(
                    name=node_text(name_node),
                    position=name_node.start_byte,
                    line=name_node.start_point[0] + 1,
                    body=node.child_by_field_name('body'),
                ))
                if node_text(name_node) == 'constructor':
                    facts.constructor_params = self._constructor_params(node)
            elif node.type == 'decorator' and self._is_member_decorator(node, body):
                decorators.append(self._decorator_occurrence(node))

        methods.sort(key=lambda m: m.position)

        lower_bound = body.start_byte
        for method in methods:
            window = [d for d in decorators if lower_bound <= d.position < method.position]
            lower_bound = method.position

            if method.name == 'constructor':
                continue

            action = self.nearest(window, HTTP_ACTION_DECORATORS)
            role = self.nearest(window, ROLE_DECORATORS)
            policy = self.nearest(window, POLICY_DECORATORS)

            facts.methods.append(method.name)
            facts.lines[method.name] = method.line
            facts.actions.append({method.name: action.name.upper() if action else ''})
            facts.roles.append({method.name: list(role.arguments) if role else []})
            facts.policies.append({method.name: policy.constructed[0] if policy and policy.constructed else ''})
            if action is not None:
                facts.routes[method.name] = action.arguments[0] if action.arguments else ''

            facts.service_calls.extend(self._service_calls(method))

    @staticmethod
    def _is_member_decorator(decorator: Node, body: Node) -> bool:
        """Decorator written on a member of this class body (not a parameter or nested class)"""
        parent = decorator.parent
        if parent is None or parent.type not in MEMBER_DECORATOR_PARENTS:
            return False
        if parent.type == 'method_definition':
            parent = parent.parent
        return parent is not None and parent.id == body.id

    def _class_decorators(self, class_node: Node) -> List[DecoratorOccurrence]:
        # `@Controller() export class X` attaches decorators to the export statement
        holders = [class_node]
        if class_node.parent is not None and class_node.parent.type == 'export_statement':
            holders.append(class_node.parent)
        return [
            self._decorator_occurrence(child)
            for holder in holders
            for child in holder.children if child.type == 'decorator'
        ]

    @staticmethod
    def nearest(window: List[DecoratorOccurrence], names) -> Optional[DecoratorOccurrence]:
        """Closest preceding decorator (largest position) whose name is in names"""
        candidates = [d for d in window if d.name in names]
        if not candidates:
            return None
        return max(candidates, key=lambda d: d.position)

    def _service_calls(self, method: MethodDeclaration) -> List[ServiceMethodReference]:
        """Find this.<property>.<method>(...) calls inside a method body"""
        refs = []
        if method.body is None:
            return refs

        for call in find_nodes(method.body, ('call_expression',)):
            function = call.child_by_field_name('function')
            if function is None or function.type != 'member_expression':
                continue
            owner = function.child_by_field_name('object')
            if owner is None or owner.type != 'member_expression':
                continue
            this_node = owner.child_by_field_name('object')
            if this_node is None or this_node.type != 'this':
                continue

            ref = ServiceMethodReference(
                controller_method=method.name,
                service_property=node_text(owner.child_by_field_name('property')),
                service_method=node_text(function.child_by_field_name('property')),
            )
            if ref not in refs:
                refs.append(ref)
        return refs

    def _constructor_params(self, constructor: Node) -> List[Tuple[str, str]]:
        """(name, type) pairs of constructor parameters, e.g. ('transactionService', 'TransactionService')"""
        params = []
        parameters = constructor.child_by_field_name('parameters')
        if parameters is None:
            return params

        for param in parameters.named_children:
            if param.type not in ('required_parameter', 'optional_parameter'):
                continue
            pattern = param.child_by_field_name('pattern')
            type_node = param.child_by_field_name('type')
            type_name = node_text(type_node).lstrip(':').strip()
            if pattern is not None and type_name:
                params.append((node_text(pattern), type_name))
        return params

    # ------------------------------------------------------------------
    # Decorators and imports
    # ------------------------------------------------------------------

    def _decorator_occurrence(self, decorator: Node) -> DecoratorOccurrence:
        expression = decorator.named_children[0] if decorator.named_children else None
        arguments_node = None

        if expression is not None and expression.type == 'call_expression':
            arguments_node = expression.child_by_field_name('arguments')
            expression = expression.child_by_field_name('function')

        name = node_text(expression)
        if expression is not None and expression.type == 'member_expression':
            name = node_text(expression.child_by_field_name('property'))

        occurrence = DecoratorOccurrence(name=name, position=decorator.start_byte)
        if arguments_node is not None:
            for arg in arguments_node.named_children:
                if arg.type == 'array':
                    occurrence.arguments.extend(literal_value(a) for a in arg.named_children)
                elif arg.type == 'new_expression':
                    occurrence.constructed.append(node_text(arg.child_by_field_name('constructor')))
                else:
                    occurrence.arguments.append(literal_value(arg))

            for new_expr in find_nodes(arguments_node, ('new_expression',)):
                class_name = node_text(new_expr.child_by_field_name('constructor'))
                if class_name and class_name not in occurrence.constructed:
                    occurrence.constructed.append(class_name)
        return occurrence

    def _collect_imports(self, root: Node) -> List[ImportedName]:
        imports = []
        for statement in root.children:
            if statement.type != 'import_statement':
                continue
            source = statement.child_by_field_name('source')
            if source is None:
                continue
            path = literal_value(source)

            for specifier in find_nodes(statement, ('import_specifier',)):
                alias = specifier.child_by_field_name('alias')
                name = specifier.child_by_field_name('name')
                imports.append(ImportedName(name=node_text(alias or name), path=path))
        return imports
