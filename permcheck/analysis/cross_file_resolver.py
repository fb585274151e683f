#!/usr/bin/env python3
"""
Cross-File Resolver

Finds the service file and policy file a controller depends on.

Resolution runs two ordered strategy lists:

1. Candidate locators produce file paths, most specific first:
   import path, naming convention, tree scan.
2. Class matchers decide whether a candidate defines the wanted class(es):
   exact `class Name` first, case-insensitive second.

Every matcher is tried against every candidate before the next matcher is
used, so an exact match anywhere beats a case-insensitive match earlier in
the candidate list.

"Not found" is never an exception; callers get a result with success=False,
the unresolved names and the paths that were checked.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from permcheck.analysis.controller_facts import ControllerFactExtractor, ControllerFacts
from permcheck.archive_extractor import SOURCE_ROOT
from permcheck.file_tool import FileTool

logger = logging.getLogger(__name__)

SERVICE_KIND = 'service'
POLICY_KIND = 'policy'

# Import specifiers ending in these already name a file
SOURCE_EXTENSIONS = ('.ts', '.js')


@dataclass
class LookupContext:
    """Everything a locator needs to propose candidate files"""
    project_root: str
    kind: str
    class_names: List[str]
    import_path: str = ''
    controller_dir: Optional[str] = None
    module_name: str = ''

    @property
    def source_dir(self) -> str:
        return os.path.join(self.project_root, SOURCE_ROOT)

    @property
    def import_file(self) -> str:
        """Import path with a .ts extension ('./account.service' -> './account.service.ts')"""
        if self.import_path and not self.import_path.endswith(SOURCE_EXTENSIONS):
            return self.import_path + '.ts'
        return self.import_path


@dataclass
class ServiceResolution:
    """Result of locating the service a controller delegates to"""
    success: bool
    service_name: str = ''
    service_property: str = ''
    import_path: str = ''
    path: Optional[str] = None
    content: str = ''
    methods: List[str] = field(default_factory=list)
    checked_paths: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class PolicyGroupResolution:
    """Result of locating one import group of policy classes"""
    import_path: str
    names: List[str]
    success: bool = False
    path: Optional[str] = None
    content: str = ''
    checked_paths: List[str] = field(default_factory=list)


@dataclass
class PolicyResolution:
    """Policy groups of one controller"""
    groups: List[PolicyGroupResolution] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return any(g.success for g in self.groups)

    @property
    def content(self) -> str:
        return '\n\n'.join(g.content for g in self.groups if g.success)

    @property
    def resolved_names(self) -> List[str]:
        return [n for g in self.groups if g.success for n in g.names]

    @property
    def unresolved_names(self) -> List[str]:
        return [n for g in self.groups if not g.success for n in g.names]


# ============================================================================
# Naming helpers
# ============================================================================

def to_kebab_case(name: str) -> str:
    """TransactionHistory -> transaction-history"""
    return re.sub(r'(?<!^)(?=[A-Z])', '-', name).lower()


def module_name_from_base_path(base_path: str) -> str:
    """First segment of the @Controller path: 'transactions/teller' -> 'transactions'"""
    parts = [p for p in base_path.strip('/').split('/') if p]
    return parts[0] if parts else ''


def is_service_file(file_name: str) -> bool:
    return file_name.endswith('.service.ts') or ('service' in file_name and file_name.endswith('.ts'))


def is_policy_file(file_name: str) -> bool:
    return file_name.endswith('.policy.ts') or ('polic' in file_name and file_name.endswith('.ts'))


# ============================================================================
# Candidate locators
# ============================================================================

def locate_by_import_path(ctx: LookupContext) -> List[str]:
    """Resolve the import specifier relative to the controller or the src/ alias"""
    import_file = ctx.import_file
    if not import_file:
        return []

    candidates = []
    if import_file.startswith('./') or import_file.startswith('../'):
        if ctx.controller_dir:
            candidates.append(os.path.normpath(os.path.join(ctx.controller_dir, import_file)))
        stripped = import_file[2:] if import_file.startswith('./') else import_file[3:]
        if ctx.module_name:
            candidates.append(os.path.join(ctx.source_dir, ctx.module_name, stripped))
        candidates.append(os.path.join(ctx.source_dir, stripped))
    elif import_file.startswith('@/'):
        candidates.append(os.path.join(ctx.source_dir, import_file[2:]))
    elif import_file.startswith(SOURCE_ROOT + '/'):
        candidates.append(os.path.join(ctx.project_root, import_file))
    else:
        candidates.append(os.path.join(ctx.source_dir, import_file))
        candidates.append(os.path.join(ctx.project_root, import_file))
    return candidates


def locate_by_naming_convention(ctx: LookupContext) -> List[str]:
    """Conventional NestJS locations derived from the module and class names"""
    candidates = []
    file_name = os.path.basename(ctx.import_file) if ctx.import_file else ''
    module = ctx.module_name
    src = ctx.source_dir

    if ctx.kind == SERVICE_KIND:
        if module:
            candidates.append(os.path.join(src, module, f'{module}.service.ts'))
            candidates.append(os.path.join(src, module, 'services', f'{module}.service.ts'))
            if file_name:
                candidates.append(os.path.join(src, module, 'services', file_name))
        if file_name:
            candidates.append(os.path.join(src, 'services', file_name))
        for class_name in ctx.class_names:
            stem = to_kebab_case(re.sub(r'Service$', '', class_name))
            if module:
                candidates.append(os.path.join(src, module, f'{stem}.service.ts'))
            candidates.append(os.path.join(src, stem, f'{stem}.service.ts'))
            candidates.append(os.path.join(src, f'{stem}.service.ts'))
    else:
        if module:
            for folder in ('policies', 'policy'):
                candidates.append(os.path.join(src, module, folder, f'{module}.policy.ts'))
                if file_name:
                    candidates.append(os.path.join(src, module, folder, file_name))
            candidates.append(os.path.join(src, module, f'{module}.policy.ts'))
        if file_name:
            candidates.append(os.path.join(src, 'policies', file_name))
    return candidates


def locate_by_tree_scan(ctx: LookupContext) -> List[str]:
    """Every file in src/ that follows the service or policy naming convention"""
    if not os.path.isdir(ctx.source_dir):
        return []
    predicate = is_service_file if ctx.kind == SERVICE_KIND else is_policy_file
    return FileTool(ctx.source_dir).find_files_matching(predicate)


CANDIDATE_LOCATORS: List[Callable[[LookupContext], List[str]]] = [
    locate_by_import_path,
    locate_by_naming_convention,
    locate_by_tree_scan,
]


# ============================================================================
# Class matchers
# ============================================================================

def exact_class_match(content: str, class_name: str) -> bool:
    return re.search(rf'\bclass\s+{re.escape(class_name)}\b', content) is not None


def case_insensitive_class_match(content: str, class_name: str) -> bool:
    return re.search(rf'\bclass\s+{re.escape(class_name)}\b', content, re.IGNORECASE) is not None


CLASS_MATCHERS: List[Callable[[str, str], bool]] = [
    exact_class_match,
    case_insensitive_class_match,
]


# ============================================================================
# Resolver
# ============================================================================

class CrossFileResolver:
    """Locates service and policy sources for controllers in one extracted project"""

    def __init__(self, project_root: str,
                 locators: Optional[List[Callable[[LookupContext], List[str]]]] = None,
                 matchers: Optional[List[Callable[[str, str], bool]]] = None,
                 debug: bool = False):
        """
        Args:
            project_root: Extraction directory (contains src/)
            locators: Candidate locator strategies in priority order
            matchers: Class matcher strategies in priority order
            debug: Enable debug output
        """
        self.project_root = project_root
        self.locators = locators if locators is not None else CANDIDATE_LOCATORS
        self.matchers = matchers if matchers is not None else CLASS_MATCHERS
        self.debug = debug
        self.file_tool = FileTool(project_root)
        self.fact_extractor = ControllerFactExtractor(debug=debug)
        self._content_cache: Dict[str, Optional[str]] = {}

    def resolve_service(self, controller_source: str,
                        controller_path: Optional[str] = None,
                        facts: Optional[ControllerFacts] = None) -> ServiceResolution:
        """
        Locate the constructor-injected service and the methods the controller calls on it

        Args:
            controller_source: Controller file text
            controller_path: Controller file path (enables relative import resolution)
            facts: Previously extracted facts for this source

        Returns:
            ServiceResolution (success=False when no file defines the service class)
        """
        facts = facts or self.fact_extractor.extract(controller_source)

        service_imports = {i.name: i.path for i in facts.imports if 'Service' in i.name}
        injected = [(name, type_) for name, type_ in facts.constructor_params if type_ in service_imports]
        if not injected:
            injected = [(name, type_) for name, type_ in facts.constructor_params if type_.endswith('Service')]

        if injected:
            service_property, service_name = injected[0]
        elif service_imports:
            service_property, service_name = '', next(iter(service_imports))
        else:
            return ServiceResolution(success=False, error='Cannot find any service imports')

        methods = sorted({ref.service_method for ref in facts.service_calls_for(service_property)})
        import_path = service_imports.get(service_name, '')

        ctx = LookupContext(
            project_root=self.project_root,
            kind=SERVICE_KIND,
            class_names=[service_name],
            import_path=import_path,
            controller_dir=os.path.dirname(controller_path) if controller_path else None,
            module_name=module_name_from_base_path(facts.base_path),
        )
        path, content, checked = self._locate(ctx)

        result = ServiceResolution(
            success=path is not None,
            service_name=service_name,
            service_property=service_property,
            import_path=import_path,
            path=path,
            content=content or '',
            methods=methods,
            checked_paths=checked,
        )
        if path is None:
            result.error = f"Cannot find service content for {service_name}"
            logger.warning(f"[RESOLVER] {result.error} ({len(checked)} paths checked)")
        elif self.debug:
            logger.debug(f"[RESOLVER] {service_name} -> {path} ({len(methods)} methods)")
        return result

    def resolve_policies(self, controller_source: str,
                         controller_path: Optional[str] = None,
                         facts: Optional[ControllerFacts] = None) -> PolicyResolution:
        """
        Locate policy classes imported by the controller, grouped by import path

        A group resolves only when one file defines every class in the group.
        """
        facts = facts or self.fact_extractor.extract(controller_source)

        groups: Dict[str, List[str]] = {}
        for imported in facts.imports:
            if 'Policy' in imported.name:
                groups.setdefault(imported.path, []).append(imported.name)

        if not groups:
            return PolicyResolution(error='Cannot find any policy imports')

        resolution = PolicyResolution()
        module_name = module_name_from_base_path(facts.base_path)
        for import_path, names in groups.items():
            ctx = LookupContext(
                project_root=self.project_root,
                kind=POLICY_KIND,
                class_names=names,
                import_path=import_path,
                controller_dir=os.path.dirname(controller_path) if controller_path else None,
                module_name=module_name,
            )
            path, content, checked = self._locate(ctx)
            group = PolicyGroupResolution(
                import_path=import_path,
                names=names,
                success=path is not None,
                path=path,
                content=content or '',
                checked_paths=checked,
            )
            if path is None:
                logger.warning(f"[RESOLVER] Cannot find policy content for {', '.join(names)}")
            resolution.groups.append(group)
        return resolution

    def candidate_paths(self, ctx: LookupContext) -> List[str]:
        """Ordered, deduplicated candidate paths from all locators"""
        seen = set()
        ordered = []
        for locator in self.locators:
            for path in locator(ctx):
                normalized = os.path.normpath(path)
                if normalized not in seen:
                    seen.add(normalized)
                    ordered.append(normalized)
        return ordered

    def _locate(self, ctx: LookupContext):
        """Return (path, content, checked_paths) of the first candidate matching all class names"""
        candidates = self.candidate_paths(ctx)
        for matcher in self.matchers:
            for path in candidates:
                content = self._read(path)
                if content is None:
                    continue
                if all(matcher(content, name) for name in ctx.class_names):
                    return path, content, candidates
        return None, None, candidates

    def _read(self, path: str) -> Optional[str]:
        if path not in self._content_cache:
            self._content_cache[path] = self.file_tool.read_file(path)
        return self._content_cache[path]
