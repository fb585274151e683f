#!/usr/bin/env python3
"""
Permission Checker

Cross-references an XML policy document with the controllers of an uploaded
NestJS project and reports:

- redundantRule: permissions the code implements that the policy never declares
- lackRule: rules the policy declares that no controller implements

Pipeline (synchronous, one controller at a time in archive entry order):

    XML  -> policy_parser        -> PolicyRules
    zip  -> archive_extractor    -> controller files
         -> controller_facts     -> roles / actions / policies per method
         -> cross_file_resolver  -> service + policy sources
         -> resolution_oracle    -> entities + constraints
         -> permission_assembler -> ImplementedPermissions
    both -> reconciliation       -> ReconciliationResult
"""

import argparse
import dataclasses
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from permcheck.ai_client import AIClient, print_ai_usage_summary
from permcheck.analysis.controller_facts import ControllerFactExtractor, ControllerFacts
from permcheck.analysis.cross_file_resolver import CrossFileResolver
from permcheck.analysis.permission_assembler import (
    CompletenessPolicy,
    assemble_permissions,
    base_path_mappings,
    constraint_mappings,
    entity_mappings,
)
from permcheck.analysis.reconciliation import reconcile
from permcheck.analysis.resolution_oracle import ResolutionOracle, create_oracle
from permcheck.archive_extractor import ExtractionResult, extract_project_archive
from permcheck.config import CheckerConfig
from permcheck.exceptions import PermissionCheckError
from permcheck.permission_schema import ImplementedPermission, PolicyRule, ReconciliationResult
from permcheck.policy_parser import load_policy_rules

logger = logging.getLogger(__name__)

# One lock per extraction directory, shared by every checker in the process
_extraction_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def extraction_lock(extract_path: str) -> threading.Lock:
    """Lock guarding one extraction directory from extract through analysis"""
    key = os.path.realpath(extract_path)
    with _registry_lock:
        if key not in _extraction_locks:
            _extraction_locks[key] = threading.Lock()
        return _extraction_locks[key]


@dataclass
class ControllerSummary:
    """What one controller contributed to a run"""
    path: str
    class_name: str = ''
    base_path: str = ''
    methods: List[str] = field(default_factory=list)
    service: str = ''
    policies: List[str] = field(default_factory=list)
    permissions: List[ImplementedPermission] = field(default_factory=list)


@dataclass
class CheckRun:
    """
    State of a single check

    Created fresh by every PermissionChecker.run() call, so concurrent or
    repeated checks never share accumulators.
    """
    rules: List[PolicyRule] = field(default_factory=list)
    permissions: List[ImplementedPermission] = field(default_factory=list)
    controllers: List[ControllerSummary] = field(default_factory=list)
    unresolved: List[Dict[str, str]] = field(default_factory=list)
    extraction: Optional[ExtractionResult] = None
    result: Optional[ReconciliationResult] = None
    oracle_name: str = ''

    def note(self, controller: str, kind: str, detail: str):
        """Record a resolution miss (service, policy, entity, constraint, oracle)"""
        self.unresolved.append({'controller': controller, 'kind': kind, 'detail': detail})


class PermissionChecker:
    """Runs role-permission consistency checks"""

    def __init__(self,
                 config: Optional[CheckerConfig] = None,
                 oracle: Optional[ResolutionOracle] = None,
                 ai_client=None):
        """
        Initialize checker

        Args:
            config: Checker configuration (defaults if None)
            oracle: Resolution oracle (built from config if None)
            ai_client: AI client for the LLM oracle (created on demand if None)
        """
        self.config = config or CheckerConfig()
        self.debug = self.config.debug

        if oracle is None:
            if self.config.oracle == 'llm' and ai_client is None:
                ai_client = AIClient(
                    use_bedrock=self.config.use_bedrock,
                    timeout=self.config.ai_timeout_seconds,
                    debug=self.debug,
                )
            oracle = create_oracle(
                self.config.oracle,
                ai_client=ai_client,
                max_tokens=self.config.ai_max_tokens,
                temperature=self.config.ai_temperature,
                debug=self.debug,
            )
        self.oracle = oracle
        self.completeness = CompletenessPolicy(self.config.completeness)
        self.fact_extractor = ControllerFactExtractor(debug=self.debug)

        self._lock = extraction_lock(self.config.extract_path)

    def check(self, xml_text, zip_bytes: bytes) -> ReconciliationResult:
        """
        Compare a policy document with a project archive

        Args:
            xml_text: XML policy document (str or bytes)
            zip_bytes: Zip archive of a NestJS project

        Returns:
            ReconciliationResult

        Raises:
            PolicyParseError: Malformed XML
            ArchiveExtractionError: Corrupt archive or filesystem failure
        """
        return self.run(xml_text, zip_bytes).result

    def run(self, xml_text, zip_bytes: bytes) -> CheckRun:
        """Like check(), but returns the full CheckRun for reporting"""
        run = CheckRun(oracle_name=self.oracle.name)

        # Malformed XML fails before anything touches the filesystem
        run.rules = load_policy_rules(xml_text)
        logger.info(f"[CHECKER] {len(run.rules)} declared rules")

        with self._lock:
            run.extraction = extract_project_archive(
                zip_bytes,
                self.config.extract_path,
                excluded_dirs=self.config.excluded_dirs,
            )
            resolver = CrossFileResolver(run.extraction.extract_path, debug=self.debug)

            for controller_path in run.extraction.controller_files:
                self._check_controller(controller_path, resolver, run)

        run.result = reconcile(run.rules, run.permissions)
        logger.info(
            f"[CHECKER] {len(run.permissions)} implemented permissions, "
            f"{len(run.result.redundant_rules)} redundant, {len(run.result.lack_rules)} lacking"
        )
        return run

    # ------------------------------------------------------------------
    # Per-controller analysis
    # ------------------------------------------------------------------

    def _check_controller(self, controller_path: str, resolver: CrossFileResolver, run: CheckRun):
        label = resolver.file_tool.relative_path(controller_path)
        source = resolver.file_tool.read_file(controller_path)
        if source is None:
            run.note(label, 'controller', 'Controller file could not be read')
            return

        facts = self.fact_extractor.extract(source)
        summary = ControllerSummary(
            path=label,
            class_name=facts.class_name,
            base_path=facts.base_path,
            methods=list(facts.methods),
            policies=facts.policy_names,
        )
        run.controllers.append(summary)

        if not facts.methods:
            logger.debug(f"[CHECKER] {label}: no methods")
            return

        if self.config.resource_strategy == 'base_path':
            resources = base_path_mappings(facts)
        else:
            resources = self._entity_resources(label, source, controller_path, facts, resolver, run, summary)

        conditions = self._conditions(label, source, controller_path, facts, resolver, run)

        summary.permissions = assemble_permissions(
            facts.roles, facts.actions, resources, conditions, policy=self.completeness,
        )
        run.permissions.extend(summary.permissions)

        if self.debug:
            logger.debug(f"[CHECKER] {label}: {len(summary.permissions)} permissions")

    def _entity_resources(self, label: str, source: str, controller_path: str, facts: ControllerFacts,
                          resolver: CrossFileResolver, run: CheckRun,
                          summary: ControllerSummary) -> List[Dict[str, str]]:
        """controller method -> entity via the injected service"""
        service = resolver.resolve_service(source, controller_path, facts=facts)
        summary.service = service.service_name
        if not service.success:
            run.note(label, 'service', service.error or 'Service not found')
            return []
        if not service.methods:
            return []

        try:
            entities = self.oracle.resolve_entity_names(service.methods, service.content)
        except Exception as e:
            logger.warning(f"[ORACLE] Entity resolution failed for {label}: {e}")
            run.note(label, 'oracle', f"Entity resolution failed: {e}")
            return []

        resolved = {method: entity for method, entity in entities.items() if entity}
        missing = [m for m in service.methods if m not in resolved]
        if missing:
            run.note(label, 'entity', f"No entity for {service.service_name}.{', '.join(missing)}")

        return entity_mappings(facts, service.service_property, resolved)

    def _conditions(self, label: str, source: str, controller_path: str, facts: ControllerFacts,
                    resolver: CrossFileResolver, run: CheckRun) -> List[Dict[str, Optional[str]]]:
        """controller method -> constraint ("" without a policy marker, None when unresolved)"""
        policy_names = facts.policy_names
        if not policy_names:
            return constraint_mappings(facts, {})

        policies = resolver.resolve_policies(source, controller_path, facts=facts)
        found = [name for name in policy_names if name in policies.resolved_names]
        not_found = [name for name in policy_names if name not in found]
        if not_found:
            run.note(label, 'policy', f"Cannot find policy content for {', '.join(not_found)}")

        constraints: Dict[str, str] = {}
        if found:
            references = [entry for entry in facts.policies if any(entry.values())]
            try:
                answers = self.oracle.resolve_constraints(found, references, policies.content)
            except Exception as e:
                logger.warning(f"[ORACLE] Constraint resolution failed for {label}: {e}")
                run.note(label, 'oracle', f"Constraint resolution failed: {e}")
                answers = {}
            constraints = {name: value for name, value in answers.items() if value}

            blank = [name for name in found if name not in constraints]
            if blank:
                run.note(label, 'constraint', f"No constraint for {', '.join(blank)}")

        return constraint_mappings(facts, constraints)


def check_project_permissions(xml_text, zip_bytes: bytes,
                              config: Optional[CheckerConfig] = None,
                              oracle: Optional[ResolutionOracle] = None) -> Dict[str, Any]:
    """
    One-shot check returning {"redundantRule": [...], "lackRule": [...]}
    """
    return PermissionChecker(config=config, oracle=oracle).check(xml_text, zip_bytes).to_dict()


# ============================================================================
# CLI
# ============================================================================

def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='permcheck',
        description='Compare an XML policy document with the permissions a NestJS project implements',
    )
    parser.add_argument('policy', help='XML policy document')
    parser.add_argument('archive', help='Zip archive of the NestJS project')
    parser.add_argument('--config', help='YAML config file')
    parser.add_argument('--oracle', choices=['static', 'llm'], help='Entity/constraint resolution oracle')
    parser.add_argument('--resource-strategy', choices=['entity', 'base_path'],
                        help='How the resource of a permission is derived')
    parser.add_argument('--completeness', choices=['all_facts', 'condition_optional'],
                        help='Which facts a method needs to count as implemented')
    parser.add_argument('--output', '-o', help='Write a full JSON report to this path')
    parser.add_argument('--debug', action='store_true', help='Enable debug output')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        config = CheckerConfig.load(args.config)
        overrides = {
            'oracle': args.oracle,
            'resource_strategy': args.resource_strategy,
            'completeness': args.completeness,
            'debug': args.debug or None,
        }
        config = dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})

        with open(args.policy, 'rb') as f:
            xml_text = f.read()
        with open(args.archive, 'rb') as f:
            zip_bytes = f.read()

        run = PermissionChecker(config=config).run(xml_text, zip_bytes)
    except (PermissionCheckError, OSError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    print(json.dumps(run.result.to_dict(), indent=2))

    if args.output:
        from permcheck.report_utils import build_permission_report, format_metrics

        report = build_permission_report(
            run.result, run,
            project_name=os.path.splitext(os.path.basename(args.archive))[0],
        )
        with open(args.output, 'w') as f:
            json.dump(report, f, indent=2)
        print(f"✓ Report saved: {args.output}", file=sys.stderr)
        print(format_metrics(report['metrics']), file=sys.stderr)

    if config.oracle == 'llm':
        print_ai_usage_summary()
    return 0


if __name__ == '__main__':
    sys.exit(main())
