#!/usr/bin/env python3
"""
Report Utilities - Permission report building and formatting

Wraps a ReconciliationResult in a report with tool metadata, coverage metrics
and the resolution misses of the run.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

from permcheck.analysis.reconciliation import matched_count
from permcheck.permission_schema import ImplementedPermission, PolicyRule, ReconciliationResult

TOOL_NAME = 'permcheck'
TOOL_VERSION = '0.1.0'


def build_metrics(rules: Sequence[PolicyRule],
                  permissions: Sequence[ImplementedPermission],
                  result: ReconciliationResult) -> Dict[str, Any]:
    """
    Count declared, implemented, matched, redundant and lacking permissions

    coverage is the percentage of declared rules that some controller
    implements (0 when nothing is declared).
    """
    declared = len(rules)
    matched = matched_count(permissions, rules)
    return {
        'declared': declared,
        'implemented': len(permissions),
        'matched': matched,
        'redundant': len(result.redundant_rules),
        'lacking': len(result.lack_rules),
        'coverage': round(matched * 100 / declared, 1) if declared else 0.0,
    }


def build_controller_section(controllers) -> List[Dict[str, Any]]:
    """One entry per analyzed controller"""
    return [
        {
            'file': c.path,
            'class': c.class_name,
            'basePath': c.base_path,
            'methods': c.methods,
            'service': c.service,
            'policies': c.policies,
            'permissions': [p.as_dict() for p in c.permissions],
        }
        for c in controllers
    ]


def build_permission_report(result: ReconciliationResult, run, project_name: str = None) -> Dict[str, Any]:
    """
    Build the full permission report

    Args:
        result: Reconciliation result to report
        run: CheckRun that produced it
        project_name: Optional project name

    Returns:
        Report dict (JSON-serializable)
    """
    return {
        'bomFormat': 'PermcheckPermissionReport',
        'specVersion': '1.0',
        'version': 1,
        'serialNumber': f'urn:uuid:{uuid.uuid4()}',
        'metadata': {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'tools': [
                {
                    'name': TOOL_NAME,
                    'version': TOOL_VERSION,
                    'oracle': run.oracle_name,
                }
            ],
            'component': {
                'type': 'application',
                'name': project_name or 'Unknown Project',
            },
        },
        'result': result.to_dict(),
        'metrics': build_metrics(run.rules, run.permissions, result),
        'controllers': build_controller_section(run.controllers),
        'unresolved': list(run.unresolved),
    }


def format_metrics(metrics: Dict[str, Any]) -> str:
    """Single-line summary for console output"""
    return (
        f"Declared: {metrics['declared']}  Implemented: {metrics['implemented']}  "
        f"Matched: {metrics['matched']}  Redundant: {metrics['redundant']}  "
        f"Lacking: {metrics['lacking']}  Coverage: {metrics['coverage']}%"
    )
