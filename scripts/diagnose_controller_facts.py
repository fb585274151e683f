#!/usr/bin/env python3
"""Show what the checker extracts and resolves for one controller file"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from permcheck.analysis.controller_facts import ControllerFactExtractor
from permcheck.analysis.cross_file_resolver import CrossFileResolver
from permcheck.analysis.resolution_oracle import StaticResolutionOracle

if len(sys.argv) < 2:
    print("Usage: python scripts/diagnose_controller_facts.py <path/to/x.controller.ts> [project_root]")
    sys.exit(1)

controller_path = os.path.abspath(sys.argv[1])
if len(sys.argv) > 2:
    project_root = os.path.abspath(sys.argv[2])
else:
    # Walk up to the directory holding src/
    project_root = os.path.dirname(controller_path)
    while project_root != os.path.dirname(project_root) and os.path.basename(project_root) != 'src':
        project_root = os.path.dirname(project_root)
    project_root = os.path.dirname(project_root)

with open(controller_path, 'r', encoding='utf-8', errors='ignore') as f:
    source = f.read()

facts = ControllerFactExtractor(debug=True).extract(source)

print(f"\n{'='*80}")
print(f"Controller: {facts.class_name or '<none>'}  base path: '{facts.base_path}'")
print('='*80)

for method in facts.methods:
    action = next((e[method] for e in facts.actions if method in e), '')
    roles = next((e[method] for e in facts.roles if method in e), [])
    policy = next((e[method] for e in facts.policies if method in e), '')
    print(f"  line {facts.lines.get(method, 0):>4}  {method:<30} {action or '-':<7} "
          f"roles={roles} policy={policy or '-'}")

print(f"\nConstructor params: {facts.constructor_params}")
print(f"Service calls:")
for ref in facts.service_calls:
    print(f"  {ref.controller_method} -> this.{ref.service_property}.{ref.service_method}()")

resolver = CrossFileResolver(project_root, debug=True)
oracle = StaticResolutionOracle()

print(f"\n{'='*80}")
print(f"Resolution (project root: {project_root})")
print('='*80)

service = resolver.resolve_service(source, controller_path, facts=facts)
print(f"\nService: {service.service_name or '-'}  success={service.success}")
if service.success:
    print(f"  File: {service.path}")
    print(f"  Entities: {oracle.resolve_entity_names(service.methods, service.content)}")
else:
    print(f"  Error: {service.error}")
    for path in service.checked_paths[:20]:
        print(f"    checked {path}")

policies = resolver.resolve_policies(source, controller_path, facts=facts)
print(f"\nPolicies: resolved={policies.resolved_names} unresolved={policies.unresolved_names}")
if policies.error:
    print(f"  Error: {policies.error}")
for group in policies.groups:
    print(f"  {group.import_path}: {group.path or 'NOT FOUND'}")
if policies.success:
    print(f"  Constraints: {oracle.resolve_constraints(policies.resolved_names, facts.policies, policies.content)}")
