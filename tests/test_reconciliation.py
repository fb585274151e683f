#!/usr/bin/env python3
"""
Test suite for reconciliation.py

Tests tuple equality and the redundant/lacking set differences.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from permcheck.analysis.reconciliation import (
    find_lacking_rules,
    find_redundant_permissions,
    matched_count,
    permission_matches_rule,
    reconcile,
)
from permcheck.permission_schema import ImplementedPermission, PolicyRule


def rule(role, action, resource, condition=''):
    return PolicyRule(role=role, action=action, resource=resource, condition=condition)


def perm(role, action, resource, condition=''):
    return ImplementedPermission(role=role, action=action, resource=resource, condition=condition)


class TestEquality:
    """Tuple equality used by both set differences"""

    @staticmethod
    def test_condition_whitespace_insensitive():
        print("\n=== Test: Whitespace-Insensitive Conditions ===")
        assert permission_matches_rule(
            rule('ADMIN', 'GET', 'account', 'user.id==account.ownerId'),
            perm('ADMIN', 'GET', 'account', ' user.id ==\n account.ownerId '),
        )
        assert not permission_matches_rule(
            rule('ADMIN', 'GET', 'account', 'user.id==account.ownerId'),
            perm('ADMIN', 'GET', 'account', 'user.id!=account.ownerId'),
        )
        print("✓ Only whitespace is ignored")

    @staticmethod
    def test_fields_case_insensitive():
        assert permission_matches_rule(rule('admin', 'get', 'Account'), perm('ADMIN', 'GET', 'account'))
        assert not permission_matches_rule(rule('ADMIN', 'GET', 'account'), perm('ADMIN', 'POST', 'account'))

    @staticmethod
    def test_condition_case_is_significant():
        assert not permission_matches_rule(rule('A', 'GET', 'x', 'a==B'), perm('A', 'GET', 'x', 'a==b'))


class TestSetDifferences:
    """Redundant = P minus R, lacking = R minus P"""

    @staticmethod
    def test_matching_sets_are_clean():
        print("\n=== Test: Matching Sets ===")
        rules = [rule('ADMIN', 'GET', 'account'), rule('USER', 'GET', 'account', 'a==b')]
        permissions = [perm('user', 'get', 'ACCOUNT', 'a == b'), perm('ADMIN', 'GET', 'account')]
        result = reconcile(rules, permissions)
        assert result.redundant_rules == []
        assert result.lack_rules == []
        assert matched_count(permissions, rules) == 2
        print("✓ No redundant or lacking rules")

    @staticmethod
    def test_differences_preserve_input_order():
        rules = [rule('A', 'GET', 'x'), rule('B', 'GET', 'x'), rule('C', 'GET', 'x')]
        permissions = [perm('Z', 'GET', 'x'), perm('B', 'GET', 'x'), perm('Y', 'GET', 'x')]

        assert [p.role for p in find_redundant_permissions(permissions, rules)] == ['Z', 'Y']
        assert [r.role for r in find_lacking_rules(permissions, rules)] == ['A', 'C']

    @staticmethod
    def test_symmetry():
        """Swapping the inputs swaps the two outputs"""
        rules = [rule('A', 'GET', 'x'), rule('B', 'PUT', 'y', 'c')]
        permissions = [perm('A', 'GET', 'x'), perm('D', 'DELETE', 'z')]

        forward = reconcile(rules, permissions)
        swapped_rules = [rule(**p.as_dict()) for p in permissions]
        swapped_permissions = [perm(**r.as_dict()) for r in rules]
        backward = reconcile(swapped_rules, swapped_permissions)

        assert [p.as_dict() for p in forward.redundant_rules] == [r.as_dict() for r in backward.lack_rules]
        assert [r.as_dict() for r in forward.lack_rules] == [p.as_dict() for p in backward.redundant_rules]

    @staticmethod
    def test_empty_inputs():
        assert reconcile([], []).to_dict() == {'redundantRule': [], 'lackRule': []}
        result = reconcile([rule('A', 'GET', 'x')], [])
        assert result.to_dict() == {
            'redundantRule': [],
            'lackRule': [{'role': 'A', 'action': 'GET', 'resource': 'x', 'condition': ''}],
        }
