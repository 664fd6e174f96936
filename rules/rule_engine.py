# =============================================================================
# Periksa PHP Code Analyzer - AST-based Security and Quality Analysis
# =============================================================================
#
# Author: Keith Pachulski
# Company: Red Cell Security, LLC
# Email: keith@redcellsecurity.org
# Website: www.redcellsecurity.org
#
# Copyright (c) 2025 Keith Pachulski. All rights reserved.
#
# License: This software is licensed under the MIT License.
#          You are free to use, modify, and distribute this software
#          in accordance with the terms of the license.
#
# Purpose: This script is part of the Periksa PHP Code Analyzer, which inspects
#          PHP source code through its abstract syntax tree to find security
#          vulnerabilities and quality defects. The tool caches parsed trees,
#          runs pluggable analyzers and OWASP-classified security rules over
#          every file, scores findings with a CVSS-like model, and aggregates
#          deduplicated per-file and project-wide reports.
#
# DISCLAIMER: This software is provided "as-is," without warranty of any kind,
#             express or implied, including but not limited to the warranties
#             of merchantability, fitness for a particular purpose, and non-infringement.
#             In no event shall the authors or copyright holders be liable for any claim,
#             damages, or other liability, whether in an action of contract, tort, or otherwise,
#             arising from, out of, or in connection with the software or the use or other dealings
#             in the software.
#
# =============================================================================

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional

from core import Issue, RuleConfigError, SEVERITY_LEVELS
from language_modules.base_analyzer import (
    BaseRule, BaseSecurityRule, OwaspCategory, RuleContext, RISK_PRIORITY
)
from parsing.nodes import Node

logger = logging.getLogger(__name__)


class RuleExecutionStatus(Enum):
    """Status of rule execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RuleExecutionResult:
    """
    Result of executing one rule against one node.

    Failed executions keep the error message so the caller can record it
    without interrupting the remaining rules.
    """
    rule_id: str
    status: RuleExecutionStatus
    issues: List[Issue] = field(default_factory=list)
    execution_time: float = 0.0
    error_message: Optional[str] = None

    @property
    def is_successful(self) -> bool:
        return self.status == RuleExecutionStatus.SUCCESS


@dataclass
class RuleEngineStats:
    """Counters for one run of a rule engine, mergeable into totals."""
    rules_executed: int = 0
    issues_found: int = 0
    rule_failures: int = 0
    execution_time: float = 0.0
    issues_by_severity: Dict[str, int] = field(default_factory=dict)
    executions_by_rule: Dict[str, int] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    def record(self, result: RuleExecutionResult) -> None:
        self.rules_executed += 1
        self.execution_time += result.execution_time
        self.executions_by_rule[result.rule_id] = self.executions_by_rule.get(result.rule_id, 0) + 1
        if result.status == RuleExecutionStatus.FAILED:
            self.rule_failures += 1
            self.failures.append(f"{result.rule_id}: {result.error_message}")
        for issue in result.issues:
            self.issues_found += 1
            self.issues_by_severity[issue.severity] = self.issues_by_severity.get(issue.severity, 0) + 1

    def merge(self, other: 'RuleEngineStats') -> None:
        self.rules_executed += other.rules_executed
        self.issues_found += other.issues_found
        self.rule_failures += other.rule_failures
        self.execution_time += other.execution_time
        for severity, count in other.issues_by_severity.items():
            self.issues_by_severity[severity] = self.issues_by_severity.get(severity, 0) + count
        for rule_id, count in other.executions_by_rule.items():
            self.executions_by_rule[rule_id] = self.executions_by_rule.get(rule_id, 0) + count
        self.failures.extend(other.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rules_executed': self.rules_executed,
            'issues_found': self.issues_found,
            'rule_failures': self.rule_failures,
            'execution_time': self.execution_time,
            'issues_by_severity': dict(self.issues_by_severity),
            'executions_by_rule': dict(self.executions_by_rule)
        }


class RuleValidator:
    """
    Validates rule definitions before registration.

    Ensures rules carry an identifier, a known severity, node types to
    dispatch on and, for security rules, a valid OWASP and CWE mapping.
    """

    VALID_OWASP_CATEGORIES = {category.value for category in OwaspCategory}

    def __init__(self):
        self.validation_errors: List[str] = []
        self.validation_warnings: List[str] = []

    def validate_rule(self, rule: BaseRule) -> bool:
        """
        Validate a rule definition and its current configuration.

        Args:
            rule: Rule object to validate

        Returns:
            bool: True if rule is valid
        """
        self.validation_errors = []
        self.validation_warnings = []

        self._validate_rule_id(rule)

        if rule.severity not in SEVERITY_LEVELS:
            self.validation_errors.append(f"Invalid severity: {rule.severity}. Must be one of {SEVERITY_LEVELS}")

        if not rule.supported_node_types:
            self.validation_errors.append("Rule must declare at least one supported node type")

        if isinstance(rule, BaseSecurityRule):
            self._validate_security_metadata(rule)

        self.validation_errors.extend(rule.validate_config(rule.config))
        return not self.validation_errors

    def _validate_rule_id(self, rule: BaseRule) -> None:
        rule_id = rule.rule_id
        if not isinstance(rule_id, str) or not rule_id.strip():
            self.validation_errors.append("Rule ID must be a non-empty string")
        elif len(rule_id) > 50:
            self.validation_errors.append("Rule ID must be 50 characters or less")
        elif not rule_id.replace('_', '').replace('-', '').isalnum():
            self.validation_warnings.append("Rule ID should contain only alphanumeric characters, hyphens, and underscores")

    def _validate_security_metadata(self, rule: BaseSecurityRule) -> None:
        if rule.owasp_category.value not in self.VALID_OWASP_CATEGORIES:
            self.validation_errors.append(f"Invalid OWASP category: {rule.owasp_category}")
        if not rule.vulnerability_type:
            self.validation_errors.append("Security rules must declare a vulnerability type")
        if not all(isinstance(cwe_id, int) and cwe_id > 0 for cwe_id in rule.cwe_ids):
            self.validation_errors.append("CWE identifiers must be positive integers")
        if not 0.0 <= rule.false_positive_probability <= 1.0:
            self.validation_errors.append("false_positive_probability must be between 0 and 1")

    def get_validation_report(self) -> Dict[str, List[str]]:
        return {
            'errors': list(self.validation_errors),
            'warnings': list(self.validation_warnings)
        }


class RuleEngine:
    """
    Dispatches nodes to the rules that apply to them.

    Rules for a node type run in descending priority, ties in registration
    order. The per-type dispatch table is rebuilt lazily after the rule set
    changes. A failing rule is logged and recorded; the other rules still run.
    """

    def __init__(self):
        self.rules: Dict[str, BaseRule] = {}
        self.rejected_rules: Dict[str, List[str]] = {}
        self.validator = RuleValidator()
        self._registration_order: Dict[str, int] = {}
        self._next_registration = 0
        self._dispatch_table: Dict[str, List[BaseRule]] = {}
        self._stats = RuleEngineStats()
        self._stats_lock = threading.Lock()

    def add_rule(self, rule: BaseRule, config: Optional[Dict[str, Any]] = None) -> bool:
        """
        Register a rule, optionally applying configuration first.

        A rule whose configuration is rejected stays disabled and is not
        registered.

        Args:
            rule: Rule to add
            config (dict, optional): Overrides for the rule's defaults

        Returns:
            bool: True if rule was added successfully
        """
        rule_id = rule.rule_id or rule.__class__.__name__

        try:
            if config:
                rule.configure(config)
        except RuleConfigError as e:
            rule.set_enabled(False)
            self.rejected_rules[rule_id] = e.errors
            logger.error(f"Rule {rule_id} rejected: {str(e)}")
            return False

        if not self.validator.validate_rule(rule):
            report = self.validator.get_validation_report()
            rule.set_enabled(False)
            self.rejected_rules[rule_id] = report['errors']
            logger.error(f"Rule validation failed for {rule_id}: {report['errors']}")
            return False

        for warning in self.validator.get_validation_report()['warnings']:
            logger.warning(f"Rule {rule_id}: {warning}")

        if rule_id in self.rules:
            logger.warning(f"Rule {rule_id} already exists, replacing...")
        else:
            self._registration_order[rule_id] = self._next_registration
            self._next_registration += 1

        self.rules[rule_id] = rule
        self.rejected_rules.pop(rule_id, None)
        self._dispatch_table.clear()
        logger.debug(f"Added rule: {rule_id} (priority {rule.priority})")
        return True

    def remove_rule(self, rule_id: str) -> bool:
        if rule_id not in self.rules:
            return False
        del self.rules[rule_id]
        del self._registration_order[rule_id]
        self._dispatch_table.clear()
        logger.debug(f"Removed rule: {rule_id}")
        return True

    def get_rule(self, rule_id: str) -> Optional[BaseRule]:
        return self.rules.get(rule_id)

    def get_rules(self) -> List[BaseRule]:
        return sorted(self.rules.values(), key=self._sort_key)

    def get_enabled_rules(self) -> List[BaseRule]:
        return [rule for rule in self.get_rules() if rule.is_enabled()]

    def enable_rule(self, rule_id: str) -> bool:
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        rule.set_enabled(True)
        return True

    def disable_rule(self, rule_id: str) -> bool:
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        rule.set_enabled(False)
        return True

    def rule_priority(self, rule: BaseRule) -> int:
        return rule.priority

    def _sort_key(self, rule: BaseRule):
        return (-self.rule_priority(rule), self._registration_order.get(rule.rule_id, 0))

    def rules_for_node_type(self, node_type: str) -> List[BaseRule]:
        """Rules applying to a node type, in evaluation order."""
        rules = self._dispatch_table.get(node_type)
        if rules is None:
            rules = [rule for rule in self.get_rules() if rule.applies_to(node_type)]
            self._dispatch_table[node_type] = rules
        return rules

    def validate_node(self, node: Node, context: RuleContext,
                      stats: Optional[RuleEngineStats] = None) -> List[Issue]:
        """
        Run every enabled, applicable rule against a node.

        Args:
            node (Node): Node being visited
            context (RuleContext): File and traversal context
            stats (RuleEngineStats, optional): Per-run counters to update

        Returns:
            list: Issues from all rules, in evaluation order
        """
        issues = []
        for rule in self.rules_for_node_type(node.type):
            if not rule.is_enabled():
                continue
            result = self.execute_rule(rule, node, context)
            if stats is not None:
                stats.record(result)
            issues.extend(result.issues)
        return issues

    def execute_rule(self, rule: BaseRule, node: Node, context: RuleContext) -> RuleExecutionResult:
        start_time = time.perf_counter()
        try:
            issues = rule.validate(node, context) or []
        except Exception as e:
            logger.error(f"Error executing rule {rule.rule_id} on {context.file_path}:{node.start_line}: {str(e)}")
            return RuleExecutionResult(
                rule_id=rule.rule_id,
                status=RuleExecutionStatus.FAILED,
                execution_time=time.perf_counter() - start_time,
                error_message=str(e)
            )

        return RuleExecutionResult(
            rule_id=rule.rule_id,
            status=RuleExecutionStatus.SUCCESS,
            issues=list(issues),
            execution_time=time.perf_counter() - start_time
        )

    def merge_stats(self, stats: RuleEngineStats) -> None:
        with self._stats_lock:
            self._stats.merge(stats)

    def get_statistics(self) -> Dict[str, Any]:
        enabled_rules = self.get_enabled_rules()
        with self._stats_lock:
            execution = self._stats.to_dict()
        return {
            'total_rules': len(self.rules),
            'enabled_rules': len(enabled_rules),
            'rule_ids': [rule.rule_id for rule in self.get_rules()],
            'rejected_rules': dict(self.rejected_rules),
            'execution': execution
        }

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self._stats = RuleEngineStats()


class SecurityRuleEngine(RuleEngine):
    """
    Rule engine for security rules.

    Evaluation priority comes from each rule's risk level, so the most
    dangerous checks run first on every node.
    """

    RISK_WEIGHTS = {
        'critical': 100,
        'high': 50,
        'medium': 25,
        'low': 10,
        'info': 5
    }

    def add_rule(self, rule: BaseRule, config: Optional[Dict[str, Any]] = None) -> bool:
        if not isinstance(rule, BaseSecurityRule):
            logger.error(f"Rule {rule.rule_id} is not a security rule")
            return False
        return super().add_rule(rule, config)

    def rule_priority(self, rule: BaseRule) -> int:
        return RISK_PRIORITY.get(rule.severity, 0)

    def get_rules_by_owasp_category(self, category: str) -> List[BaseSecurityRule]:
        return [rule for rule in self.get_rules() if rule.owasp_category.value == category]

    def get_rules_by_vulnerability_type(self, vulnerability_type: str) -> List[BaseSecurityRule]:
        return [rule for rule in self.get_rules() if rule.vulnerability_type == vulnerability_type]

    def compliance_score(self, issues: List[Issue]) -> Dict[str, Any]:
        """
        Score a set of security issues against the registered rule set.

        Args:
            issues (list): Security issues for one file or project

        Returns:
            dict: Score (0-100), letter grade, risk total and OWASP coverage
        """
        security_issues = [issue for issue in issues if issue.category == 'security']
        total_risk = sum(self.RISK_WEIGHTS.get(issue.severity, 0) for issue in security_issues)
        score = max(0, 100 - total_risk)

        owasp_findings: Dict[str, int] = {}
        for issue in security_issues:
            if issue.owasp_category:
                owasp_findings[issue.owasp_category] = owasp_findings.get(issue.owasp_category, 0) + 1

        covered = sorted({rule.owasp_category.value for rule in self.get_enabled_rules()})

        return {
            'score': score,
            'grade': self._grade(score, total_risk),
            'total_risk': total_risk,
            'issues': len(security_issues),
            'owasp_findings': owasp_findings,
            'owasp_categories_covered': covered,
            'owasp_coverage': len(covered) / len(OwaspCategory) * 100
        }

    @staticmethod
    def _grade(score: int, total_risk: int) -> str:
        if score >= 95 and total_risk == 0:
            return 'A+'
        if score >= 90 and total_risk < 50:
            return 'A'
        if score >= 85 and total_risk < 100:
            return 'B+'
        if score >= 80 and total_risk < 150:
            return 'B'
        if score >= 70 and total_risk < 200:
            return 'C+'
        if score >= 60 and total_risk < 300:
            return 'C'
        if score >= 50:
            return 'D'
        return 'F'
