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
import time
from typing import List, Dict, Any, Optional, Type

from core import Analyzer, AnalyzerResult, Config, Issue
from language_modules.base_analyzer import BaseRule, RuleContext
from language_modules.php.quality_rules import PERFORMANCE_RULES, QUALITY_RULES, SYNTAX_RULES
from language_modules.php.security_rules import SECURITY_RULES
from parsing.nodes import Node
from parsing.parse_cache import ParsedFile
from parsing.traversal import NodeVisitor, TraversalContext, TraversalOptions, traverse
from rules.owasp_rules import enrich_issue
from rules.risk_scorer import RiskScorer
from rules.rule_engine import RuleEngine, RuleEngineStats, SecurityRuleEngine

logger = logging.getLogger(__name__)

PHP_EXTENSIONS = ['php', 'phtml', 'php5', 'php7', 'php8', 'inc']


class RuleVisitor(NodeVisitor):
    """Feeds every visited node to a rule engine and collects the issues."""

    def __init__(self, engine: RuleEngine, parsed_file: ParsedFile, settings: Dict[str, Any]):
        self.engine = engine
        self.parsed_file = parsed_file
        self.settings = settings
        self.issues: List[Issue] = []
        self.stats = RuleEngineStats()
        self._rule_context: Optional[RuleContext] = None

    def enter_node(self, node: Node, context: TraversalContext):
        if self._rule_context is None or self._rule_context.traversal is not context:
            self._rule_context = RuleContext(self.parsed_file, context, self.settings)
        self.issues.extend(self.engine.validate_node(node, self._rule_context, self.stats))
        return None


class RuleBasedAnalyzer(Analyzer):
    """
    Analyzer that runs a set of node rules over one traversal of the tree.

    Subclasses choose the rules, the engine type, and how analyzer settings
    translate into rule configuration.
    """

    analyzer_name = ""
    rule_classes: List[Type[BaseRule]] = []
    engine_class: Type[RuleEngine] = RuleEngine

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.settings: Dict[str, Any] = {}
        self.engine = self.engine_class()
        self.configure(self.config)

    @property
    def name(self) -> str:
        return self.analyzer_name

    @property
    def file_extensions(self) -> List[str]:
        return list(PHP_EXTENSIONS)

    def configure(self, config: Config) -> None:
        """
        Rebuild the rule set from global configuration.

        Analyzer settings supply rule defaults; 'rules.<rule_id>' entries
        override them. Rules whose configuration is invalid are rejected.
        """
        self.config = config
        self.settings = config.get_analyzer_settings(self.name)
        self.engine = self.engine_class()

        for rule_class in self.rule_classes:
            rule = rule_class()
            rule_config = self.rule_defaults(rule)
            rule_config.update(config.get_rule_config(rule.rule_id))
            self.engine.add_rule(rule, rule_config)

        logger.debug(f"{self.name} analyzer configured with {len(self.engine.get_enabled_rules())} rules")

    def rule_defaults(self, rule: BaseRule) -> Dict[str, Any]:
        """Rule configuration derived from this analyzer's settings."""
        return {}

    def add_rule(self, rule: BaseRule, config: Optional[Dict[str, Any]] = None) -> bool:
        return self.engine.add_rule(rule, config)

    def get_rules(self) -> List[BaseRule]:
        return self.engine.get_rules()

    def get_detectors(self) -> List[str]:
        return [rule.rule_id for rule in self.engine.get_enabled_rules()]

    def analyze(self, parsed_file: ParsedFile) -> AnalyzerResult:
        start_time = time.time()
        result = AnalyzerResult(self.name, parsed_file.file_path)

        for issue in self.pre_analyze(parsed_file):
            result.add_issue(issue)

        visitor = RuleVisitor(self.engine, parsed_file, self.settings)
        context = traverse([parsed_file.tree.root], visitor, TraversalOptions())

        for issue in self.post_process(visitor.issues, parsed_file):
            result.add_issue(issue)

        for failure in visitor.stats.failures:
            result.add_warning(f"Rule failed: {failure}")

        self.engine.merge_stats(visitor.stats)
        detectors = self.get_detectors()
        result.metadata.update({
            'nodes_visited': context.nodes_visited,
            'max_depth': context.max_depth_reached,
            'rules_executed': visitor.stats.rules_executed,
            'detectors_registered': detectors,
            'detectors_executed': [rule_id for rule_id in detectors if rule_id in visitor.stats.executions_by_rule],
            'partial': parsed_file.partial
        })
        result.execution_time = time.time() - start_time
        return result

    def pre_analyze(self, parsed_file: ParsedFile) -> List[Issue]:
        return []

    def post_process(self, issues: List[Issue], parsed_file: ParsedFile) -> List[Issue]:
        return issues

    def get_statistics(self) -> Dict[str, Any]:
        return self.engine.get_statistics()


class SyntaxAnalyzer(RuleBasedAnalyzer):
    """Parse errors plus line-level style and unused variable checks."""

    analyzer_name = "syntax"
    rule_classes = SYNTAX_RULES

    def supports_error_recovery(self) -> bool:
        return True

    def rule_defaults(self, rule: BaseRule) -> Dict[str, Any]:
        if rule.rule_id == 'line_length':
            return {'max_length': self.settings.get('max_line_length', 120)}
        if rule.rule_id == 'unused_variable':
            return {'enabled': bool(self.settings.get('check_unused_variables', True))}
        return {}

    def get_detectors(self) -> List[str]:
        return ['parse_error'] + super().get_detectors()

    def pre_analyze(self, parsed_file: ParsedFile) -> List[Issue]:
        issues = []
        for error in parsed_file.syntax_errors:
            issues.append(Issue(
                title="Parse Error",
                description=error.message,
                severity='critical',
                category='syntax',
                line=error.line,
                column=error.column,
                rule_id='parse_error',
                rule_name='PHP Parse Error',
                tags=['parse', 'critical'],
                suggestions=[
                    'Check syntax near the indicated line',
                    'Ensure proper closing of brackets and statements',
                    'Verify correct PHP version compatibility'
                ],
                file_path=parsed_file.file_path
            ))
        return issues

    def analyze(self, parsed_file: ParsedFile) -> AnalyzerResult:
        result = super().analyze(parsed_file)
        # parse_error always runs, even on clean files
        result.metadata['detectors_executed'] = ['parse_error'] + result.metadata['detectors_executed']
        return result


class SecurityAnalyzer(RuleBasedAnalyzer):
    """
    OWASP-classified security checks.

    Each finding is enriched with OWASP references and a CVSS-like risk
    assessment, then findings are ordered by risk priority.
    """

    analyzer_name = "security"
    rule_classes = SECURITY_RULES
    engine_class = SecurityRuleEngine

    def __init__(self, config: Optional[Config] = None, scorer: Optional[RiskScorer] = None):
        self.scorer = scorer or RiskScorer()
        super().__init__(config)

    def supports_error_recovery(self) -> bool:
        return True

    def rule_defaults(self, rule: BaseRule) -> Dict[str, Any]:
        defaults = {'confidence_threshold': self.config.get_confidence_threshold()}
        defaults.update(self.settings.get(rule.rule_id, {}))
        return defaults

    def post_process(self, issues: List[Issue], parsed_file: ParsedFile) -> List[Issue]:
        for issue in issues:
            enrich_issue(issue)
            vulnerability_type = issue.metadata.get('vulnerability_type', '')
            assessment = self.scorer.assess_vulnerability(vulnerability_type)
            issue.metadata['risk_score'] = assessment.score
            issue.metadata['risk_severity'] = assessment.severity
            issue.metadata['risk_priority'] = assessment.priority
        return self.scorer.sort_by_priority(issues, key=lambda issue: issue.metadata['risk_priority'])

    def analyze(self, parsed_file: ParsedFile) -> AnalyzerResult:
        result = super().analyze(parsed_file)
        result.metadata['compliance'] = self.engine.compliance_score(result.issues)
        result.metadata['false_positive_rate'] = self.scorer.estimate_false_positive_rate(
            [issue.confidence for issue in result.issues])
        return result


class QualityAnalyzer(RuleBasedAnalyzer):
    analyzer_name = "quality"
    rule_classes = QUALITY_RULES

    SETTING_MAP = {
        'function_length': ('max_function_lines', 'max_lines'),
        'parameter_count': ('max_parameters', 'max_parameters'),
        'cyclomatic_complexity': ('max_complexity', 'max_complexity')
    }

    def rule_defaults(self, rule: BaseRule) -> Dict[str, Any]:
        mapping = self.SETTING_MAP.get(rule.rule_id)
        if mapping is None or mapping[0] not in self.settings:
            return {}
        setting, key = mapping
        return {key: self.settings[setting]}


class PerformanceAnalyzer(RuleBasedAnalyzer):
    analyzer_name = "performance"
    rule_classes = PERFORMANCE_RULES

    def rule_defaults(self, rule: BaseRule) -> Dict[str, Any]:
        if rule.rule_id == 'nested_loops' and 'max_loop_depth' in self.settings:
            return {'max_depth': self.settings['max_loop_depth']}
        return {}


DEFAULT_ANALYZERS = [SyntaxAnalyzer, SecurityAnalyzer, QualityAnalyzer, PerformanceAnalyzer]


def create_default_analyzers(config: Optional[Config] = None) -> List[RuleBasedAnalyzer]:
    """Instantiate the built-in PHP analyzers in registration order."""
    config = config or Config()
    return [analyzer_class(config) for analyzer_class in DEFAULT_ANALYZERS]
