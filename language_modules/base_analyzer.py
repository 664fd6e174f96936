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

import copy
import fnmatch
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional

from core import Issue, RuleConfigError, SEVERITY_LEVELS, SEVERITY_PRIORITY
from parsing.nodes import Node
from parsing.parse_cache import ParsedFile
from parsing.traversal import TraversalContext

logger = logging.getLogger(__name__)

ALL_NODE_TYPES = '*'


class OwaspCategory(Enum):
    """OWASP Top 10 (2021) categories for vulnerability classification."""
    A01_BROKEN_ACCESS_CONTROL = "A01"
    A02_CRYPTOGRAPHIC_FAILURES = "A02"
    A03_INJECTION = "A03"
    A04_INSECURE_DESIGN = "A04"
    A05_SECURITY_MISCONFIGURATION = "A05"
    A06_VULNERABLE_COMPONENTS = "A06"
    A07_AUTHENTICATION_FAILURES = "A07"
    A08_INTEGRITY_FAILURES = "A08"
    A09_LOGGING_FAILURES = "A09"
    A10_SSRF = "A10"


class RiskLevel(Enum):
    """Risk levels of security rules, ordered by evaluation priority."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def priority(self) -> int:
        return RISK_PRIORITY[self.value]


RISK_PRIORITY = {
    'critical': 100,
    'high': 80,
    'medium': 60,
    'low': 40,
    'info': 20
}


@dataclass
class RiskRecord:
    """
    Outcome of a rule-local risk heuristic.

    Confidence grows additively with every contributing factor and is
    capped at 1.0.
    """
    factors: List[str] = field(default_factory=list)
    confidence: float = 0.0
    description: str = ""

    @property
    def has_risk(self) -> bool:
        return bool(self.factors)

    def add_factor(self, factor: str, weight: float, description: str = "") -> None:
        if factor not in self.factors:
            self.factors.append(factor)
        self.confidence = min(1.0, round(self.confidence + weight, 6))
        if description:
            self.description = f"{self.description} {description}".strip()


@dataclass
class RuleContext:
    """Everything a rule can consult while validating one node."""
    parsed_file: ParsedFile
    traversal: TraversalContext
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def file_path(self) -> str:
        return self.parsed_file.file_path


class BaseRule(ABC):
    """
    Abstract base class for node-level detection rules.

    Subclasses set the class attributes and implement validate(). Rules are
    stateless across files.
    """

    rule_id: str = ""
    name: str = ""
    description: str = ""
    category: str = "quality"
    severity: str = "medium"
    supported_node_types: List[str] = []
    tags: List[str] = []
    DEFAULT_CONFIG: Dict[str, Any] = {}

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.enabled = True
        self.config: Dict[str, Any] = self.get_default_config()
        if config:
            self.configure(config)

    def get_default_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.DEFAULT_CONFIG)

    @property
    def priority(self) -> int:
        return SEVERITY_PRIORITY.get(self.severity, 1) * 10

    def applies_to(self, node_type: str) -> bool:
        return ALL_NODE_TYPES in self.supported_node_types or node_type in self.supported_node_types

    @abstractmethod
    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        """
        Check a node and return any issues found.

        Args:
            node (Node): Node being visited
            context (RuleContext): File and traversal context

        Returns:
            list: Issues found at this node
        """
        pass

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """Return a list of problems with a candidate configuration."""
        errors = []
        if 'enabled' in config and not isinstance(config['enabled'], bool):
            errors.append('enabled must be a boolean')
        return errors

    def configure(self, config: Dict[str, Any]) -> None:
        """
        Merge a configuration onto the defaults.

        Raises:
            RuleConfigError: If the configuration is invalid
        """
        errors = self.validate_config(config)
        if errors:
            raise RuleConfigError(self.rule_id, errors)

        merged = self.get_default_config()
        merged.update({key: value for key, value in config.items() if key != 'enabled'})
        self.config = merged
        if 'enabled' in config:
            self.set_enabled(config['enabled'])

    def get_config_value(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def is_enabled(self) -> bool:
        return self.enabled

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def get_tags(self) -> List[str]:
        return list(self.tags)

    def get_metadata(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'severity': self.severity,
            'priority': self.priority,
            'node_types': list(self.supported_node_types),
            'enabled': self.enabled
        }

    def create_issue(self, title: str, description: str, node: Node, context: RuleContext,
                     severity: Optional[str] = None, suggestions: Optional[List[str]] = None,
                     metadata: Optional[Dict[str, Any]] = None, confidence: float = 1.0,
                     line: Optional[int] = None, snippet_context: int = 1) -> Issue:
        start_line = line if line is not None else node.start_line
        end_line = start_line if line is not None else node.end_line
        return Issue(
            title=title,
            description=description,
            severity=severity or self.severity,
            category=self.category,
            line=start_line,
            column=node.start_column if line is None else 0,
            end_line=end_line,
            end_column=node.end_column if line is None else 0,
            rule_id=self.rule_id,
            rule_name=self.name,
            tags=self.get_tags(),
            suggestions=suggestions,
            code_snippet=self.get_code_snippet(context.parsed_file, start_line, end_line, snippet_context),
            metadata=metadata,
            confidence=confidence,
            file_path=context.file_path
        )

    def get_code_snippet(self, parsed_file: ParsedFile, start_line: int, end_line: int,
                         context_lines: int = 1, marker: str = '>> ') -> str:
        """Source lines around a finding, with the finding's lines marked."""
        first = max(1, start_line - context_lines)
        last = min(parsed_file.line_count, end_line + context_lines)
        snippet = []
        for number in range(first, last + 1):
            prefix = marker if start_line <= number <= end_line else ' ' * len(marker)
            snippet.append(f"{prefix}{number:4d} | {parsed_file.get_line(number)}")
        return "\n".join(snippet)


class BaseSecurityRule(BaseRule):
    """
    Base class for OWASP-classified security rules.

    Adds vulnerability metadata, confidence gating and suppression of
    findings inside test code.
    """

    category = "security"
    vulnerability_type: str = ""
    owasp_category: OwaspCategory = OwaspCategory.A03_INJECTION
    risk_level: RiskLevel = RiskLevel.MEDIUM
    cwe_ids: List[int] = []
    false_positive_probability: float = 0.1
    remediation: List[str] = []

    BASE_SECURITY_CONFIG = {
        'strict_mode': False,
        'risk_threshold': 'medium',
        'context_aware': True,
        'exclude_test_files': True,
        'confidence_threshold': 0.5,
        'test_file_patterns': ['*Test.php', '*_test.php', 'tests/*', 'test/*', '*/tests/*', '*/test/*'],
        'test_class_suffixes': ['Test', 'TestCase']
    }

    def get_default_config(self) -> Dict[str, Any]:
        config = copy.deepcopy(self.BASE_SECURITY_CONFIG)
        config.update(copy.deepcopy(self.DEFAULT_CONFIG))
        return config

    @property
    def severity(self) -> str:
        return self.risk_level.value

    @property
    def priority(self) -> int:
        return self.risk_level.priority

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)

        if 'risk_threshold' in config and config['risk_threshold'] not in SEVERITY_LEVELS:
            errors.append(f"risk_threshold must be one of: {', '.join(SEVERITY_LEVELS)}")

        if 'strict_mode' in config and not isinstance(config['strict_mode'], bool):
            errors.append('strict_mode must be a boolean')

        threshold = config.get('confidence_threshold', 0.5)
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
            errors.append('confidence_threshold must be a number between 0 and 1')

        return errors

    def get_tags(self) -> List[str]:
        tags = ['security', self.vulnerability_type, 'owasp', self.owasp_category.value]
        tags.extend(f"cwe-{cwe_id}" for cwe_id in self.cwe_ids)
        tags.extend(self.tags)
        return tags

    def get_metadata(self) -> Dict[str, Any]:
        metadata = super().get_metadata()
        metadata.update({
            'vulnerability_type': self.vulnerability_type,
            'owasp_category': self.owasp_category.value,
            'risk_level': self.risk_level.value,
            'cwe_ids': list(self.cwe_ids),
            'false_positive_probability': self.false_positive_probability
        })
        return metadata

    def meets_confidence(self, risk: RiskRecord) -> bool:
        """Findings below the confidence threshold are suppressed."""
        if self.get_config_value('strict_mode', False):
            return risk.has_risk
        return risk.has_risk and risk.confidence >= self.get_config_value('confidence_threshold', 0.5)

    def in_test_code(self, context: RuleContext) -> bool:
        """Check whether the node lives in a test file or a test class."""
        if not self.get_config_value('exclude_test_files', True):
            return False

        file_path = context.file_path.replace('\\', '/')
        for pattern in self.get_config_value('test_file_patterns', []):
            if fnmatch.fnmatch(file_path, pattern):
                return True

        if not self.get_config_value('context_aware', True):
            return False

        suffixes = tuple(self.get_config_value('test_class_suffixes', []))
        test_class = context.traversal.find_ancestor(
            lambda node: node.type == 'class_declaration'
            and node.child_by_field('name') is not None
            and node.child_by_field('name').text.endswith(suffixes)
        )
        return test_class is not None

    def create_security_issue(self, title: str, description: str, node: Node, context: RuleContext,
                              risk: Optional[RiskRecord] = None, severity: Optional[str] = None,
                              suggestions: Optional[List[str]] = None,
                              metadata: Optional[Dict[str, Any]] = None) -> Issue:
        issue_metadata = {
            'vulnerability_type': self.vulnerability_type,
            'risk_level': self.risk_level.value,
            'false_positive_probability': self.false_positive_probability
        }
        if risk is not None:
            issue_metadata['risk_factors'] = list(risk.factors)
        issue_metadata.update(metadata or {})

        issue = self.create_issue(
            title=title,
            description=description,
            node=node,
            context=context,
            severity=severity,
            suggestions=list(suggestions or []) + [s for s in self.remediation if s not in (suggestions or [])],
            metadata=issue_metadata,
            confidence=risk.confidence if risk is not None else 1.0 - self.false_positive_probability,
            snippet_context=2
        )
        issue.owasp_category = self.owasp_category.value
        issue.cwe_ids = list(self.cwe_ids)
        return issue
