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
import hashlib
import logging
import threading
import yaml
from contextlib import contextmanager
from pathlib import Path
from typing import List, Dict, Any, Optional, Iterator
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = ['critical', 'high', 'medium', 'low', 'info']

SEVERITY_PRIORITY = {
    'critical': 5,
    'high': 4,
    'medium': 3,
    'low': 2,
    'info': 1
}

ISSUE_CATEGORIES = [
    'security',
    'performance',
    'quality',
    'syntax',
    'style',
    'maintainability',
    'compatibility'
]

ANALYZER_NAMES = ['syntax', 'security', 'quality', 'performance']

# =============================================================================
# EXCEPTIONS
# =============================================================================

class AnalysisError(Exception):
    """Base class for all analyzer errors."""


class ParseError(AnalysisError):
    """Source text could not be parsed."""

    def __init__(self, message: str, line: int = 0, file_path: str = ""):
        super().__init__(message)
        self.line = line
        self.file_path = file_path


class AnalyzerError(AnalysisError):
    """An analyzer faulted while processing a file."""

    def __init__(self, analyzer_name: str, message: str):
        super().__init__(f"Analyzer '{analyzer_name}' failed: {message}")
        self.analyzer_name = analyzer_name


class RuleConfigError(AnalysisError, ValueError):
    """A rule was given an invalid configuration."""

    def __init__(self, rule_id: str, errors: List[str]):
        super().__init__(f"Invalid configuration for rule {rule_id}: {'; '.join(errors)}")
        self.rule_id = rule_id
        self.errors = list(errors)


class CacheError(AnalysisError):
    """The parse cache is unusable for a lookup or store."""


class AnalysisTimeoutError(AnalysisError, TimeoutError):
    """A file exceeded its per-file analysis timeout."""

    def __init__(self, file_path: str, timeout: float):
        super().__init__(f"Analysis of {file_path} timed out after {timeout:.2f} seconds")
        self.file_path = file_path
        self.timeout = timeout


class ConfigurationError(AnalysisError, ValueError):
    """Global configuration is invalid."""


class RegistryLockedError(AnalysisError):
    """The analyzer registry was mutated while a batch was running."""

# =============================================================================
# DATA MODELS
# =============================================================================

def _short_hash(text: str) -> str:
    return hashlib.md5(text.encode('utf-8')).hexdigest()[:8]


class Issue:
    """Represents a single finding reported by a rule or analyzer."""

    def __init__(self,
                 title: str,
                 description: str,
                 severity: str,
                 category: str,
                 line: int = 0,
                 column: int = 0,
                 end_line: Optional[int] = None,
                 end_column: Optional[int] = None,
                 rule_id: str = "",
                 rule_name: str = "",
                 tags: Optional[List[str]] = None,
                 suggestions: Optional[List[str]] = None,
                 code_snippet: str = "",
                 metadata: Optional[Dict[str, Any]] = None,
                 confidence: float = 1.0,
                 owasp_category: str = "",
                 cwe_ids: Optional[List[int]] = None,
                 file_path: str = "",
                 issue_id: Optional[str] = None):
        severity = severity.lower()
        if severity not in SEVERITY_PRIORITY:
            raise ValueError(f"Invalid severity: {severity}. Must be one of: {', '.join(SEVERITY_LEVELS)}")
        if category not in ISSUE_CATEGORIES:
            raise ValueError(f"Invalid category: {category}. Must be one of: {', '.join(ISSUE_CATEGORIES)}")

        self.title = title
        self.description = description
        self.severity = severity
        self.category = category
        self.line = line
        self.column = column
        self.end_line = end_line if end_line is not None else line
        self.end_column = end_column if end_column is not None else column
        self.rule_id = rule_id
        self.rule_name = rule_name
        self.tags: List[str] = list(tags or [])
        self.suggestions: List[str] = list(suggestions or [])
        self.code_snippet = code_snippet
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.confidence = max(0.0, min(1.0, float(confidence)))
        self.owasp_category = owasp_category
        self.cwe_ids: List[int] = list(cwe_ids or [])
        self.file_path = file_path
        self._id = issue_id

    @property
    def fingerprint(self) -> str:
        """Key used to collapse duplicate findings within one file."""
        return ':'.join([
            self.category,
            self.severity,
            self.rule_id or 'no-rule',
            str(self.line or 0),
            _short_hash(self.title),
            _short_hash(self.description)
        ])

    @property
    def id(self) -> str:
        return self._id or self.fingerprint

    @property
    def severity_priority(self) -> int:
        return SEVERITY_PRIORITY[self.severity]

    @property
    def location_string(self) -> str:
        if self.end_line and self.end_line != self.line:
            return f"{self.file_path}:{self.line}-{self.end_line}"
        if self.column:
            return f"{self.file_path}:{self.line}:{self.column}"
        return f"{self.file_path}:{self.line}"

    def meets_threshold(self, threshold: str) -> bool:
        """Check whether this issue is at least as severe as threshold."""
        return self.severity_priority >= SEVERITY_PRIORITY.get(threshold, 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert issue to dictionary format."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'severity': self.severity,
            'category': self.category,
            'file_path': self.file_path,
            'line': self.line,
            'column': self.column,
            'end_line': self.end_line,
            'end_column': self.end_column,
            'rule_id': self.rule_id,
            'rule_name': self.rule_name,
            'owasp_category': self.owasp_category,
            'cwe_ids': self.cwe_ids,
            'confidence': round(self.confidence, 3),
            'tags': self.tags,
            'suggestions': self.suggestions,
            'code_snippet': self.code_snippet,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Issue':
        return cls(
            title=data['title'],
            description=data.get('description', ''),
            severity=data['severity'],
            category=data['category'],
            line=data.get('line', 0),
            column=data.get('column', 0),
            end_line=data.get('end_line'),
            end_column=data.get('end_column'),
            rule_id=data.get('rule_id', ''),
            rule_name=data.get('rule_name', ''),
            tags=data.get('tags'),
            suggestions=data.get('suggestions'),
            code_snippet=data.get('code_snippet', ''),
            metadata=data.get('metadata'),
            confidence=data.get('confidence', 1.0),
            owasp_category=data.get('owasp_category', ''),
            cwe_ids=data.get('cwe_ids'),
            file_path=data.get('file_path', ''),
            issue_id=data.get('id')
        )

    def __repr__(self) -> str:
        return f"Issue({self.rule_id or 'no-rule'}, {self.severity}, {self.category}, line {self.line})"


class AnalyzerResult:
    """Output of one analyzer for one file."""

    def __init__(self,
                 analyzer_name: str,
                 file_path: str,
                 issues: Optional[List[Issue]] = None,
                 errors: Optional[List[str]] = None,
                 warnings: Optional[List[str]] = None,
                 metadata: Optional[Dict[str, Any]] = None,
                 execution_time: float = 0.0):
        self.analyzer_name = analyzer_name
        self.file_path = file_path
        self.issues: List[Issue] = list(issues or [])
        self.errors: List[str] = list(errors or [])
        self.warnings: List[str] = list(warnings or [])
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.execution_time = execution_time

    @classmethod
    def failure(cls, analyzer_name: str, file_path: str, error: str,
                execution_time: float = 0.0) -> 'AnalyzerResult':
        """Create the result recorded when an analyzer faults."""
        return cls(analyzer_name, file_path, errors=[error], execution_time=execution_time)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_issue(self, issue: Issue) -> None:
        self.issues.append(issue)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def get_issue_count_by_severity(self) -> Dict[str, int]:
        counts = {severity: 0 for severity in SEVERITY_LEVELS}
        for issue in self.issues:
            counts[issue.severity] += 1
        return counts

    def get_summary(self) -> Dict[str, Any]:
        return {
            'analyzer': self.analyzer_name,
            'file': self.file_path,
            'success': self.success,
            'total_issues': len(self.issues),
            'issues_by_severity': self.get_issue_count_by_severity(),
            'execution_time': round(self.execution_time, 6),
            'error_count': len(self.errors),
            'warning_count': len(self.warnings),
            'errors': list(self.errors)
        }

# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    """Configuration management for the PHP analyzer."""

    # Default configuration values
    DEFAULT_CONFIG = {
        'analysis': {
            'risk_threshold': 'medium',
            'confidence_threshold': 0.5,
            'cache_capacity': 1000,
            'cache_eviction_batch': None,
            'cache_ttl_seconds': None,
            'worker_count': 4,
            'per_file_timeout_ms': 30000,
            'max_file_size_mb': 10,
            'file_extensions': ['.php', '.phtml', '.php5', '.php7', '.php8', '.inc']
        },
        'enabled_analyzers': {
            'syntax': True,
            'security': True,
            'quality': True,
            'performance': True
        },
        'exclusions': {
            'patterns': [
                '.git/*',
                '.svn/*',
                'vendor/*',
                'node_modules/*',
                'cache/*',
                '*.min.php'
            ]
        },
        'analyzer_settings': {
            'syntax': {
                'max_line_length': 120,
                'check_unused_variables': True
            },
            'quality': {
                'max_function_lines': 50,
                'max_parameters': 5,
                'max_complexity': 10
            },
            'performance': {
                'max_loop_depth': 2
            },
            'security': {}
        },
        'rules': {}
    }

    def __init__(self, config_path: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None):
        """Initialize configuration."""
        self._config = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_path:
            self._load_config_file(config_path)

        if overrides:
            self._merge_config(overrides)

        self._validate_config()

    @classmethod
    def from_dict(cls, overrides: Dict[str, Any]) -> 'Config':
        return cls(overrides=overrides)

    def _load_config_file(self, config_path: str) -> None:
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                user_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {config_path}: {str(e)}") from e

        if user_config is None:
            return
        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping at the top level")

        self._merge_config(user_config)
        logger.info(f"Loaded configuration from: {config_path}")

    def _merge_config(self, user_config: Dict[str, Any]) -> None:
        """Merge user configuration with defaults."""
        def merge_dicts(base_dict: Dict, update_dict: Dict) -> Dict:
            for key, value in update_dict.items():
                if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                    merge_dicts(base_dict[key], value)
                else:
                    base_dict[key] = copy.deepcopy(value)
            return base_dict

        merge_dicts(self._config, user_config)

    def _validate_config(self) -> None:
        """Validate configuration values."""
        analysis = self._config['analysis']

        if analysis['risk_threshold'] not in SEVERITY_LEVELS:
            raise ConfigurationError(f"Invalid risk_threshold: {analysis['risk_threshold']}. "
                                     f"Must be one of: {', '.join(SEVERITY_LEVELS)}")

        for key in ('cache_capacity', 'per_file_timeout_ms'):
            value = analysis[key]
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"Invalid {key}: {value}. Must be a positive integer.")

        worker_count = analysis['worker_count']
        if isinstance(worker_count, bool) or not isinstance(worker_count, int) or worker_count < 0:
            raise ConfigurationError(f"Invalid worker_count: {worker_count}. Must be a non-negative integer.")

        batch = analysis['cache_eviction_batch']
        if batch is not None and (not isinstance(batch, int) or batch <= 0):
            raise ConfigurationError(f"Invalid cache_eviction_batch: {batch}. Must be a positive integer.")

        ttl = analysis['cache_ttl_seconds']
        if ttl is not None and (not isinstance(ttl, (int, float)) or ttl <= 0):
            raise ConfigurationError(f"Invalid cache_ttl_seconds: {ttl}. Must be a positive number.")

        threshold = analysis['confidence_threshold']
        if not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(f"Invalid confidence_threshold: {threshold}. Must be between 0 and 1.")

        max_size = analysis['max_file_size_mb']
        if not isinstance(max_size, (int, float)) or max_size <= 0:
            raise ConfigurationError(f"Invalid max_file_size_mb: {max_size}. Must be a positive number.")

        for name, enabled in self._config['enabled_analyzers'].items():
            if not isinstance(enabled, bool):
                raise ConfigurationError(f"enabled_analyzers.{name} must be true or false")

        if not isinstance(self._config['exclusions'].get('patterns', []), list):
            raise ConfigurationError("exclusions.patterns must be a list of glob patterns")

        logger.debug("Configuration validation passed")

    # Getter methods for configuration values
    def get_risk_threshold(self) -> str:
        return self._config['analysis']['risk_threshold']

    def set_risk_threshold(self, threshold: str) -> None:
        if threshold not in SEVERITY_LEVELS:
            raise ConfigurationError(f"Invalid risk threshold: {threshold}")
        self._config['analysis']['risk_threshold'] = threshold

    def get_confidence_threshold(self) -> float:
        return float(self._config['analysis']['confidence_threshold'])

    def get_cache_capacity(self) -> int:
        return self._config['analysis']['cache_capacity']

    def get_cache_eviction_batch(self) -> Optional[int]:
        return self._config['analysis']['cache_eviction_batch']

    def get_cache_ttl(self) -> Optional[float]:
        return self._config['analysis']['cache_ttl_seconds']

    def get_worker_count(self) -> int:
        return self._config['analysis']['worker_count']

    def set_worker_count(self, count: int) -> None:
        if count < 0:
            raise ConfigurationError(f"Invalid worker_count: {count}")
        self._config['analysis']['worker_count'] = count

    def get_per_file_timeout(self) -> float:
        """Get the per-file timeout in seconds."""
        return self._config['analysis']['per_file_timeout_ms'] / 1000.0

    def set_per_file_timeout_ms(self, timeout_ms: int) -> None:
        if timeout_ms <= 0:
            raise ConfigurationError(f"Invalid per_file_timeout_ms: {timeout_ms}")
        self._config['analysis']['per_file_timeout_ms'] = timeout_ms

    def get_max_file_size_mb(self) -> float:
        return self._config['analysis']['max_file_size_mb']

    def get_file_extensions(self) -> List[str]:
        return list(self._config['analysis']['file_extensions'])

    def is_analyzer_enabled(self, name: str) -> bool:
        """Analyzers not mentioned in the configuration are enabled."""
        return self._config['enabled_analyzers'].get(name, True)

    def set_analyzer_enabled(self, name: str, enabled: bool) -> None:
        self._config['enabled_analyzers'][name] = enabled

    def get_analyzer_settings(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self._config['analyzer_settings'].get(name, {}))

    def get_rule_config(self, rule_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._config['rules'].get(rule_id, {}))

    def get_exclusion_patterns(self) -> List[str]:
        return list(self._config['exclusions']['patterns'])

    def set_exclusions(self, patterns: List[str]) -> None:
        """Add additional exclusion patterns."""
        self._config['exclusions']['patterns'].extend(patterns)

    def should_exclude_file(self, file_path: Path) -> bool:
        """Check if a file should be excluded from analysis."""
        file_str = file_path.as_posix()

        for pattern in self.get_exclusion_patterns():
            if (fnmatch.fnmatch(file_str, pattern) or fnmatch.fnmatch(file_path.name, pattern)
                    or fnmatch.fnmatch(file_str, f"*/{pattern}")):
                return True

        return False

    def meets_severity_threshold(self, severity: str) -> bool:
        """Check if a severity level meets the risk threshold."""
        return SEVERITY_PRIORITY.get(severity, 1) >= SEVERITY_PRIORITY[self.get_risk_threshold()]

    def to_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary."""
        return copy.deepcopy(self._config)

# =============================================================================
# ANALYZER BASE CLASS
# =============================================================================

class Analyzer(ABC):
    """Abstract base class for analyzers run over one parsed file."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the registry name of this analyzer."""
        pass

    @property
    @abstractmethod
    def file_extensions(self) -> List[str]:
        """Return list of file extensions (without dot) this analyzer can process."""
        pass

    def supports_file_type(self, extension: str) -> bool:
        return extension.lower().lstrip('.') in self.file_extensions

    def supports_error_recovery(self) -> bool:
        """Whether the analyzer can work on a partially parsed tree."""
        return False

    def configure(self, config: Config) -> None:
        """Apply global configuration before a run."""
        pass

    def get_detectors(self) -> List[str]:
        """Identifiers of the individual checks this analyzer runs."""
        return []

    @abstractmethod
    def analyze(self, parsed_file: Any) -> AnalyzerResult:
        """Analyze a single parsed file."""
        pass

# =============================================================================
# ANALYZER REGISTRY
# =============================================================================

class AnalyzerRegistry:
    """Registry of named analyzers, kept in registration order."""

    def __init__(self):
        self._analyzers: Dict[str, Analyzer] = {}
        self._lock = threading.Lock()
        self._active_batches = 0

    def register(self, analyzer: Analyzer) -> None:
        """Register an analyzer, replacing any prior one with the same name."""
        if not isinstance(analyzer, Analyzer):
            raise ConfigurationError(f"Analyzer must inherit from Analyzer: {analyzer!r}")

        with self._lock:
            self._ensure_unlocked()
            name = analyzer.name
            if name in self._analyzers:
                logger.warning(f"Analyzer '{name}' already registered, replacing...")
                del self._analyzers[name]
            self._analyzers[name] = analyzer

        logger.info(f"Registered analyzer: {name}")

    def unregister(self, name: str) -> bool:
        with self._lock:
            self._ensure_unlocked()
            if name not in self._analyzers:
                return False
            del self._analyzers[name]

        logger.info(f"Unregistered analyzer: {name}")
        return True

    def get(self, name: str) -> Optional[Analyzer]:
        return self._analyzers.get(name)

    def names(self) -> List[str]:
        return list(self._analyzers.keys())

    def analyzers(self) -> List[Analyzer]:
        return list(self._analyzers.values())

    def __contains__(self, name: str) -> bool:
        return name in self._analyzers

    def __len__(self) -> int:
        return len(self._analyzers)

    @property
    def is_locked(self) -> bool:
        return self._active_batches > 0

    @contextmanager
    def locked(self) -> Iterator['AnalyzerRegistry']:
        """Hold the registry read-only for the duration of a batch."""
        with self._lock:
            self._active_batches += 1
        try:
            yield self
        finally:
            with self._lock:
                self._active_batches -= 1

    def _ensure_unlocked(self) -> None:
        if self._active_batches:
            raise RegistryLockedError("Analyzers cannot be registered or removed while a batch is running")
