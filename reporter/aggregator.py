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
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Tuple

from core import AnalyzerResult, Issue, SEVERITY_LEVELS, SEVERITY_PRIORITY, ISSUE_CATEGORIES
from rules.risk_scorer import RiskScorer
from rules.rule_engine import SecurityRuleEngine

logger = logging.getLogger(__name__)

# Quality score penalties per issue
QUALITY_PENALTIES = {'critical': 20, 'high': 10, 'medium': 5, 'low': 1, 'info': 0}
PARSE_ERROR_PENALTY = 30
SECURITY_ISSUE_PENALTY = 15

# =============================================================================
# SINGLE FILE REPORT
# =============================================================================

class AnalysisReport:
    """
    Aggregated, deduplicated analysis output for one file.

    A report is also produced for files that could not be analyzed; those
    carry failed=True and a failure_reason instead of issues.
    """

    def __init__(self, file_path: str,
                 issues: Optional[List[Issue]] = None,
                 analyzer_results: Optional[List[AnalyzerResult]] = None,
                 parse_errors: Optional[List[Dict[str, Any]]] = None,
                 partial: bool = False,
                 duplicates_removed: int = 0,
                 execution_time: float = 0.0,
                 failed: bool = False,
                 failure_reason: str = "",
                 status: str = "completed"):
        self.file_path = file_path
        self.issues: List[Issue] = list(issues or [])
        self.analyzer_results: List[AnalyzerResult] = list(analyzer_results or [])
        self.parse_errors: List[Dict[str, Any]] = list(parse_errors or [])
        self.partial = partial
        self.duplicates_removed = duplicates_removed
        self.execution_time = execution_time
        self.failed = failed
        self.failure_reason = failure_reason
        self.status = status
        self.created_at = datetime.now()

    @classmethod
    def failure(cls, file_path: str, reason: str, status: str = "failed",
                execution_time: float = 0.0) -> 'AnalysisReport':
        """Report entry for a file whose analysis did not complete."""
        return cls(file_path, failed=True, failure_reason=reason, status=status,
                   execution_time=execution_time)

    @property
    def has_parse_errors(self) -> bool:
        return bool(self.parse_errors)

    @property
    def is_successful(self) -> bool:
        return not self.failed and all(result.success for result in self.analyzer_results)

    def get_issues_by_severity(self, severity: str) -> List[Issue]:
        return [issue for issue in self.issues if issue.severity == severity]

    def get_issues_by_category(self, category: str) -> List[Issue]:
        return [issue for issue in self.issues if issue.category == category]

    def get_security_issues(self) -> List[Issue]:
        return self.get_issues_by_category('security')

    def count_by_severity(self) -> Dict[str, int]:
        counts = {severity: 0 for severity in SEVERITY_LEVELS}
        for issue in self.issues:
            counts[issue.severity] += 1
        return counts

    def count_by_category(self) -> Dict[str, int]:
        counts = {category: 0 for category in ISSUE_CATEGORIES}
        for issue in self.issues:
            counts[issue.category] += 1
        return counts

    def has_critical_issues(self) -> bool:
        return any(issue.severity == 'critical' for issue in self.issues)

    def has_security_issues(self) -> bool:
        return any(issue.category == 'security' for issue in self.issues)

    def get_issues_by_priority(self) -> List[Issue]:
        """Issues ordered by severity, most severe first, then by line."""
        return sorted(self.issues, key=lambda issue: (-issue.severity_priority, issue.line or 0))

    def get_quality_score(self) -> int:
        """
        Calculate the 0-100 quality score.

        Returns:
            int: 100 minus weighted severity penalties, with extra penalties
                 for parse errors and security findings
        """
        if self.failed:
            return 0
        if not self.issues:
            return 100

        penalty = sum(QUALITY_PENALTIES.get(issue.severity, 0) for issue in self.issues)
        score = max(0, 100 - penalty)
        if self.has_parse_errors:
            score -= PARSE_ERROR_PENALTY
        if self.has_security_issues():
            score -= SECURITY_ISSUE_PENALTY
        return max(0, min(100, score))

    def get_security_score(self) -> int:
        if self.failed:
            return 0
        risk = sum(SecurityRuleEngine.RISK_WEIGHTS.get(issue.severity, 0) for issue in self.get_security_issues())
        return max(0, 100 - risk)

    def get_coverage(self) -> float:
        """Percentage of registered detectors that executed for this file."""
        registered = 0
        executed = 0
        for result in self.analyzer_results:
            registered += len(result.metadata.get('detectors_registered', []))
            executed += len(result.metadata.get('detectors_executed', []))
        return RiskScorer.calculate_coverage(executed, registered)

    def exceeds_threshold(self, threshold: str) -> bool:
        """Check whether any issue is at or above a severity threshold."""
        minimum = SEVERITY_PRIORITY.get(threshold, SEVERITY_PRIORITY['info'])
        return any(issue.severity_priority >= minimum for issue in self.issues)

    def get_total_execution_time(self) -> float:
        return sum(result.execution_time for result in self.analyzer_results)

    def get_summary(self) -> Dict[str, Any]:
        return {
            'total_analyzers': len(self.analyzer_results),
            'successful_analyzers': len([result for result in self.analyzer_results if result.success]),
            'total_issues': len(self.issues),
            'issues_by_severity': self.count_by_severity(),
            'issues_by_category': self.count_by_category(),
            'duplicates_removed': self.duplicates_removed,
            'quality_score': self.get_quality_score(),
            'security_score': self.get_security_score(),
            'coverage': self.get_coverage(),
            'has_critical_issues': self.has_critical_issues(),
            'has_security_issues': self.has_security_issues(),
            'has_parse_errors': self.has_parse_errors,
            'partial': self.partial,
            'analyzers': [result.analyzer_name for result in self.analyzer_results],
            'total_execution_time': self.get_total_execution_time()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_path': self.file_path,
            'created_at': self.created_at.isoformat(),
            'status': self.status,
            'failed': self.failed,
            'failure_reason': self.failure_reason,
            'summary': self.get_summary(),
            'parse_errors': list(self.parse_errors),
            'analyzer_results': [result.get_summary() for result in self.analyzer_results],
            'issues': [issue.to_dict() for issue in self.issues],
            'is_successful': self.is_successful,
            'execution_time': self.execution_time
        }

    def __repr__(self) -> str:
        state = f"failed: {self.failure_reason}" if self.failed else f"{len(self.issues)} issues"
        return f"AnalysisReport({self.file_path}, {state})"

# =============================================================================
# PROJECT REPORT
# =============================================================================

class BatchReport:
    """
    Project-level summary over many single-file reports.

    Issues are not re-deduplicated across files; fingerprints are
    file-scoped.
    """

    def __init__(self, reports: Optional[Dict[str, AnalysisReport]] = None):
        self.reports: Dict[str, AnalysisReport] = dict(reports or {})
        self.created_at = datetime.now()

    def add_report(self, report: AnalysisReport) -> None:
        self.reports[report.file_path] = report

    def get_report_count(self) -> int:
        return len(self.reports)

    def successful_reports(self) -> List[AnalysisReport]:
        return [report for report in self.reports.values() if not report.failed]

    def failed_reports(self) -> List[AnalysisReport]:
        return [report for report in self.reports.values() if report.failed]

    def get_total_issue_count(self) -> int:
        return sum(len(report.issues) for report in self.reports.values())

    def get_average_quality_score(self) -> float:
        reports = self.successful_reports()
        if not reports:
            return 0.0
        return sum(report.get_quality_score() for report in reports) / len(reports)

    def get_quality_grade(self) -> str:
        score = self.get_average_quality_score()
        if score >= 90:
            return 'A'
        if score >= 80:
            return 'B'
        if score >= 70:
            return 'C'
        if score >= 60:
            return 'D'
        return 'F'

    def get_worst_quality_files(self, count: Optional[int] = None) -> List[AnalysisReport]:
        """Lowest scoring files, bottom 10% by default (at least one)."""
        reports = sorted(self.successful_reports(), key=lambda report: report.get_quality_score())
        count = count if count is not None else max(1, int(len(reports) * 0.1))
        return reports[:count]

    def get_best_quality_files(self, count: Optional[int] = None) -> List[AnalysisReport]:
        reports = sorted(self.successful_reports(), key=lambda report: report.get_quality_score(), reverse=True)
        count = count if count is not None else max(1, int(len(reports) * 0.1))
        return reports[:count]

    def get_files_with_security_issues(self) -> List[str]:
        return [path for path, report in self.reports.items() if report.has_security_issues()]

    def get_issue_distribution(self) -> Dict[str, int]:
        distribution = {category: 0 for category in ISSUE_CATEGORIES}
        for report in self.reports.values():
            for category, count in report.count_by_category().items():
                distribution[category] += count
        return distribution

    def get_severity_distribution(self) -> Dict[str, int]:
        distribution = {severity: 0 for severity in SEVERITY_LEVELS}
        for report in self.reports.values():
            for severity, count in report.count_by_severity().items():
                distribution[severity] += count
        return distribution

    def get_total_execution_time(self) -> float:
        return sum(report.execution_time for report in self.reports.values())

    def passes(self, risk_threshold: str) -> bool:
        """Pass/fail decision: no file has an issue at or above the threshold."""
        return not any(report.exceeds_threshold(risk_threshold) for report in self.reports.values())

    def get_summary(self) -> Dict[str, Any]:
        scores = [report.get_quality_score() for report in self.successful_reports()]
        total = self.get_report_count()
        return {
            'total_files': total,
            'successful_files': len(self.successful_reports()),
            'failed_files': len(self.failed_reports()),
            'total_issues': self.get_total_issue_count(),
            'average_quality_score': round(self.get_average_quality_score(), 2),
            'quality_grade': self.get_quality_grade(),
            'min_quality_score': min(scores) if scores else 0,
            'max_quality_score': max(scores) if scores else 0,
            'issue_distribution': self.get_issue_distribution(),
            'severity_distribution': self.get_severity_distribution(),
            'files_with_security_issues': len(self.get_files_with_security_issues()),
            'total_execution_time': self.get_total_execution_time(),
            'average_execution_time': self.get_total_execution_time() / total if total else 0.0
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created_at': self.created_at.isoformat(),
            'summary': self.get_summary(),
            'worst_files': [{'file': report.file_path, 'score': report.get_quality_score()}
                            for report in self.get_worst_quality_files()],
            'best_files': [{'file': report.file_path, 'score': report.get_quality_score()}
                           for report in self.get_best_quality_files()],
            'failures': [{'file': report.file_path, 'status': report.status, 'reason': report.failure_reason}
                         for report in self.failed_reports()],
            'reports': [report.to_dict() for report in self.reports.values()]
        }

# =============================================================================
# AGGREGATOR
# =============================================================================

class ReportAggregator:
    """Merges analyzer results into reports, dropping duplicate issues."""

    def __init__(self):
        self._lock = threading.Lock()
        self.stats = {
            'reports_created': 0,
            'results_processed': 0,
            'issues_deduplicated': 0,
            'total_processing_time': 0.0
        }

    @staticmethod
    def deduplicate(issues: Iterable[Issue]) -> Tuple[List[Issue], int]:
        """
        Keep the first issue for each fingerprint.

        Returns:
            tuple: (unique issues in original order, number dropped)
        """
        seen = set()
        unique = []
        dropped = 0
        for issue in issues:
            fingerprint = issue.fingerprint
            if fingerprint in seen:
                dropped += 1
                continue
            seen.add(fingerprint)
            unique.append(issue)
        return unique, dropped

    def aggregate(self, file_path: str, analyzer_results: List[AnalyzerResult],
                  parse_errors: Optional[List[Dict[str, Any]]] = None, partial: bool = False,
                  execution_time: float = 0.0) -> AnalysisReport:
        """
        Build the report for one file.

        Args:
            file_path (str): Analyzed file
            analyzer_results (list): One result per analyzer that ran
            parse_errors (list, optional): Serialized syntax errors
            partial (bool): Whether the tree covers only a prefix of the file
            execution_time (float): Wall time of the whole file analysis

        Returns:
            AnalysisReport: Deduplicated report
        """
        start_time = time.time()

        all_issues = []
        for result in analyzer_results:
            for issue in result.issues:
                if not issue.file_path:
                    issue.file_path = file_path
                all_issues.append(issue)

        issues, dropped = self.deduplicate(all_issues)
        if dropped:
            logger.debug(f"Dropped {dropped} duplicate issues for {file_path}")

        report = AnalysisReport(
            file_path=file_path,
            issues=issues,
            analyzer_results=analyzer_results,
            parse_errors=parse_errors,
            partial=partial,
            duplicates_removed=dropped,
            execution_time=execution_time
        )

        with self._lock:
            self.stats['reports_created'] += 1
            self.stats['results_processed'] += len(analyzer_results)
            self.stats['issues_deduplicated'] += dropped
            self.stats['total_processing_time'] += time.time() - start_time

        return report

    def create_batch_report(self, reports: Dict[str, AnalysisReport]) -> BatchReport:
        return BatchReport(reports)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self.stats)
