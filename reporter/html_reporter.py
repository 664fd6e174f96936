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

import datetime
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

from jinja2 import BaseLoader, Environment

from core import SEVERITY_LEVELS
from reporter.aggregator import AnalysisReport, BatchReport
from rules.owasp_rules import OWASP_CATEGORIES, get_owasp_category_name

logger = logging.getLogger(__name__)

ReportInput = Union[BatchReport, Mapping[str, AnalysisReport]]


class HTMLReporter:
    """
    Generates HTML reports from a batch of per-file analysis reports.

    Features:
    - OWASP Top 10 grouping of security findings
    - Severity-based color coding
    - Per-file issue tables with quality scores
    - Failed and timed-out files listed separately
    """

    def __init__(self):
        self.template = self._get_html_template()

    def generate_report(self, analysis_results: ReportInput, output_path: str) -> str:
        """
        Generate HTML report from analysis results.

        Args:
            analysis_results: BatchReport or mapping of file path to AnalysisReport
            output_path (str): Path where HTML report should be saved

        Returns:
            str: Path to the generated HTML report

        Raises:
            IOError: If unable to write to output path
        """
        batch = _as_batch(analysis_results)
        report_data = self._prepare_report_data(batch)
        html_content = self.template.render(**report_data)

        output_file = Path(output_path)
        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, 'w', encoding='utf-8') as f:
                f.write(html_content)
        except OSError as e:
            raise IOError(f"Failed to generate HTML report: {e}") from e

        logger.info(f"HTML report written to {output_file}")
        return str(output_file.resolve())

    def _prepare_report_data(self, batch: BatchReport) -> Dict[str, Any]:
        """Prepare data structure for HTML template rendering."""
        stats = self._calculate_statistics(batch)
        summary = batch.get_summary()

        return {
            'report_title': 'PHP Code Analysis Report',
            'generated_at': datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'analysis_summary': {
                'total_issues': summary['total_issues'],
                'by_severity': stats['by_severity'],
                'by_category': summary['issue_distribution'],
                'top_cwe_ids': stats['top_cwe_ids'],
                'files_with_issues': stats['files_with_issues'],
                'average_quality_score': summary['average_quality_score'],
                'quality_grade': summary['quality_grade'],
                'analysis_duration': round(summary['total_execution_time'], 2)
            },
            'severity_levels': SEVERITY_LEVELS,
            'owasp_categories': self._group_by_owasp_category(batch),
            'file_results': self._prepare_file_results(batch),
            'failures': [{'file': report.file_path, 'status': report.status,
                          'reason': report.failure_reason}
                         for report in batch.failed_reports()],
            'total_files': summary['total_files'],
        }

    def _calculate_statistics(self, batch: BatchReport) -> Dict[str, Any]:
        """Calculate summary statistics for the report."""
        cwe_counter: Counter = Counter()
        files_with_issues = 0
        for report in batch.reports.values():
            if report.issues:
                files_with_issues += 1
            for issue in report.issues:
                cwe_counter.update(issue.cwe_ids)

        return {
            'by_severity': batch.get_severity_distribution(),
            'top_cwe_ids': cwe_counter.most_common(5),
            'files_with_issues': files_with_issues
        }

    def _group_by_owasp_category(self, batch: BatchReport) -> Dict[str, Dict[str, Any]]:
        """Group security findings under their OWASP Top 10 category."""
        groups = {
            code: {'title': f"{code}: {info['name']}", 'count': 0, 'issues': []}
            for code, info in OWASP_CATEGORIES.items()
        }

        for report in batch.reports.values():
            for issue in report.get_security_issues():
                code = issue.owasp_category
                if not code:
                    continue
                group = groups.setdefault(code, {
                    'title': get_owasp_category_name(code), 'count': 0, 'issues': []
                })
                group['count'] += 1
                group['issues'].append(_issue_view(issue, report.file_path))

        return groups

    def _prepare_file_results(self, batch: BatchReport) -> List[Dict[str, Any]]:
        """Per-file rows, worst quality score first."""
        results = []
        for report in batch.successful_reports():
            results.append({
                'file': report.file_path,
                'quality_score': report.get_quality_score(),
                'security_score': report.get_security_score(),
                'partial': report.partial,
                'parse_errors': report.parse_errors,
                'issue_count': len(report.issues),
                'issues': [_issue_view(issue, report.file_path) for issue in report.issues]
            })
        results.sort(key=lambda row: row['quality_score'])
        return results

    def _get_html_template(self) -> Any:
        """Get the HTML template for report generation."""

        template_content = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ report_title }}</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               line-height: 1.5; color: #333; background-color: #f5f5f5; margin: 0; }
        .header { background: #2c3e50; color: white; padding: 1.5rem; text-align: center; }
        .container { max-width: 1200px; margin: 0 auto; padding: 1.5rem; }
        .summary-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr)); gap: 1rem; }
        .summary-card { background: white; border-radius: 6px; padding: 1rem; text-align: center; }
        .section { background: white; border-radius: 6px; margin-top: 1.5rem; padding: 1rem 1.5rem; }
        .issue { border-left: 4px solid #999; padding: 0.5rem 1rem; margin: 0.75rem 0; background: #fafafa; }
        .issue.critical { border-color: #8e0000; }
        .issue.high { border-color: #e74c3c; }
        .issue.medium { border-color: #f39c12; }
        .issue.low { border-color: #3498db; }
        .issue.info { border-color: #95a5a6; }
        .badge { display: inline-block; padding: 0 0.5rem; border-radius: 3px; font-size: 0.8rem;
                 background: #eee; margin-right: 0.5rem; }
        .code-snippet { font-family: monospace; white-space: pre; background: #272822; color: #f8f8f2;
                        padding: 0.5rem; overflow-x: auto; }
        table { width: 100%; border-collapse: collapse; }
        th, td { text-align: left; padding: 0.4rem; border-bottom: 1px solid #eee; }
    </style>
</head>
<body>
    <div class="header">
        <h1>Periksa PHP Code Analysis Report</h1>
        <div>Generated on {{ generated_at }}</div>
    </div>

    <div class="container">
        <div class="summary-grid">
            <div class="summary-card"><h3>{{ total_files }}</h3><p>Files Analyzed</p></div>
            <div class="summary-card"><h3>{{ analysis_summary.total_issues }}</h3><p>Total Issues</p></div>
            <div class="summary-card"><h3>{{ analysis_summary.average_quality_score }}</h3>
                <p>Quality Score ({{ analysis_summary.quality_grade }})</p></div>
            {% for level in severity_levels %}
            <div class="summary-card"><h3>{{ analysis_summary.by_severity.get(level, 0) }}</h3>
                <p>{{ level|capitalize }}</p></div>
            {% endfor %}
        </div>

        {% if analysis_summary.top_cwe_ids %}
        <div class="section">
            <h2>Top CWE Identifiers</h2>
            {% for cwe_id, count in analysis_summary.top_cwe_ids %}
            <span class="badge">CWE-{{ cwe_id }} ({{ count }})</span>
            {% endfor %}
        </div>
        {% endif %}

        <div class="section">
            <h2>OWASP Top 10 Categories</h2>
            {% for code, category in owasp_categories.items() %}
            {% if category.count > 0 %}
            <h3>{{ category.title }} ({{ category.count }})</h3>
            {% for issue in category.issues %}
            <div class="issue {{ issue.severity }}">
                <strong>{{ issue.title }}</strong>
                <div>
                    <span class="badge">{{ issue.severity }}</span>
                    <span class="badge">{{ issue.location }}</span>
                    {% for cwe_id in issue.cwe_ids %}<span class="badge">CWE-{{ cwe_id }}</span>{% endfor %}
                </div>
                <p>{{ issue.description }}</p>
                {% if issue.code_snippet %}<div class="code-snippet">{{ issue.code_snippet }}</div>{% endif %}
            </div>
            {% endfor %}
            {% endif %}
            {% endfor %}
        </div>

        <div class="section">
            <h2>Files</h2>
            <table>
                <tr><th>File</th><th>Quality</th><th>Security</th><th>Issues</th></tr>
                {% for row in file_results %}
                <tr>
                    <td>{{ row.file }}{% if row.partial %} (partial){% endif %}</td>
                    <td>{{ row.quality_score }}</td>
                    <td>{{ row.security_score }}</td>
                    <td>{{ row.issue_count }}</td>
                </tr>
                {% endfor %}
            </table>
            {% for row in file_results %}
            {% if row.issues %}
            <h3>{{ row.file }}</h3>
            {% for issue in row.issues %}
            <div class="issue {{ issue.severity }}">
                <strong>{{ issue.title }}</strong>
                <span class="badge">{{ issue.category }}</span>
                <span class="badge">line {{ issue.line }}</span>
                <span class="badge">{{ issue.rule_id }}</span>
                <p>{{ issue.description }}</p>
                {% for suggestion in issue.suggestions %}<div>&rarr; {{ suggestion }}</div>{% endfor %}
            </div>
            {% endfor %}
            {% endif %}
            {% endfor %}
        </div>

        {% if failures %}
        <div class="section">
            <h2>Failed Files</h2>
            <table>
                <tr><th>File</th><th>Status</th><th>Reason</th></tr>
                {% for failure in failures %}
                <tr><td>{{ failure.file }}</td><td>{{ failure.status }}</td><td>{{ failure.reason }}</td></tr>
                {% endfor %}
            </table>
        </div>
        {% endif %}
    </div>
</body>
</html>"""

        env = Environment(loader=BaseLoader(), autoescape=True)
        return env.from_string(template_content)


def _as_batch(analysis_results: ReportInput) -> BatchReport:
    if isinstance(analysis_results, BatchReport):
        return analysis_results
    return BatchReport(dict(analysis_results))


def _issue_view(issue, file_path: str) -> Dict[str, Any]:
    return {
        'title': issue.title,
        'description': issue.description,
        'severity': issue.severity,
        'category': issue.category,
        'rule_id': issue.rule_id,
        'line': issue.line,
        'file': file_path,
        'location': issue.location_string if issue.file_path else f"{file_path}:{issue.line}",
        'cwe_ids': list(issue.cwe_ids),
        'suggestions': list(issue.suggestions),
        'code_snippet': issue.code_snippet or ''
    }
