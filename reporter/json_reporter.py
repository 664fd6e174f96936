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

import json
import logging
from pathlib import Path
from typing import Any, Dict

from reporter.html_reporter import ReportInput, _as_batch

logger = logging.getLogger(__name__)


class JSONReporter:
    """Writes the batch report as a JSON document."""

    def __init__(self, indent: int = 2):
        self.indent = indent

    def render(self, analysis_results: ReportInput) -> str:
        data: Dict[str, Any] = _as_batch(analysis_results).to_dict()
        return json.dumps(data, indent=self.indent, default=str)

    def generate_report(self, analysis_results: ReportInput, output_path: str) -> str:
        """
        Generate JSON report from analysis results.

        Returns:
            str: Path to the generated JSON report

        Raises:
            IOError: If unable to write to output path
        """
        content = self.render(analysis_results)
        output_file = Path(output_path)
        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            output_file.write_text(content, encoding='utf-8')
        except OSError as e:
            raise IOError(f"Failed to generate JSON report: {e}") from e

        logger.info(f"JSON report written to {output_file}")
        return str(output_file.resolve())
