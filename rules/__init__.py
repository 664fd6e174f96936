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

from .rule_engine import (
    RuleEngine,
    SecurityRuleEngine,
    RuleValidator,
    RuleEngineStats,
    RuleExecutionStatus,
    RuleExecutionResult
)

from .owasp_rules import (
    OWASP_CATEGORIES,
    VULNERABILITY_PROFILES,
    VulnerabilityProfile,
    enrich_issue,
    get_owasp_category,
    get_owasp_category_name,
    get_vulnerability_profile,
    get_profiles_by_category
)

from .risk_scorer import RiskScorer, RiskFactors, RiskAssessment, DEFAULT_PROFILES

__all__ = [
    # Rule Engine
    'RuleEngine',
    'SecurityRuleEngine',
    'RuleValidator',
    'RuleEngineStats',
    'RuleExecutionStatus',
    'RuleExecutionResult',

    # OWASP Rules
    'OWASP_CATEGORIES',
    'VULNERABILITY_PROFILES',
    'VulnerabilityProfile',
    'enrich_issue',
    'get_owasp_category',
    'get_owasp_category_name',
    'get_vulnerability_profile',
    'get_profiles_by_category',

    # Risk Scoring
    'RiskScorer',
    'RiskFactors',
    'RiskAssessment',
    'DEFAULT_PROFILES'
]

# Module metadata
MODULE_VERSION = "1.0.0"
SUPPORTED_OWASP_VERSION = "2021"
TOTAL_RULE_CATEGORIES = 10


def get_module_info() -> dict:
    """
    Get information about the rules module.

    Returns:
        dict: Module information and statistics
    """
    return {
        'version': MODULE_VERSION,
        'owasp_version': SUPPORTED_OWASP_VERSION,
        'total_categories': TOTAL_RULE_CATEGORIES,
        'vulnerability_profiles': len(VULNERABILITY_PROFILES),
        'categories': list(OWASP_CATEGORIES.keys())
    }
