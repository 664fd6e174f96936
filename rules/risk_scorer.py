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
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Any, Optional, Sequence

logger = logging.getLogger(__name__)

ATTACK_VECTOR_WEIGHTS = {'network': 0.85, 'adjacent': 0.62, 'local': 0.55, 'physical': 0.2}
ATTACK_COMPLEXITY_WEIGHTS = {'low': 0.77, 'high': 0.44}
PRIVILEGES_REQUIRED_WEIGHTS = {'none': 0.85, 'low': 0.62, 'high': 0.27}
USER_INTERACTION_WEIGHTS = {'none': 0.85, 'required': 0.62}
IMPACT_WEIGHTS = {'none': 0.0, 'low': 0.22, 'high': 0.56}
FIX_COMPLEXITY_BONUS = {'low': 10, 'medium': 5, 'high': 0}

SCORE_MULTIPLIER = 2.5
MAX_SCORE = 10.0

# Lower bound of each band, highest first
SEVERITY_BANDS = [
    (9.0, 'critical'),
    (7.0, 'high'),
    (4.0, 'medium'),
    (0.1, 'low')
]

HIGH_CONFIDENCE = 0.9


@dataclass(frozen=True)
class RiskFactors:
    """
    Categorical attributes of a vulnerability finding.

    Unknown values fall back to the most severe weight of each axis.
    """
    attack_vector: str = 'network'
    attack_complexity: str = 'low'
    privileges_required: str = 'none'
    user_interaction: str = 'none'
    confidentiality_impact: str = 'high'
    integrity_impact: str = 'high'
    availability_impact: str = 'low'
    exploitable: bool = False
    known_exploits: bool = False
    user_reachable: bool = False
    fix_complexity: str = 'medium'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RiskFactors':
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})

    def with_updates(self, **changes) -> 'RiskFactors':
        return replace(self, **changes)


@dataclass
class RiskAssessment:
    """Score, severity band and sort priority for one finding."""
    score: float
    severity: str
    priority: int
    factors: RiskFactors = field(default_factory=RiskFactors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'severity': self.severity,
            'priority': self.priority
        }


# Default exploitability profiles for the vulnerability types the PHP rules report
DEFAULT_PROFILES = {
    'sql_injection': RiskFactors(
        confidentiality_impact='high', integrity_impact='high', availability_impact='low',
        exploitable=True, known_exploits=True, user_reachable=True, fix_complexity='low'
    ),
    'command_injection': RiskFactors(
        confidentiality_impact='high', integrity_impact='high', availability_impact='high',
        exploitable=True, known_exploits=True, user_reachable=True, fix_complexity='medium'
    ),
    'code_injection': RiskFactors(
        confidentiality_impact='high', integrity_impact='high', availability_impact='high',
        exploitable=True, known_exploits=True, user_reachable=True, fix_complexity='medium'
    ),
    'file_inclusion': RiskFactors(
        confidentiality_impact='high', integrity_impact='high', availability_impact='low',
        exploitable=True, known_exploits=True, user_reachable=True, fix_complexity='low'
    ),
    'path_traversal': RiskFactors(
        confidentiality_impact='high', integrity_impact='low', availability_impact='none',
        exploitable=True, user_reachable=True, fix_complexity='low'
    ),
    'xss': RiskFactors(
        user_interaction='required', confidentiality_impact='low', integrity_impact='low',
        availability_impact='none', exploitable=True, known_exploits=True, user_reachable=True,
        fix_complexity='low'
    ),
    'insecure_deserialization': RiskFactors(
        attack_complexity='high', confidentiality_impact='high', integrity_impact='high',
        availability_impact='high', exploitable=True, user_reachable=True, fix_complexity='medium'
    ),
    'weak_cryptography': RiskFactors(
        attack_complexity='high', confidentiality_impact='high', integrity_impact='none',
        availability_impact='none', fix_complexity='medium'
    ),
    'hardcoded_credentials': RiskFactors(
        attack_vector='local', confidentiality_impact='high', integrity_impact='high',
        availability_impact='none', fix_complexity='low'
    )
}


def _round_half_up(value: float, digits: int = 1) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class RiskScorer:
    """
    CVSS-like scorer for security findings.

    Four exploitability weights and three impact weights are summed, scaled
    by 2.5 and clamped to 10. Priority is an integer used only for ordering.
    """

    def __init__(self, profiles: Optional[Dict[str, RiskFactors]] = None):
        self.profiles = dict(DEFAULT_PROFILES)
        if profiles:
            self.profiles.update(profiles)

    def calculate_score(self, factors: RiskFactors) -> float:
        """
        Calculate the 0-10 risk score.

        Args:
            factors (RiskFactors): Categorical vulnerability attributes

        Returns:
            float: Score rounded to one decimal place
        """
        base = (
            ATTACK_VECTOR_WEIGHTS.get(factors.attack_vector, ATTACK_VECTOR_WEIGHTS['network'])
            + ATTACK_COMPLEXITY_WEIGHTS.get(factors.attack_complexity, ATTACK_COMPLEXITY_WEIGHTS['low'])
            + PRIVILEGES_REQUIRED_WEIGHTS.get(factors.privileges_required, PRIVILEGES_REQUIRED_WEIGHTS['none'])
            + USER_INTERACTION_WEIGHTS.get(factors.user_interaction, USER_INTERACTION_WEIGHTS['none'])
        )
        impact = (
            IMPACT_WEIGHTS.get(factors.confidentiality_impact, IMPACT_WEIGHTS['high'])
            + IMPACT_WEIGHTS.get(factors.integrity_impact, IMPACT_WEIGHTS['high'])
            + IMPACT_WEIGHTS.get(factors.availability_impact, IMPACT_WEIGHTS['low'])
        )
        return min(MAX_SCORE, _round_half_up((base + impact) * SCORE_MULTIPLIER))

    @staticmethod
    def severity_for_score(score: float) -> str:
        for lower_bound, severity in SEVERITY_BANDS:
            if score >= lower_bound:
                return severity
        return 'info'

    @staticmethod
    def calculate_priority(score: float, factors: RiskFactors) -> int:
        priority = score * 10
        if factors.exploitable:
            priority += 20
        if factors.known_exploits:
            priority += 30
        if factors.user_reachable:
            priority += 15
        priority += FIX_COMPLEXITY_BONUS.get(factors.fix_complexity, FIX_COMPLEXITY_BONUS['medium'])
        return int(priority)

    def assess(self, factors: RiskFactors) -> RiskAssessment:
        score = self.calculate_score(factors)
        return RiskAssessment(
            score=score,
            severity=self.severity_for_score(score),
            priority=self.calculate_priority(score, factors),
            factors=factors
        )

    def get_profile(self, vulnerability_type: str) -> RiskFactors:
        """Default factors for a vulnerability type, or the generic profile."""
        return self.profiles.get(vulnerability_type, RiskFactors())

    def assess_vulnerability(self, vulnerability_type: str, **overrides) -> RiskAssessment:
        factors = self.get_profile(vulnerability_type)
        if overrides:
            factors = factors.with_updates(**overrides)
        return self.assess(factors)

    @staticmethod
    def sort_by_priority(items: Sequence[Any], key=None) -> List[Any]:
        """
        Order findings by descending priority; ties keep their input order.

        Args:
            items: Findings to order
            key: Callable returning the priority of a finding

        Returns:
            list: New list in priority order
        """
        key = key or (lambda item: item.priority)
        return sorted(items, key=lambda item: -key(item))

    @staticmethod
    def estimate_false_positive_rate(confidences: Sequence[float]) -> float:
        """Percentage of findings below the high-confidence mark."""
        if not confidences:
            return 0.0
        uncertain = len([value for value in confidences if value < HIGH_CONFIDENCE])
        return round(uncertain / len(confidences) * 100, 2)

    @staticmethod
    def calculate_coverage(executed: int, registered: int) -> float:
        """Percentage of registered detectors that actually ran."""
        if registered <= 0:
            return 0.0
        return round(executed / registered * 100, 2)
