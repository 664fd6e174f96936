import pytest

from rules.owasp_rules import (
    OWASP_CATEGORIES,
    VULNERABILITY_PROFILES,
    enrich_issue,
    get_owasp_category_name,
    get_profiles_by_category,
)
from rules import get_module_info
from rules.risk_scorer import RiskFactors, RiskScorer, _round_half_up
from conftest import make_issue


class TestRiskScorer:
    """Test the CVSS-like risk scorer."""

    def test_network_exploitable_high_impact_is_critical(self):
        factors = RiskFactors(
            attack_vector='network',
            attack_complexity='low',
            privileges_required='none',
            user_interaction='none',
            confidentiality_impact='high',
            integrity_impact='high',
            availability_impact='low'
        )
        scorer = RiskScorer()
        assessment = scorer.assess(factors)

        assert assessment.score == 10.0
        assert assessment.severity == 'critical'
        assert assessment.severity in ('high', 'critical')

    def test_score_is_clamped_and_rounded(self):
        scorer = RiskScorer()
        factors = RiskFactors(
            attack_vector='physical',
            attack_complexity='high',
            privileges_required='high',
            user_interaction='required',
            confidentiality_impact='none',
            integrity_impact='none',
            availability_impact='none'
        )
        score = scorer.calculate_score(factors)
        assert score == pytest.approx(3.8, abs=0.1)
        assert scorer.severity_for_score(score) == 'low'

    def test_half_up_rounding(self):
        assert _round_half_up(2.25) == 2.3
        assert _round_half_up(0.05) == 0.1
        assert _round_half_up(7.04) == 7.0

    def test_score_has_one_decimal(self):
        factors = RiskFactors(
            attack_vector='local',
            attack_complexity='high',
            privileges_required='high',
            user_interaction='required',
            confidentiality_impact='none',
            integrity_impact='none',
            availability_impact='none'
        )
        # (0.55 + 0.44 + 0.27 + 0.62) * 2.5 = 4.7
        assert RiskScorer().calculate_score(factors) == 4.7

    @pytest.mark.parametrize('score,severity', [
        (10.0, 'critical'),
        (9.0, 'critical'),
        (8.9, 'high'),
        (7.0, 'high'),
        (6.9, 'medium'),
        (4.0, 'medium'),
        (3.9, 'low'),
        (0.1, 'low'),
        (0.0, 'info'),
    ])
    def test_severity_bands(self, score, severity):
        assert RiskScorer.severity_for_score(score) == severity

    def test_unknown_factor_values_use_most_severe_weight(self):
        scorer = RiskScorer()
        unknown = RiskFactors(attack_vector='satellite')
        assert scorer.calculate_score(unknown) == scorer.calculate_score(RiskFactors())

    def test_priority_bonuses(self):
        plain = RiskFactors(fix_complexity='high')
        boosted = plain.with_updates(exploitable=True, known_exploits=True, user_reachable=True, fix_complexity='low')
        assert RiskScorer.calculate_priority(5.0, plain) == 50
        assert RiskScorer.calculate_priority(5.0, boosted) == 50 + 20 + 30 + 15 + 10

    def test_assess_vulnerability_uses_profile(self):
        scorer = RiskScorer()
        sql = scorer.assess_vulnerability('sql_injection')
        xss = scorer.assess_vulnerability('xss')
        assert sql.priority > xss.priority
        assert scorer.assess_vulnerability('unknown_type').factors == RiskFactors()

    def test_assess_vulnerability_overrides(self):
        scorer = RiskScorer()
        local = scorer.assess_vulnerability('sql_injection', attack_vector='physical', attack_complexity='high')
        assert local.score < scorer.assess_vulnerability('sql_injection').score

    def test_factors_from_dict_ignores_unknown_keys(self):
        factors = RiskFactors.from_dict({'attack_vector': 'local', 'color': 'red'})
        assert factors.attack_vector == 'local'

    def test_sort_by_priority_is_stable(self):
        items = [('a', 1), ('b', 3), ('c', 1), ('d', 3)]
        ordered = RiskScorer.sort_by_priority(items, key=lambda item: item[1])
        assert [name for name, _ in ordered] == ['b', 'd', 'a', 'c']

    def test_false_positive_rate(self):
        assert RiskScorer.estimate_false_positive_rate([]) == 0.0
        assert RiskScorer.estimate_false_positive_rate([0.95, 0.5, 0.6, 1.0]) == 50.0

    def test_coverage(self):
        assert RiskScorer.calculate_coverage(3, 4) == 75.0
        assert RiskScorer.calculate_coverage(1, 0) == 0.0


class TestOwaspMapping:
    """Test OWASP metadata helpers."""

    def test_all_ten_categories(self):
        assert sorted(OWASP_CATEGORIES) == [f"A{number:02d}" for number in range(1, 11)]
        assert get_owasp_category_name('A03') == 'Injection'
        assert get_owasp_category_name('') == ''

    def test_profiles_map_to_known_categories(self):
        for profile in VULNERABILITY_PROFILES.values():
            assert profile.owasp_category in OWASP_CATEGORIES
            assert profile.cwe_ids
        assert {profile.vulnerability_type for profile in get_profiles_by_category('A03')} >= {
            'sql_injection', 'command_injection', 'code_injection'}

    def test_module_info(self):
        info = get_module_info()
        assert info['owasp_version'] == '2021'
        assert info['total_categories'] == 10
        assert info['vulnerability_profiles'] == len(VULNERABILITY_PROFILES)

    def test_enrich_issue(self):
        issue = make_issue(category='security', owasp_category='A03',
                           metadata={'vulnerability_type': 'sql_injection'})
        enrich_issue(issue)
        assert issue.metadata['owasp_name'] == 'Injection'
        assert issue.metadata['references']
        assert issue.cwe_ids == VULNERABILITY_PROFILES['sql_injection'].cwe_ids
