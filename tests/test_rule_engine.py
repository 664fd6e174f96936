import pytest

from core import RuleConfigError
from language_modules.base_analyzer import (
    BaseRule,
    BaseSecurityRule,
    OwaspCategory,
    RiskLevel,
    RiskRecord,
    RuleContext,
)
from parsing.parse_cache import ParseCache
from parsing.traversal import TraversalContext
from rules.rule_engine import RuleEngine, RuleEngineStats, RuleExecutionStatus, SecurityRuleEngine
from conftest import make_issue


class RecordingRule(BaseRule):
    supported_node_types = ['statement']
    category = 'quality'
    DEFAULT_CONFIG = {'limit': 3}

    def __init__(self, rule_id, severity='medium', log=None, config=None):
        self.rule_id = rule_id
        self.name = rule_id
        self.severity = severity
        self.log = log if log is not None else []
        super().__init__(config)

    def validate_config(self, config):
        errors = super().validate_config(config)
        if 'limit' in config and not isinstance(config['limit'], int):
            errors.append('limit must be an integer')
        return errors

    def validate(self, node, context):
        self.log.append(self.rule_id)
        return [self.create_issue(f"{self.rule_id} finding", 'found', node, context)]


class ExplodingRule(RecordingRule):
    def validate(self, node, context):
        raise RuntimeError('rule bug')


class RiskRule(BaseSecurityRule):
    supported_node_types = ['statement']
    vulnerability_type = 'sql_injection'
    cwe_ids = [89]

    def __init__(self, rule_id, risk_level, log, owasp=OwaspCategory.A03_INJECTION, config=None):
        self.rule_id = rule_id
        self.name = rule_id
        self.risk_level = risk_level
        self.owasp_category = owasp
        self.log = log
        super().__init__(config)

    def validate(self, node, context):
        self.log.append(self.rule_id)
        risk = RiskRecord()
        risk.add_factor('direct_input', 0.7)
        if not self.meets_confidence(risk):
            return []
        return [self.create_security_issue(f"{self.rule_id} finding", 'found', node, context, risk)]


@pytest.fixture
def rule_context(line_provider):
    parsed = ParseCache(line_provider).parse('src/app.php', 'first\nsecond')
    return parsed.tree.root.children[0], RuleContext(parsed, TraversalContext())


class TestRuleEngine:
    """Test rule registration and dispatch."""

    def test_priority_then_registration_order(self, rule_context):
        node, context = rule_context
        log = []
        engine = RuleEngine()
        engine.add_rule(RecordingRule('low_one', 'low', log))
        engine.add_rule(RecordingRule('critical_one', 'critical', log))
        engine.add_rule(RecordingRule('low_two', 'low', log))
        engine.add_rule(RecordingRule('high_one', 'high', log))

        issues = engine.validate_node(node, context)

        assert log == ['critical_one', 'high_one', 'low_one', 'low_two']
        assert [issue.rule_id for issue in issues] == log

    def test_rules_only_see_supported_nodes(self, rule_context):
        node, context = rule_context
        log = []
        engine = RuleEngine()
        engine.add_rule(RecordingRule('r', log=log))
        assert engine.validate_node(context.parsed_file.tree.root, context) == []
        assert log == []

    def test_invalid_config_rejects_rule(self):
        engine = RuleEngine()
        rule = RecordingRule('strict')
        assert not engine.add_rule(rule, {'limit': 'many'})
        assert not rule.is_enabled()
        assert engine.get_rule('strict') is None
        assert engine.rejected_rules['strict'] == ['limit must be an integer']

    def test_configure_raises_on_invalid_config(self):
        with pytest.raises(RuleConfigError) as excinfo:
            RecordingRule('strict', config={'limit': 'many'})
        assert excinfo.value.errors == ['limit must be an integer']

    def test_config_merges_onto_defaults(self):
        engine = RuleEngine()
        rule = RecordingRule('r')
        assert engine.add_rule(rule, {'limit': 7, 'enabled': False})
        assert rule.get_config_value('limit') == 7
        assert not rule.is_enabled()
        assert engine.get_enabled_rules() == []

    def test_missing_rule_id_fails_validation(self):
        engine = RuleEngine()
        assert not engine.add_rule(RecordingRule(''))
        assert engine.get_rules() == []

    def test_failing_rule_does_not_stop_others(self, rule_context):
        node, context = rule_context
        log = []
        engine = RuleEngine()
        engine.add_rule(ExplodingRule('broken', 'critical', log))
        engine.add_rule(RecordingRule('fine', 'low', log))
        stats = RuleEngineStats()

        issues = engine.validate_node(node, context, stats)

        assert [issue.rule_id for issue in issues] == ['fine']
        assert stats.to_dict()['rule_failures'] == 1
        result = engine.execute_rule(engine.get_rule('broken'), node, context)
        assert result.status == RuleExecutionStatus.FAILED
        assert 'rule bug' in result.error_message

    def test_disable_and_remove(self, rule_context):
        node, context = rule_context
        engine = RuleEngine()
        engine.add_rule(RecordingRule('a'))
        engine.add_rule(RecordingRule('b'))
        engine.disable_rule('a')
        assert [issue.rule_id for issue in engine.validate_node(node, context)] == ['b']
        assert engine.remove_rule('b')
        assert engine.validate_node(node, context) == []
        assert not engine.remove_rule('b')

    def test_enable_rule(self, rule_context):
        node, context = rule_context
        engine = RuleEngine()
        engine.add_rule(RecordingRule('a'))
        engine.disable_rule('a')
        assert engine.enable_rule('a')
        assert [issue.rule_id for issue in engine.validate_node(node, context)] == ['a']
        assert not engine.enable_rule('missing')

    def test_statistics(self, rule_context):
        node, context = rule_context
        engine = RuleEngine()
        engine.add_rule(RecordingRule('a'))
        stats = RuleEngineStats()
        engine.validate_node(node, context, stats)
        engine.merge_stats(stats)
        statistics = engine.get_statistics()
        assert statistics['total_rules'] == 1
        assert statistics['execution']['rules_executed'] == 1
        engine.reset_statistics()
        assert engine.get_statistics()['execution']['rules_executed'] == 0


class TestSecurityRuleEngine:
    """Test risk-ordered security rule dispatch."""

    def test_critical_rules_run_before_low(self, rule_context):
        node, context = rule_context
        log = []
        engine = SecurityRuleEngine()
        engine.add_rule(RiskRule('low_risk', RiskLevel.LOW, log))
        engine.add_rule(RiskRule('critical_risk', RiskLevel.CRITICAL, log))
        engine.add_rule(RiskRule('medium_risk', RiskLevel.MEDIUM, log))

        engine.validate_node(node, context)

        assert log == ['critical_risk', 'medium_risk', 'low_risk']

    def test_rejects_non_security_rules(self):
        assert not SecurityRuleEngine().add_rule(RecordingRule('plain'))

    def test_security_issue_metadata(self, rule_context):
        node, context = rule_context
        engine = SecurityRuleEngine()
        engine.add_rule(RiskRule('sqli', RiskLevel.HIGH, []))
        issue = engine.validate_node(node, context)[0]
        assert issue.category == 'security'
        assert issue.severity == 'high'
        assert issue.owasp_category == 'A03'
        assert 'A03' in issue.tags
        assert issue.cwe_ids == [89]
        assert issue.confidence == pytest.approx(0.7)
        assert issue.metadata['vulnerability_type'] == 'sql_injection'

    def test_confidence_threshold_suppresses(self, rule_context):
        node, context = rule_context
        engine = SecurityRuleEngine()
        engine.add_rule(RiskRule('sqli', RiskLevel.HIGH, []), {'confidence_threshold': 0.9})
        assert engine.validate_node(node, context) == []

    def test_invalid_security_config(self):
        engine = SecurityRuleEngine()
        assert not engine.add_rule(RiskRule('sqli', RiskLevel.HIGH, []), {'confidence_threshold': 2})
        assert 'sqli' in engine.rejected_rules

    def test_test_files_are_skipped(self, line_provider):
        parsed = ParseCache(line_provider).parse('tests/UserTest.php', 'x')
        rule = RiskRule('sqli', RiskLevel.HIGH, [])
        assert rule.in_test_code(RuleContext(parsed, TraversalContext()))

    def test_lookup_helpers(self):
        engine = SecurityRuleEngine()
        engine.add_rule(RiskRule('sqli', RiskLevel.HIGH, []))
        engine.add_rule(RiskRule('path', RiskLevel.HIGH, [], owasp=OwaspCategory.A01_BROKEN_ACCESS_CONTROL))
        assert [rule.rule_id for rule in engine.get_rules_by_owasp_category('A01')] == ['path']
        assert len(engine.get_rules_by_vulnerability_type('sql_injection')) == 2

    def test_compliance_score(self):
        engine = SecurityRuleEngine()
        engine.add_rule(RiskRule('sqli', RiskLevel.HIGH, []))

        clean = engine.compliance_score([])
        assert clean['score'] == 100
        assert clean['grade'] == 'A+'
        assert clean['owasp_categories_covered'] == ['A03']
        assert clean['owasp_coverage'] == 10.0

        issues = [make_issue(category='security', severity='high', owasp_category='A03'),
                  make_issue(category='security', severity='medium', owasp_category='A03', line=2),
                  make_issue(category='quality', severity='critical')]
        scored = engine.compliance_score(issues)
        assert scored['total_risk'] == 75
        assert scored['score'] == 25
        assert scored['grade'] == 'F'
        assert scored['owasp_findings'] == {'A03': 2}
