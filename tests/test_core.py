from pathlib import Path

import pytest

from core import (
    Analyzer,
    AnalyzerRegistry,
    AnalyzerResult,
    Config,
    ConfigurationError,
    Issue,
    RegistryLockedError,
)
from conftest import StaticAnalyzer, make_issue


class TestIssue:
    """Test the Issue model."""

    def test_invalid_severity_rejected(self):
        with pytest.raises(ValueError):
            make_issue(severity='urgent')

    def test_invalid_category_rejected(self):
        with pytest.raises(ValueError):
            make_issue(category='misc')

    def test_severity_is_normalized(self):
        assert make_issue(severity='HIGH').severity == 'high'

    def test_confidence_is_clamped(self):
        assert make_issue(confidence=1.7).confidence == 1.0
        assert make_issue(confidence=-0.2).confidence == 0.0

    def test_fingerprint_ignores_presentation_fields(self):
        first = make_issue(suggestions=['a'], code_snippet='x')
        second = make_issue(suggestions=['b'], code_snippet='y', confidence=0.3)
        assert first.fingerprint == second.fingerprint

    def test_fingerprint_depends_on_location_and_rule(self):
        base = make_issue()
        assert base.fingerprint != make_issue(line=2).fingerprint
        assert base.fingerprint != make_issue(rule_id='other').fingerprint
        assert base.fingerprint != make_issue(severity='high').fingerprint

    def test_meets_threshold(self):
        issue = make_issue(severity='high')
        assert issue.meets_threshold('medium')
        assert issue.meets_threshold('high')
        assert not issue.meets_threshold('critical')

    def test_location_string(self):
        assert make_issue(file_path='a.php', line=3).location_string == 'a.php:3'
        assert make_issue(file_path='a.php', line=3, column=7).location_string == 'a.php:3:7'
        assert make_issue(file_path='a.php', line=3, end_line=5).location_string == 'a.php:3-5'

    def test_dict_conversion_keeps_identity(self):
        issue = make_issue(owasp_category='A03', cwe_ids=[89], tags=['security'], category='security')
        restored = Issue.from_dict(issue.to_dict())
        assert restored.id == issue.id
        assert restored.cwe_ids == [89]
        assert restored.owasp_category == 'A03'


class TestAnalyzerResult:
    """Test AnalyzerResult."""

    def test_failure_result(self):
        result = AnalyzerResult.failure('security', 'a.php', 'boom', 0.5)
        assert not result.success
        assert result.errors == ['boom']
        assert result.issues == []

    def test_warnings_do_not_fail(self):
        result = AnalyzerResult('quality', 'a.php')
        result.add_warning('rule failed')
        assert result.success

    def test_summary_counts(self):
        result = AnalyzerResult('quality', 'a.php', issues=[make_issue(), make_issue(severity='low')])
        summary = result.get_summary()
        assert summary['total_issues'] == 2
        assert summary['issues_by_severity']['medium'] == 1
        assert summary['issues_by_severity']['low'] == 1


class TestConfig:
    """Test configuration loading and validation."""

    def test_defaults(self):
        config = Config()
        assert config.get_risk_threshold() == 'medium'
        assert config.get_cache_capacity() == 1000
        assert config.get_worker_count() == 4
        assert config.get_per_file_timeout() == 30.0
        assert '.php' in config.get_file_extensions()
        assert config.is_analyzer_enabled('security')

    def test_yaml_file_is_merged(self, tmp_path):
        path = tmp_path / 'periksa.yaml'
        path.write_text(
            "analysis:\n"
            "  risk_threshold: high\n"
            "  worker_count: 2\n"
            "enabled_analyzers:\n"
            "  performance: false\n"
            "rules:\n"
            "  line_length:\n"
            "    max_length: 100\n",
            encoding='utf-8'
        )
        config = Config(str(path))
        assert config.get_risk_threshold() == 'high'
        assert config.get_worker_count() == 2
        assert config.get_cache_capacity() == 1000
        assert not config.is_analyzer_enabled('performance')
        assert config.get_rule_config('line_length') == {'max_length': 100}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Config(str(tmp_path / 'missing.yaml'))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'broken.yaml'
        path.write_text("analysis: [unclosed\n", encoding='utf-8')
        with pytest.raises(ConfigurationError):
            Config(str(path))

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- a\n- b\n", encoding='utf-8')
        with pytest.raises(ConfigurationError):
            Config(str(path))

    @pytest.mark.parametrize('overrides', [
        {'analysis': {'risk_threshold': 'severe'}},
        {'analysis': {'cache_capacity': 0}},
        {'analysis': {'per_file_timeout_ms': -5}},
        {'analysis': {'worker_count': -1}},
        {'analysis': {'confidence_threshold': 1.5}},
        {'enabled_analyzers': {'security': 'yes'}},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            Config(overrides=overrides)

    def test_setters(self):
        config = Config()
        config.set_risk_threshold('critical')
        config.set_worker_count(8)
        config.set_per_file_timeout_ms(200)
        assert config.get_risk_threshold() == 'critical'
        assert config.get_worker_count() == 8
        assert config.get_per_file_timeout() == pytest.approx(0.2)
        with pytest.raises(ConfigurationError):
            config.set_risk_threshold('whatever')

    def test_rule_config_is_a_copy(self):
        config = Config(overrides={'rules': {'nested_loops': {'max_depth': 3}}})
        rule_config = config.get_rule_config('nested_loops')
        rule_config['max_depth'] = 9
        assert config.get_rule_config('nested_loops')['max_depth'] == 3

    def test_exclusions(self):
        config = Config()
        config.set_exclusions(['legacy/*'])
        assert config.should_exclude_file(Path('project/vendor/autoload.php'))
        assert config.should_exclude_file(Path('legacy/old.php'))
        assert config.should_exclude_file(Path('assets/app.min.php'))
        assert not config.should_exclude_file(Path('src/index.php'))

    def test_severity_threshold(self):
        config = Config()
        assert config.meets_severity_threshold('high')
        assert config.meets_severity_threshold('medium')
        assert not config.meets_severity_threshold('low')


class TestAnalyzerRegistry:
    """Test the analyzer registry."""

    def test_register_and_order(self):
        registry = AnalyzerRegistry()
        registry.register(StaticAnalyzer('one'))
        registry.register(StaticAnalyzer('two'))
        assert registry.names() == ['one', 'two']
        assert 'one' in registry
        assert len(registry) == 2

    def test_replacing_keeps_single_entry(self):
        registry = AnalyzerRegistry()
        first = StaticAnalyzer('one')
        second = StaticAnalyzer('one')
        registry.register(first)
        registry.register(second)
        assert len(registry) == 1
        assert registry.get('one') is second

    def test_rejects_non_analyzer(self):
        with pytest.raises(ConfigurationError):
            AnalyzerRegistry().register(object())

    def test_unregister(self):
        registry = AnalyzerRegistry()
        registry.register(StaticAnalyzer('one'))
        assert registry.unregister('one')
        assert not registry.unregister('one')

    def test_locked_registry_rejects_mutation(self):
        registry = AnalyzerRegistry()
        registry.register(StaticAnalyzer('one'))
        with registry.locked():
            assert registry.is_locked
            with pytest.raises(RegistryLockedError):
                registry.register(StaticAnalyzer('two'))
            with pytest.raises(RegistryLockedError):
                registry.unregister('one')
        assert not registry.is_locked
        registry.register(StaticAnalyzer('two'))
        assert registry.names() == ['one', 'two']

    def test_supports_file_type(self):
        analyzer = StaticAnalyzer()
        assert isinstance(analyzer, Analyzer)
        assert analyzer.supports_file_type('php')
        assert analyzer.supports_file_type('.PHP')
        assert not analyzer.supports_file_type('py')
