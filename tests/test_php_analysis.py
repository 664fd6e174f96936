import pytest

from core import Config
from engine import create_default_engine
from language_modules.php.parser import PhpAstProvider
from language_modules.php.security_rules import PhpSecurityRule
from conftest import issues_for


@pytest.fixture
def engine():
    return create_default_engine(Config())


def analyze(engine, source, path='app/index.php'):
    return engine.analyze_source(path, source)


class TestPhpParser:
    """Test the tree-sitter backed AST provider."""

    def test_clean_source_has_no_errors(self):
        tree, errors = PhpAstProvider().parse("<?php\n$a = 1;\necho $a;\n")
        assert errors == []
        assert tree.root.type == 'program'
        assert not tree.has_errors
        assert tree.find_all('assignment_expression')

    def test_syntax_error_is_reported_with_line(self):
        tree, errors = PhpAstProvider().parse("<?php\n$a = 1;\n$b = (;\n")
        assert errors
        assert tree.has_errors
        assert errors[0].line >= 2

    def test_positions_are_one_based_lines(self):
        tree, _ = PhpAstProvider().parse("<?php\n\nfoo();\n")
        call = tree.find_all('function_call_expression')[0]
        assert call.start_line == 3
        assert call.text == 'foo()'


class TestSqlInjection:
    """Test SQL injection detection against real PHP sources."""

    def test_concatenated_request_input(self, engine):
        report = analyze(engine, "<?php\nmysqli_query($conn, \"SELECT * FROM users WHERE id = \" . $_GET['id']);\n")

        security = report.get_security_issues()
        assert len(security) == 1
        issue = security[0]
        assert issue.rule_id == 'sql_injection'
        assert issue.severity == 'high'
        assert issue.line == 2
        assert 'A03' in issue.tags
        assert issue.owasp_category == 'A03'
        assert 89 in issue.cwe_ids
        assert issue.confidence >= 0.5

    def test_method_query_with_interpolation(self, engine):
        report = analyze(engine, "<?php\n$pdo->query(\"SELECT * FROM users WHERE name = '$name'\");\n")
        assert len(issues_for(report, 'sql_injection')) == 1

    def test_prepared_statement_is_clean(self, engine):
        source = (
            "<?php\n"
            "$stmt = $pdo->prepare(\"SELECT * FROM users WHERE id = ?\");\n"
            "$stmt->execute([$_GET['id']]);\n"
        )
        assert issues_for(analyze(engine, source), 'sql_injection') == []

    def test_escaped_input_is_clean(self, engine):
        source = "<?php\nmysqli_query($conn, \"SELECT * FROM users WHERE id = \" . intval($_GET['id']));\n"
        assert issues_for(analyze(engine, source), 'sql_injection') == []

    def test_literal_query_is_clean(self, engine):
        source = "<?php\nmysqli_query($conn, \"SELECT * FROM users\");\n"
        assert issues_for(analyze(engine, source), 'sql_injection') == []

    def test_concatenated_prepare_is_medium(self, engine):
        source = "<?php\n$pdo->prepare(\"SELECT * FROM users WHERE id = \" . $id);\n"
        issues = issues_for(analyze(engine, source), 'sql_injection')
        assert len(issues) == 1
        assert issues[0].severity == 'medium'
        assert issues[0].metadata['sink'] == 'prepare'

    def test_sql_text_built_away_from_the_query_call(self, engine):
        source = (
            "<?php\n"
            "$sql = \"SELECT * FROM users WHERE id = \" . $_GET['id'];\n"
            "mysqli_query($conn, $sql);\n"
        )
        issues = issues_for(analyze(engine, source), 'sql_injection')

        found = sorted((issue.line, issue.title) for issue in issues)
        assert found == [(2, 'Potential SQL Injection'), (3, 'SQL Injection')]
        literal = next(issue for issue in issues if issue.line == 2)
        assert literal.metadata['sink'] == 'string'
        assert literal.metadata['keyword'] == 'select'

    def test_interpolated_sql_text_is_flagged(self, engine):
        source = "<?php\n$sql = \"DELETE FROM users WHERE name = '$name'\";\n"
        issues = issues_for(analyze(engine, source), 'sql_injection')
        assert [(issue.line, issue.title) for issue in issues] == [(2, 'Potential SQL Injection')]

    def test_prose_is_not_sql(self, engine):
        source = "<?php\n$message = \"Please select an option for \" . $name;\n"
        assert issues_for(analyze(engine, source), 'sql_injection') == []


class TestSecurityRules:
    """Test the remaining injection, crypto and credential rules."""

    @pytest.mark.parametrize('source,rule_id', [
        ("system(\"ping \" . $_GET['host']);", 'command_injection'),
        ("eval($_POST['code']);", 'code_injection'),
        ("include $_GET['page'];", 'file_inclusion'),
        ("echo file_get_contents('/var/data/' . $_GET['file']);", 'path_traversal'),
        ("echo $_GET['name'];", 'xss'),
        ("$data = unserialize($_COOKIE['data']);", 'insecure_deserialization'),
        ("$hash = md5($password);", 'weak_cryptography'),
        ("$password = \"hunter2secret\";", 'hardcoded_credentials'),
    ])
    def test_rule_detects_vulnerable_code(self, engine, source, rule_id):
        report = analyze(engine, f"<?php\n{source}\n")
        issues = issues_for(report, rule_id)
        assert issues, f"{rule_id} not reported"
        assert all(issue.category == 'security' for issue in issues)
        assert all(issue.line == 2 for issue in issues)

    @pytest.mark.parametrize('source,rule_id', [
        ("system(\"ping \" . escapeshellarg($_GET['host']));", 'command_injection'),
        ("system('uptime');", 'command_injection'),
        ("include 'config/header.php';", 'file_inclusion'),
        ("echo htmlspecialchars($_GET['name'], ENT_QUOTES, 'UTF-8');", 'xss'),
        ("$data = unserialize($raw, ['allowed_classes' => false]);", 'insecure_deserialization'),
        ("$hash = hash('sha256', $value);", 'weak_cryptography'),
        ("$password = \"changeme\";", 'hardcoded_credentials'),
    ])
    def test_rule_ignores_safe_code(self, engine, source, rule_id):
        report = analyze(engine, f"<?php\n{source}\n")
        assert issues_for(report, rule_id) == []

    def test_command_injection_is_critical(self, engine):
        report = analyze(engine, "<?php\nsystem(\"ping \" . $_GET['host']);\n")
        issue = issues_for(report, 'command_injection')[0]
        assert issue.severity == 'critical'
        assert 78 in issue.cwe_ids

    def test_issues_carry_risk_assessment(self, engine):
        report = analyze(engine, "<?php\neval($_POST['code']);\n")
        issue = issues_for(report, 'code_injection')[0]
        assert issue.metadata['owasp_name'] == 'Injection'
        assert 0.0 <= issue.metadata['risk_score'] <= 10.0
        assert issue.metadata['risk_priority'] > 0

    def test_security_issues_ordered_by_risk(self, engine):
        source = (
            "<?php\n"
            "echo $_GET['name'];\n"
            "system(\"ping \" . $_GET['host']);\n"
        )
        rule_ids = [issue.rule_id for issue in analyze(engine, source).get_security_issues()]
        assert rule_ids.index('command_injection') < rule_ids.index('xss')

    def test_test_files_are_suppressed(self, engine):
        source = "<?php\nmysqli_query($conn, \"SELECT * FROM users WHERE id = \" . $_GET['id']);\n"
        report = analyze(engine, source, path='tests/UserTest.php')
        assert report.get_security_issues() == []

    @pytest.mark.parametrize('path', ['tests/helpers.php', 'test/bootstrap.php', '/srv/app/tests/helpers.php'])
    def test_test_directories_are_suppressed(self, engine, path):
        report = analyze(engine, "<?php\neval($_POST['code']);\n", path=path)
        assert report.get_security_issues() == []

    @pytest.mark.parametrize('source', [
        "<?php\nfunction greet($name) {\n    return 'Hello ' . $name;\n}\n",
        "<?php\n$sql = \"SELECT * FROM users WHERE id = \" . $_GET['id'];\nmysqli_query($conn, $sql);\n",
        "<?php\necho \"Hi $name\";\ninclude 'config/header.php';\n",
    ])
    def test_rules_run_without_failures(self, engine, source):
        report = analyze(engine, source)
        warnings = [warning for result in report.analyzer_results for warning in result.warnings]
        assert not [warning for warning in warnings if warning.startswith('Rule failed')]
        assert report.is_successful

    def test_security_rule_requires_check(self):
        with pytest.raises(TypeError):
            PhpSecurityRule()

    def test_test_classes_are_suppressed(self, engine):
        source = (
            "<?php\n"
            "class LoginTest {\n"
            "    public function run() {\n"
            "        eval($_POST['code']);\n"
            "    }\n"
            "}\n"
        )
        assert issues_for(analyze(engine, source), 'code_injection') == []

    def test_confidence_threshold_suppresses_weak_findings(self):
        engine = create_default_engine(Config(overrides={'analysis': {'confidence_threshold': 0.95}}))
        report = analyze(engine, "<?php\n$hash = sha1($value);\n")
        assert issues_for(report, 'weak_cryptography') == []

    def test_security_metadata_reports_compliance(self, engine):
        report = analyze(engine, "<?php\n$a = 1;\n")
        security = next(result for result in report.analyzer_results if result.analyzer_name == 'security')
        assert security.metadata['compliance']['grade'] == 'A+'
        assert security.metadata['false_positive_rate'] == 0.0


class TestQualityRules:
    """Test syntax, quality and performance analyzers on real PHP code."""

    def test_long_line(self, engine):
        numbers = ', '.join(str(number) for number in range(60))
        report = analyze(engine, f"<?php\n$numbers = [{numbers}];\n")
        issues = issues_for(report, 'line_length')
        assert len(issues) == 1
        assert issues[0].line == 2
        assert issues[0].metadata['max_length'] == 120

    def test_line_length_configurable_per_rule(self):
        engine = create_default_engine(Config(overrides={'rules': {'line_length': {'max_length': 400}}}))
        numbers = ', '.join(str(number) for number in range(60))
        report = analyze(engine, f"<?php\n$numbers = [{numbers}];\n")
        assert issues_for(report, 'line_length') == []

    def test_unused_variable(self, engine):
        source = (
            "<?php\n"
            "function compute($a) {\n"
            "    $unused = 5;\n"
            "    return $a * 2;\n"
            "}\n"
        )
        issues = issues_for(analyze(engine, source), 'unused_variable')
        assert [issue.metadata['variable'] for issue in issues] == ['unused']
        assert issues[0].line == 3

    def test_used_variables_are_not_flagged(self, engine):
        source = (
            "<?php\n"
            "function total($items) {\n"
            "    $sum = 0;\n"
            "    foreach ($items as $item) {\n"
            "        $sum += $item;\n"
            "    }\n"
            "    return $sum;\n"
            "}\n"
        )
        names = [issue.metadata['variable'] for issue in issues_for(analyze(engine, source), 'unused_variable')]
        assert 'sum' not in names
        assert 'items' not in names

    def test_nested_loops(self, engine):
        source = (
            "<?php\n"
            "foreach ($a as $x) {\n"
            "    foreach ($b as $y) {\n"
            "        foreach ($c as $z) {\n"
            "            echo $x . $y . $z;\n"
            "        }\n"
            "    }\n"
            "}\n"
        )
        issues = issues_for(analyze(engine, source), 'nested_loops')
        assert len(issues) == 1
        assert issues[0].line == 4
        assert issues[0].metadata['depth'] == 3
        assert issues[0].category == 'performance'

    def test_two_levels_are_allowed(self, engine):
        source = (
            "<?php\n"
            "foreach ($a as $x) {\n"
            "    foreach ($b as $y) {\n"
            "        echo $x . $y;\n"
            "    }\n"
            "}\n"
        )
        assert issues_for(analyze(engine, source), 'nested_loops') == []

    def test_query_in_loop(self, engine):
        source = (
            "<?php\n"
            "foreach ($ids as $id) {\n"
            "    $db->query(\"SELECT 1\");\n"
            "}\n"
        )
        issues = issues_for(analyze(engine, source), 'query_in_loop')
        assert len(issues) == 1
        assert issues[0].metadata['loop_line'] == 2

    def test_size_call_in_loop_condition(self, engine):
        source = (
            "<?php\n"
            "$i = 0;\n"
            "while ($i < count($items)) {\n"
            "    $i++;\n"
            "}\n"
        )
        issues = issues_for(analyze(engine, source), 'loop_condition_size_call')
        assert len(issues) == 1
        assert issues[0].metadata['function'] == 'count'

    def test_empty_catch(self, engine):
        source = (
            "<?php\n"
            "try {\n"
            "    run();\n"
            "} catch (Exception $e) {\n"
            "}\n"
        )
        issues = issues_for(analyze(engine, source), 'empty_catch')
        assert len(issues) == 1
        assert issues[0].line == 4

    def test_deprecated_function(self, engine):
        issues = issues_for(analyze(engine, "<?php\n$found = ereg('^a', $text);\n"), 'deprecated_function')
        assert len(issues) == 1
        assert issues[0].metadata['replacement'] == 'preg_match()'

    def test_parameter_count(self, engine):
        source = "<?php\nfunction many($a, $b, $c, $d, $e, $f, $g) {\n    return $a + $b + $c + $d + $e + $f + $g;\n}\n"
        assert len(issues_for(analyze(engine, source), 'parameter_count')) == 1

    def test_clean_file_scores_full_marks(self, engine):
        source = (
            "<?php\n"
            "function greet($name) {\n"
            "    return 'Hello ' . $name;\n"
            "}\n"
        )
        report = analyze(engine, source)
        assert report.issues == []
        assert report.get_quality_score() == 100


class TestErrorRecovery:
    """Test analysis of files with syntax errors."""

    SOURCE = (
        "<?php\n"
        "mysqli_query($conn, \"SELECT * FROM users WHERE id = \" . $_GET['id']);\n"
        "$a = 1;\n"
        "$b = 2;\n"
        "$broken = (;\n"
        "echo $a;\n"
    )

    def test_partial_analysis_keeps_earlier_findings(self, engine):
        report = analyze(engine, self.SOURCE)

        assert report.partial
        assert report.has_parse_errors
        parse_errors = issues_for(report, 'parse_error')
        assert parse_errors
        assert parse_errors[0].severity == 'critical'

        sql = issues_for(report, 'sql_injection')
        assert len(sql) == 1
        assert sql[0].line == 2

    def test_only_recovering_analyzers_run(self, engine):
        report = analyze(engine, self.SOURCE)
        names = {result.analyzer_name for result in report.analyzer_results}
        assert names == {'syntax', 'security'}
        assert engine.get_stats()['engine']['partial_files'] == 1

    def test_parse_error_lowers_quality_score(self, engine):
        report = analyze(engine, self.SOURCE)
        assert report.get_quality_score() < 100 - 30


class TestDeterminism:
    """Repeated analysis gives identical results."""

    SOURCE = (
        "<?php\n"
        "function load($id) {\n"
        "    $unused = 1;\n"
        "    return mysqli_query($conn, \"SELECT * FROM t WHERE id = \" . $_GET['id']);\n"
        "}\n"
        "echo $_GET['q'];\n"
    )

    def _snapshot(self, report):
        return [(issue.rule_id, issue.line, issue.severity, issue.fingerprint) for issue in report.issues]

    def test_same_engine_same_result(self, engine):
        first = analyze(engine, self.SOURCE)
        second = analyze(engine, self.SOURCE)
        assert self._snapshot(first) == self._snapshot(second)
        assert engine.cache.get_statistics()['cache_hits'] == 1

    def test_fresh_engines_agree(self):
        first = analyze(create_default_engine(Config()), self.SOURCE)
        second = analyze(create_default_engine(Config()), self.SOURCE)
        assert self._snapshot(first) == self._snapshot(second)

    def test_batch_on_disk(self, php_project):
        paths = php_project({
            'src/a.php': self.SOURCE,
            'src/b.php': "<?php\n$x = 1;\necho $x;\n",
        })
        engine = create_default_engine(Config(overrides={'analysis': {'worker_count': 2}}))
        reports = engine.analyze_batch(paths)
        assert list(reports) == [str(path) for path in paths]
        assert reports[str(paths[0])].get_security_issues()
        assert reports[str(paths[1])].issues == []
