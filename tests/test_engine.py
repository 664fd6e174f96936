import threading

from core import AnalyzerResult, Config, RegistryLockedError
from engine import AnalysisEngine
from conftest import ExplodingProvider, LineProvider, StaticAnalyzer, make_issue


def make_engine(**analysis):
    config = Config(overrides={'analysis': analysis}) if analysis else Config()
    return AnalysisEngine(config, provider=LineProvider())


class CrashingAnalyzer(StaticAnalyzer):
    def analyze(self, parsed_file):
        raise RuntimeError('analyzer bug')


class LineCountingAnalyzer(StaticAnalyzer):
    """Reports the highest line present in the tree it was given."""

    def analyze(self, parsed_file):
        result = AnalyzerResult(self.name, parsed_file.file_path)
        result.metadata['max_line'] = parsed_file.tree.max_line()
        return result


class TestSingleFile:
    """Test analysis of one file."""

    def test_issues_are_deduplicated_across_analyzers(self):
        engine = make_engine()
        engine.register_analyzer(StaticAnalyzer('first', [make_issue]))
        engine.register_analyzer(StaticAnalyzer('second', [make_issue, lambda: make_issue(line=2)]))

        report = engine.analyze_source('a.php', 'x\ny')

        assert len(report.issues) == 2
        assert report.duplicates_removed == 1
        assert [issue.line for issue in report.issues] == [1, 2]
        assert all(issue.file_path == 'a.php' for issue in report.issues)

    def test_repeated_analysis_is_deterministic(self):
        engine = make_engine()
        engine.register_analyzer(StaticAnalyzer('first', [make_issue, lambda: make_issue(line=3)]))

        first = engine.analyze_source('a.php', 'x\ny\nz')
        second = engine.analyze_source('a.php', 'x\ny\nz')

        assert [issue.to_dict() for issue in first.issues] == [issue.to_dict() for issue in second.issues]
        assert engine.cache.get_statistics()['cache_hits'] == 1

    def test_failing_analyzer_is_isolated(self):
        engine = make_engine()
        engine.register_analyzer(CrashingAnalyzer('crashy'))
        engine.register_analyzer(StaticAnalyzer('fine', [make_issue]))

        report = engine.analyze_source('a.php', 'x')

        assert len(report.issues) == 1
        assert not report.is_successful
        failed = [result for result in report.analyzer_results if not result.success]
        assert failed[0].analyzer_name == 'crashy'
        assert failed[0].errors[0] == "Analyzer 'crashy' failed: RuntimeError: analyzer bug"
        assert engine.get_stats()['engine']['analyzer_failures'] == 1

    def test_disabled_analyzer_is_skipped(self):
        config = Config(overrides={'enabled_analyzers': {'quiet': False}})
        engine = AnalysisEngine(config, provider=LineProvider())
        quiet = StaticAnalyzer('quiet', [make_issue])
        engine.register_analyzer(quiet)

        report = engine.analyze_source('a.php', 'x')
        assert report.issues == []
        assert quiet.seen == []

    def test_unregister_analyzer(self):
        engine = make_engine()
        engine.register_analyzer(StaticAnalyzer('first', [make_issue]))
        engine.register_analyzer(StaticAnalyzer('second'))
        assert engine.unregister_analyzer('first')
        assert [analyzer.name for analyzer in engine.get_analyzers()] == ['second']
        assert engine.analyze_source('a.php', 'x').issues == []

    def test_unsupported_extension_is_skipped(self):
        engine = make_engine()
        analyzer = StaticAnalyzer('only_php', [make_issue])
        engine.register_analyzer(analyzer)
        assert engine.analyze_source('notes.txt', 'x').issues == []

    def test_partial_parse_runs_recovering_analyzers_only(self):
        engine = make_engine()
        recovering = LineCountingAnalyzer('recovering', recovery=True)
        strict = StaticAnalyzer('strict', [make_issue])
        engine.register_analyzer(recovering)
        engine.register_analyzer(strict)

        report = engine.analyze_source('a.php', "one\ntwo\nthree\nbad @@\nfive")

        assert report.partial
        assert report.has_parse_errors
        assert report.parse_errors[0]['line'] == 4
        assert strict.seen == []
        result = report.analyzer_results[0]
        # three lines before the error plus the sentinel line
        assert result.metadata['max_line'] == 4

    def test_unreadable_file_gives_failed_report(self, tmp_path):
        engine = make_engine()
        report = engine.analyze_file(tmp_path / 'missing.php')
        assert report.failed
        assert 'Read error' in report.failure_reason
        assert report.get_quality_score() == 0


class BrokenCache:
    def parse(self, file_path, content, encoding='utf-8'):
        raise RuntimeError('cache corrupted')

    def get_statistics(self):
        return {}


class TestParserFailures:
    """Test that parser and pipeline faults stay inside one file's report."""

    def test_parser_exception_does_not_escape(self):
        engine = AnalysisEngine(Config(), provider=ExplodingProvider())
        recovering = StaticAnalyzer('recovering', [make_issue], recovery=True)
        engine.register_analyzer(recovering)

        report = engine.analyze_source('bad.php', 'BOOM\n')

        assert not report.failed
        assert report.partial
        assert report.parse_errors[0]['node_type'] == 'PARSER_FAILURE'
        assert recovering.seen == ['bad.php']

    def test_analyze_files_continues_after_parser_exception(self, php_project):
        bad, good = php_project({'bad.php': 'BOOM', 'good.php': 'fine'})
        engine = AnalysisEngine(Config(), provider=ExplodingProvider())
        engine.register_analyzer(StaticAnalyzer('static', [make_issue]))

        reports = engine.analyze_files([bad, good])

        assert list(reports) == [str(bad), str(good)]
        assert reports[str(bad)].has_parse_errors
        assert reports[str(bad)].issues == []
        assert len(reports[str(good)].issues) == 1

    def test_batch_continues_after_parser_exception(self, php_project):
        paths = php_project({'a.php': 'fine', 'b.php': 'BOOM', 'c.php': 'fine'})
        engine = AnalysisEngine(Config(), provider=ExplodingProvider())
        engine.register_analyzer(StaticAnalyzer('static', [make_issue]))

        reports = engine.analyze_batch(paths)

        assert [report.failed for report in reports.values()] == [False, False, False]
        assert [len(report.issues) for report in reports.values()] == [1, 0, 1]

    def test_unexpected_failure_becomes_failed_report(self):
        engine = AnalysisEngine(Config(), provider=LineProvider(), cache=BrokenCache())

        report = engine.analyze_source('a.php', 'x')

        assert report.failed
        assert 'cache corrupted' in report.failure_reason
        assert engine.get_stats()['engine']['files_failed'] == 1


class TestBatch:
    """Test concurrent batch analysis."""

    def test_slow_file_times_out_others_complete(self, php_project):
        paths = php_project({f'file{index}.php': f'<?php echo {index};' for index in range(1, 6)})
        engine = make_engine(per_file_timeout_ms=200, worker_count=2)
        engine.register_analyzer(StaticAnalyzer('slow', [make_issue], delay_for='file3.php', delay=1.0))

        reports = engine.analyze_batch(paths)

        assert list(reports) == [str(path) for path in paths]
        assert len(reports) == 5
        third = reports[str(paths[2])]
        assert third.failed
        assert third.status == 'timeout'
        for index in (0, 1, 3, 4):
            report = reports[str(paths[index])]
            assert not report.failed
            assert len(report.issues) == 1

    def test_batch_matches_sequential(self, php_project):
        paths = php_project({'a.php': 'one', 'b.php': 'two\nthree', 'c.php': 'four'})
        engine = make_engine(worker_count=3)
        engine.register_analyzer(StaticAnalyzer('static', [make_issue]))

        batch = engine.analyze_batch(paths)
        sequential = engine.analyze_files(paths)

        assert list(batch) == list(sequential)
        for path in batch:
            assert [issue.id for issue in batch[path].issues] == [issue.id for issue in sequential[path].issues]

    def test_registry_locked_during_batch(self, php_project):
        paths = php_project({'a.php': 'one'})
        engine = make_engine(worker_count=1)
        errors = []

        class Mutating(StaticAnalyzer):
            def analyze(self, parsed_file):
                try:
                    engine.register_analyzer(StaticAnalyzer('late'))
                except RegistryLockedError as e:
                    errors.append(e)
                return super().analyze(parsed_file)

        engine.register_analyzer(Mutating('mutating'))
        engine.analyze_batch(paths)

        assert len(errors) == 1
        assert engine.get_analyzer('late') is None
        engine.register_analyzer(StaticAnalyzer('late'))
        assert engine.get_analyzer('late') is not None

    def test_cancelled_batch_marks_remaining_files(self, php_project):
        paths = php_project({f'f{index}.php': 'x' for index in range(4)})
        engine = make_engine(worker_count=1)
        cancel = threading.Event()

        class Cancelling(StaticAnalyzer):
            def analyze(self, parsed_file):
                cancel.set()
                return super().analyze(parsed_file)

        engine.register_analyzer(Cancelling('cancelling'))
        reports = engine.analyze_batch(paths, cancel)

        statuses = [report.status for report in reports.values()]
        assert statuses[0] == 'completed'
        assert statuses[1:] == ['cancelled'] * 3

    def test_discover_files_honors_exclusions(self, php_project, tmp_path):
        php_project({
            'index.php': '<?php',
            'lib/util.inc': '<?php',
            'vendor/pkg/lib.php': '<?php',
            'readme.md': '# docs'
        })
        engine = make_engine()
        found = [path.replace('\\', '/') for path in engine.discover_files(tmp_path)]
        assert any(path.endswith('/index.php') for path in found)
        assert any(path.endswith('/lib/util.inc') for path in found)
        assert not any('/vendor/' in path for path in found)
        assert not any(path.endswith('.md') for path in found)

    def test_stats(self, php_project):
        paths = php_project({'a.php': 'x', 'b.php': 'y'})
        engine = make_engine(worker_count=2)
        engine.register_analyzer(StaticAnalyzer('static'))
        engine.analyze_batch(paths)
        stats = engine.get_stats()
        assert stats['engine']['files_analyzed'] == 2
        assert stats['worker_pool']['completed'] == 2
        assert stats['analyzers'] == ['static']
