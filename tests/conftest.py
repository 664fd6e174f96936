import threading
import time
from typing import List, Tuple

import pytest

from core import Analyzer, AnalyzerResult, Config, Issue, ParseError
from parsing.nodes import AstProvider, Node, ParseErrorInfo, Tree


class LineProvider(AstProvider):
    """Parses every line into a 'statement' node; lines containing '@@' are syntax errors."""

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def language_name(self) -> str:
        return 'lines'

    def parse(self, source: str) -> Tuple[Tree, List[ParseErrorInfo]]:
        with self._lock:
            self.calls += 1
        data = source.encode('utf-8')
        children = []
        errors = []
        offset = 0
        for number, line in enumerate(source.split('\n'), start=1):
            length = len(line.encode('utf-8'))
            node_type = 'ERROR' if '@@' in line else 'statement'
            if node_type == 'ERROR':
                errors.append(ParseErrorInfo(f"unexpected '@@' on line {number}", number))
            children.append(Node(node_type, number, number, 0, len(line), offset, offset + length, source=data))
            offset += length + 1
        root = Node('program', 1, max(1, len(children)), 0, 0, 0, len(data),
                    children=tuple(children), source=data)
        return Tree(root, len(children) + 1, has_errors=bool(errors)), errors


class ExplodingProvider(LineProvider):
    """Raises from the parser for sources containing BOOM, or ParseError for sources containing HALT."""

    def parse(self, source: str) -> Tuple[Tree, List[ParseErrorInfo]]:
        if 'BOOM' in source:
            raise RecursionError('maximum recursion depth exceeded')
        if 'HALT' in source:
            raise ParseError('unterminated comment', line=source.split('\n').index('HALT') + 1)
        return super().parse(source)


class StaticAnalyzer(Analyzer):
    """Analyzer returning a fixed list of issue factories, optionally after a delay."""

    def __init__(self, name='static', issues=None, delay_for=None, delay=0.0, recovery=False):
        self._name = name
        self._issues = issues or []
        self.delay_for = delay_for
        self.delay = delay
        self.recovery = recovery
        self.seen: List[str] = []

    @property
    def name(self):
        return self._name

    @property
    def file_extensions(self):
        return ['php']

    def supports_error_recovery(self):
        return self.recovery

    def analyze(self, parsed_file):
        self.seen.append(parsed_file.file_path)
        if self.delay_for and parsed_file.file_path.endswith(self.delay_for):
            time.sleep(self.delay)
        result = AnalyzerResult(self.name, parsed_file.file_path)
        for factory in self._issues:
            result.add_issue(factory())
        return result


def make_issue(**overrides) -> Issue:
    values = dict(title='Test issue', description='Something is wrong', severity='medium',
                  category='quality', line=1, rule_id='test_rule')
    values.update(overrides)
    return Issue(**values)


@pytest.fixture
def line_provider():
    return LineProvider()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def php_project(tmp_path):
    """Write PHP sources under tmp_path and return their paths."""
    def write(files):
        paths = []
        for name, content in files.items():
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding='utf-8')
            paths.append(path)
        return paths
    return write


@pytest.fixture(scope='session')
def php_engine_factory():
    from engine import create_default_engine

    def factory(**overrides):
        return create_default_engine(Config(overrides=overrides) if overrides else Config())
    return factory


def issues_for(report, rule_id):
    return [issue for issue in report.issues if issue.rule_id == rule_id]


