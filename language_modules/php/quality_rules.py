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
import re
from typing import List, Dict, Any, Optional, Tuple

from core import Issue
from language_modules.base_analyzer import BaseRule, RuleContext
from language_modules.php.ast_helpers import (
    CALL_TYPES, FUNCTION_SCOPE_TYPES, LOOP_TYPES, SUPERGLOBALS,
    get_body, get_call_name, get_function_name, get_method_name, get_parameter_name,
    get_parameters, string_content, variable_name
)
from parsing.nodes import Node

logger = logging.getLogger(__name__)


def _positive_int(config: Dict[str, Any], key: str, errors: List[str], minimum: int = 1) -> None:
    if key in config:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            errors.append(f"{key} must be an integer >= {minimum}")


def walk_scope(node: Node):
    """Yield descendants of a function-like node without entering nested functions."""
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        yield current
        if current.type in FUNCTION_SCOPE_TYPES:
            continue
        stack.extend(reversed(current.children))


def enclosing_loops(context: RuleContext) -> List[Node]:
    """Loop ancestors of the current node inside its own function scope."""
    loops = []
    for ancestor in context.traversal.ancestors():
        if ancestor.type in FUNCTION_SCOPE_TYPES:
            break
        if ancestor.type in LOOP_TYPES:
            loops.append(ancestor)
    return loops

# =============================================================================
# SYNTAX AND STYLE
# =============================================================================

class LineLengthRule(BaseRule):
    """
    Flags lines longer than the configured maximum.

    Runs once per file on the program node. Comment lines, use statements,
    lines holding URLs and lines that open with a long string literal are
    exempt.
    """

    rule_id = "line_length"
    name = "Line Length Limit"
    description = "Lines should not exceed the configured maximum length"
    category = "style"
    severity = "low"
    supported_node_types = ['program']
    tags = ['syntax', 'style', 'readability']
    DEFAULT_CONFIG = {
        'max_length': 120,
        'exceptions': [
            r'^\s*//.*$',
            r'^\s*#.*$',
            r'^\s*\*.*$',
            r'^\s*/\*.*$',
            r'^\s*use\s+',
            r'https?://',
            r"^\s*'[^']*'.*$",
            r'^\s*"[^"]*".*$'
        ],
        'ignore_whitespace_lines': True
    }

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        _positive_int(config, 'max_length', errors, minimum=80)
        if 'exceptions' in config:
            if not isinstance(config['exceptions'], list):
                errors.append('exceptions must be a list of patterns')
            else:
                for pattern in config['exceptions']:
                    try:
                        re.compile(pattern)
                    except (re.error, TypeError):
                        errors.append(f"invalid exception pattern: {pattern!r}")
        return errors

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        max_length = self.get_config_value('max_length', 120)
        exceptions = [re.compile(pattern) for pattern in self.get_config_value('exceptions', [])]
        issues = []

        for number, line in enumerate(context.parsed_file.lines, start=1):
            length = len(line)
            if length <= max_length or self._is_exempt(line, exceptions):
                continue
            overage = length - max_length
            issues.append(self.create_issue(
                title=f"Line too long ({length} characters)",
                description=f"Line exceeds maximum length of {max_length} characters by {overage} characters.",
                node=node,
                context=context,
                line=number,
                snippet_context=0,
                suggestions=[
                    'Break the line at a logical point (after operators, commas, etc.)',
                    'Extract complex expressions into variables'
                ],
                metadata={'actual_length': length, 'max_length': max_length, 'overage': overage}
            ))
        return issues

    def _is_exempt(self, line: str, exceptions) -> bool:
        if self.get_config_value('ignore_whitespace_lines', True) and not line.strip():
            return True
        return any(pattern.search(line) for pattern in exceptions)


class UnusedVariableRule(BaseRule):
    """Flags variables assigned inside a function but never read."""

    rule_id = "unused_variable"
    name = "Unused Variable Detection"
    description = "Detects variables that are assigned but never used"
    category = "quality"
    severity = "medium"
    supported_node_types = sorted(FUNCTION_SCOPE_TYPES)
    tags = ['syntax', 'quality', 'cleanup', 'unused']
    DEFAULT_CONFIG = {
        'ignore_patterns': ['_.*', '.*Exception$', 'this'],
        'ignore_parameters': False,
        'ignore_superglobals': True
    }

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        if 'ignore_patterns' in config and not isinstance(config['ignore_patterns'], list):
            errors.append('ignore_patterns must be a list')
        if 'ignore_parameters' in config and not isinstance(config['ignore_parameters'], bool):
            errors.append('ignore_parameters must be a boolean')
        return errors

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        assigned, used = self.collect_usage(node)
        issues = []

        for name, (line, kind) in assigned.items():
            if name in used or self._should_ignore(name, kind):
                continue
            label = 'Parameter' if kind == 'parameter' else 'Variable'
            issues.append(self.create_issue(
                title=f"Unused {label.lower()} ${name}",
                description=f"{label} ${name} in {get_function_name(node)}() is assigned but never used.",
                node=node,
                context=context,
                line=line,
                suggestions=[f"Remove ${name} or use it", "Prefix intentionally unused names with '_'"],
                metadata={'variable': name, 'kind': kind}
            ))
        return issues

    def collect_usage(self, node: Node) -> Tuple[Dict[str, Tuple[int, str]], set]:
        """
        Split variables of one scope into assignments and reads.

        Returns:
            tuple: ({name: (first line, kind)}, {names read})
        """
        assigned: Dict[str, Tuple[int, str]] = {}
        used = set()

        for parameter in get_parameters(node):
            name = get_parameter_name(parameter)
            if name:
                assigned[name] = (parameter.start_line, 'parameter')

        body = get_body(node)
        if body is None:
            return assigned, used

        targets = set()
        for current in walk_scope(body):
            if current.type == 'assignment_expression':
                left = current.child_by_field('left')
                if left is not None and left.type == 'variable_name':
                    targets.add(left.start_byte)
                    assigned.setdefault(variable_name(left), (current.start_line, 'assignment'))
            elif current.type == 'arrow_function':
                # Arrow functions capture the enclosing scope by value
                used.update(variable_name(v) for v in current.find_all({'variable_name'}))
            elif current.type in FUNCTION_SCOPE_TYPES:
                # Closures read outer variables through their use clause
                for clause in current.children_of_type('anonymous_function_use_clause'):
                    used.update(variable_name(v) for v in clause.find_all({'variable_name'}))
            elif current.type == 'function_call_expression' and get_call_name(current) == 'compact':
                used.update(string_content(arg) for arg in current.find_all({'string', 'encapsed_string'}))
            elif current.type == 'variable_name' and current.start_byte not in targets:
                used.add(variable_name(current))

        # Anything inside the scope's own use clause belongs to the outer scope
        for clause in node.children_of_type('anonymous_function_use_clause'):
            for variable in clause.find_all({'variable_name'}):
                assigned.setdefault(variable_name(variable), (variable.start_line, 'use'))
                used.add(variable_name(variable))

        return assigned, used

    def _should_ignore(self, name: str, kind: str) -> bool:
        if kind == 'parameter' and self.get_config_value('ignore_parameters', False):
            return True
        if self.get_config_value('ignore_superglobals', True) and f"${name}" in SUPERGLOBALS:
            return True
        return any(re.fullmatch(pattern, name) for pattern in self.get_config_value('ignore_patterns', []))

# =============================================================================
# QUALITY
# =============================================================================

class FunctionLengthRule(BaseRule):
    rule_id = "function_length"
    name = "Function Length"
    description = "Functions should stay short enough to read at a glance"
    category = "maintainability"
    severity = "medium"
    supported_node_types = ['function_definition', 'method_declaration']
    tags = ['quality', 'size']
    DEFAULT_CONFIG = {'max_lines': 50}

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        _positive_int(config, 'max_lines', errors)
        return errors

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        body = get_body(node)
        if body is None:
            return []

        lines = body.line_count
        max_lines = self.get_config_value('max_lines', 50)
        if lines <= max_lines:
            return []

        name = get_function_name(node)
        return [self.create_issue(
            title=f"Function {name}() is too long ({lines} lines)",
            description=f"{name}() spans {lines} lines; the limit is {max_lines}.",
            node=node,
            context=context,
            line=node.start_line,
            suggestions=['Extract cohesive blocks into helper functions'],
            metadata={'function': name, 'lines': lines, 'max_lines': max_lines}
        )]


class ParameterCountRule(BaseRule):
    rule_id = "parameter_count"
    name = "Parameter Count"
    description = "Functions with many parameters are hard to call correctly"
    category = "quality"
    severity = "low"
    supported_node_types = ['function_definition', 'method_declaration']
    tags = ['quality', 'design']
    DEFAULT_CONFIG = {'max_parameters': 5}

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        _positive_int(config, 'max_parameters', errors, minimum=0)
        return errors

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        count = len(get_parameters(node))
        limit = self.get_config_value('max_parameters', 5)
        if count <= limit:
            return []

        name = get_function_name(node)
        return [self.create_issue(
            title=f"Too many parameters in {name}()",
            description=f"{name}() takes {count} parameters; the limit is {limit}.",
            node=node,
            context=context,
            line=node.start_line,
            suggestions=['Group related parameters into a value object'],
            metadata={'function': name, 'parameters': count, 'max_parameters': limit}
        )]


class CyclomaticComplexityRule(BaseRule):
    """McCabe complexity: one plus the number of decision points in the body."""

    rule_id = "cyclomatic_complexity"
    name = "Cyclomatic Complexity"
    description = "Functions with many branches are hard to test"
    category = "maintainability"
    severity = "medium"
    supported_node_types = ['function_definition', 'method_declaration', 'anonymous_function',
                            'anonymous_function_creation_expression']
    tags = ['quality', 'complexity']
    DEFAULT_CONFIG = {'max_complexity': 10}

    DECISION_TYPES = {
        'if_statement', 'else_if_clause', 'for_statement', 'foreach_statement', 'while_statement',
        'do_statement', 'case_statement', 'catch_clause', 'conditional_expression', 'match_conditional_expression'
    }
    DECISION_OPERATORS = {'&&', '||', 'and', 'or', '??'}

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        _positive_int(config, 'max_complexity', errors)
        return errors

    def complexity(self, node: Node) -> int:
        body = get_body(node)
        if body is None:
            return 1
        score = 1
        for current in walk_scope(body):
            if current.type in self.DECISION_TYPES:
                score += 1
            elif current.type == 'binary_expression' and \
                    str(current.get_attribute('operator', '')).lower() in self.DECISION_OPERATORS:
                score += 1
        return score

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        score = self.complexity(node)
        limit = self.get_config_value('max_complexity', 10)
        if score <= limit:
            return []

        name = get_function_name(node)
        return [self.create_issue(
            title=f"High cyclomatic complexity in {name}() ({score})",
            description=f"{name}() has a cyclomatic complexity of {score}; the limit is {limit}.",
            node=node,
            context=context,
            severity='high' if score > limit * 2 else None,
            line=node.start_line,
            suggestions=['Split the function', 'Replace nested conditionals with guard clauses'],
            metadata={'function': name, 'complexity': score, 'max_complexity': limit}
        )]


class EmptyCatchBlockRule(BaseRule):
    rule_id = "empty_catch"
    name = "Empty Catch Block"
    description = "Exceptions caught and silently discarded"
    category = "quality"
    severity = "medium"
    supported_node_types = ['catch_clause']
    tags = ['quality', 'error-handling']

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        body = get_body(node)
        if body is None or body.children:
            return []
        return [self.create_issue(
            title="Empty catch block",
            description="The exception is caught and discarded without handling or logging.",
            node=node,
            context=context,
            line=node.start_line,
            suggestions=['Log the exception or rethrow it', 'Add a comment if ignoring it is intended']
        )]


class DeprecatedFunctionRule(BaseRule):
    rule_id = "deprecated_function"
    name = "Deprecated Function"
    description = "Calls to functions deprecated or removed in current PHP versions"
    category = "compatibility"
    severity = "medium"
    supported_node_types = ['function_call_expression']
    tags = ['compatibility', 'deprecated']

    # Function -> (removed in, replacement)
    DEPRECATED_FUNCTIONS = {
        'mysql_connect': ('7.0', 'mysqli_connect() or PDO'),
        'mysql_query': ('7.0', 'mysqli_query() or PDO'),
        'mysql_fetch_array': ('7.0', 'mysqli_fetch_array() or PDOStatement::fetch()'),
        'mysql_fetch_assoc': ('7.0', 'mysqli_fetch_assoc() or PDOStatement::fetch()'),
        'mysql_real_escape_string': ('7.0', 'prepared statements'),
        'mysql_select_db': ('7.0', 'mysqli_select_db()'),
        'mysql_close': ('7.0', 'mysqli_close()'),
        'ereg': ('7.0', 'preg_match()'),
        'eregi': ('7.0', 'preg_match() with the i modifier'),
        'ereg_replace': ('7.0', 'preg_replace()'),
        'split': ('7.0', 'explode() or preg_split()'),
        'create_function': ('8.0', 'anonymous functions'),
        'each': ('8.0', 'foreach'),
        'money_format': ('8.0', 'NumberFormatter'),
        'get_magic_quotes_gpc': ('8.0', 'nothing; magic quotes no longer exist'),
        'utf8_encode': ('8.2', 'mb_convert_encoding()'),
        'utf8_decode': ('8.2', 'mb_convert_encoding()'),
        'strftime': ('8.1', 'IntlDateFormatter or date()')
    }

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        name = get_call_name(node)
        if name not in self.DEPRECATED_FUNCTIONS and not name.startswith('mcrypt_'):
            return []

        version, replacement = self.DEPRECATED_FUNCTIONS.get(name, ('7.2', 'sodium_* or openssl_* functions'))
        return [self.create_issue(
            title=f"Deprecated function {name}()",
            description=f"{name}() is deprecated or removed as of PHP {version}.",
            node=node,
            context=context,
            suggestions=[f"Replace with {replacement}"],
            metadata={'function': name, 'php_version': version, 'replacement': replacement}
        )]

# =============================================================================
# PERFORMANCE
# =============================================================================

class NestedLoopRule(BaseRule):
    """Flags loops nested deeper than the configured limit."""

    rule_id = "nested_loops"
    name = "Nested Loops"
    description = "Deeply nested loops grow polynomially with input size"
    category = "performance"
    severity = "medium"
    supported_node_types = sorted(LOOP_TYPES)
    tags = ['performance', 'complexity']
    DEFAULT_CONFIG = {'max_depth': 2}

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        _positive_int(config, 'max_depth', errors)
        return errors

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        limit = self.get_config_value('max_depth', 2)
        depth = len(enclosing_loops(context)) + 1

        # Report once, at the first loop that crosses the limit
        if depth != limit + 1:
            return []

        total_depth = depth + self._deepest_nesting(node)
        return [self.create_issue(
            title=f"Loop nesting depth {total_depth} exceeds {limit}",
            description=f"Loops nested {total_depth} deep give an estimated O(n^{total_depth}) running time.",
            node=node,
            context=context,
            line=node.start_line,
            suggestions=['Index data in an array keyed by lookup value', 'Move invariant work out of inner loops'],
            metadata={'depth': total_depth, 'max_depth': limit, 'complexity': f"O(n^{total_depth})"}
        )]

    @staticmethod
    def _deepest_nesting(node: Node) -> int:
        deepest = 0
        stack = [(child, 0) for child in node.children]
        while stack:
            current, depth = stack.pop()
            if current.type in FUNCTION_SCOPE_TYPES:
                continue
            if current.type in LOOP_TYPES:
                depth += 1
                deepest = max(deepest, depth)
            stack.extend((child, depth) for child in current.children)
        return deepest


class QueryInLoopRule(BaseRule):
    rule_id = "query_in_loop"
    name = "Database Query in Loop"
    description = "Queries executed once per iteration (N+1 pattern)"
    category = "performance"
    severity = "medium"
    supported_node_types = sorted(CALL_TYPES)
    tags = ['performance', 'database']

    QUERY_FUNCTIONS = {
        'mysql_query', 'mysqli_query', 'mysqli_execute', 'mysqli_stmt_execute', 'pg_query',
        'pg_query_params', 'pg_execute', 'sqlite_query', 'mssql_query', 'odbc_exec'
    }
    QUERY_METHODS = {'query', 'exec', 'execute', 'prepare'}

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        name = get_call_name(node) if node.type == 'function_call_expression' else get_method_name(node)
        if not name:
            return []
        if node.type == 'function_call_expression' and name not in self.QUERY_FUNCTIONS:
            return []
        if node.type != 'function_call_expression' and name not in self.QUERY_METHODS:
            return []

        loops = enclosing_loops(context)
        if not loops:
            return []

        return [self.create_issue(
            title="Database query inside loop",
            description=f"{name}() runs on every iteration of the loop starting on line {loops[0].start_line}.",
            node=node,
            context=context,
            suggestions=['Fetch all rows with one query before the loop', 'Batch writes into a single statement'],
            metadata={'function': name, 'loop_line': loops[0].start_line}
        )]


class LoopConditionSizeCallRule(BaseRule):
    rule_id = "loop_condition_size_call"
    name = "Size Function in Loop Condition"
    description = "count()/strlen() re-evaluated on every iteration"
    category = "performance"
    severity = "low"
    supported_node_types = ['for_statement', 'while_statement']
    tags = ['performance', 'loops']

    SIZE_FUNCTIONS = {'count', 'sizeof', 'strlen', 'mb_strlen'}

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        condition = self._condition(node)
        if condition is None:
            return []

        calls = [call for call in condition.find_all({'function_call_expression'})
                 if get_call_name(call) in self.SIZE_FUNCTIONS]
        if not calls:
            return []

        name = get_call_name(calls[0])
        return [self.create_issue(
            title=f"{name}() in loop condition",
            description=f"{name}() is evaluated on every iteration of the loop.",
            node=node,
            context=context,
            line=node.start_line,
            suggestions=[f"Store the result of {name}() in a variable before the loop"],
            metadata={'function': name}
        )]

    @staticmethod
    def _condition(node: Node) -> Optional[Node]:
        condition = node.child_by_field('condition')
        if condition is not None:
            return condition
        if node.type == 'while_statement':
            return node.first_child_of_type('parenthesized_expression')
        return None


SYNTAX_RULES = [LineLengthRule, UnusedVariableRule]
QUALITY_RULES = [FunctionLengthRule, ParameterCountRule, CyclomaticComplexityRule,
                 EmptyCatchBlockRule, DeprecatedFunctionRule]
PERFORMANCE_RULES = [NestedLoopRule, QueryInLoopRule, LoopConditionSizeCallRule]
