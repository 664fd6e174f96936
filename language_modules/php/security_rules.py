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
from abc import abstractmethod
from typing import List, Dict, Any, Optional, Set

from core import Issue
from language_modules.base_analyzer import (
    BaseSecurityRule, OwaspCategory, RiskLevel, RiskRecord, RuleContext
)
from language_modules.php.ast_helpers import (
    CALL_TYPES, INCLUDE_TYPES, REQUEST_SUPERGLOBALS, STRING_TYPES,
    contains_request_input, get_argument, get_arguments, get_call_name, get_method_name,
    has_interpolation, is_concatenation, is_dynamic_value, is_literal, is_variable,
    is_wrapped_by_call, string_content, unwrap
)
from parsing.nodes import Node

logger = logging.getLogger(__name__)

# =============================================================================
# SHARED HELPERS
# =============================================================================

def concatenation_parts(node: Node) -> List[Node]:
    """Flatten a '.' concatenation chain into its operands, left to right."""
    parts = []
    stack = [unwrap(node)]
    while stack:
        current = stack.pop()
        if is_concatenation(current):
            operands = [child for child in unwrap(current).children if child.type != 'comment']
            stack.extend(reversed([unwrap(operand) for operand in operands]))
        else:
            parts.append(current)
    return parts


def unsanitized_request_input(node: Node, sanitizers: Set[str]) -> bool:
    """
    Check whether request superglobals reach an expression without passing
    through one of the sanitizer calls.
    """
    stack = [(node, False)]
    while stack:
        current, sanitized = stack.pop()
        if current.type in CALL_TYPES and get_call_name(current) in sanitizers:
            sanitized = True
        if current.type == 'cast_expression' and current.text.replace(' ', '').lower().startswith(('(int)', '(integer)', '(float)', '(bool)')):
            sanitized = True
        if current.type == 'variable_name' and current.text in REQUEST_SUPERGLOBALS and not sanitized:
            return True
        stack.extend((child, sanitized) for child in current.children)
    return False


def describe_input(node: Node) -> RiskRecord:
    """Baseline risk factors for a value reaching a dangerous sink."""
    risk = RiskRecord()
    node = unwrap(node)
    if is_concatenation(node):
        risk.add_factor('string_concatenation', 0.7, 'Value is built by string concatenation.')
    elif has_interpolation(node):
        risk.add_factor('variable_interpolation', 0.7, 'Value interpolates variables into a string.')
    elif is_dynamic_value(node):
        risk.add_factor('direct_variable_usage', 0.6, 'Value comes directly from a variable or call.')
    if contains_request_input(node):
        risk.add_factor('user_input', 0.3, 'Request data reaches the call.')
    return risk


class PhpSecurityRule(BaseSecurityRule):
    """Security rule with the suppression and gating every PHP rule shares."""

    def validate(self, node: Node, context: RuleContext) -> List[Issue]:
        if self.in_test_code(context):
            return []
        return self.check(node, context)

    @abstractmethod
    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        """Inspect a node that is outside test code."""
        pass

    def report(self, title: str, description: str, node: Node, context: RuleContext,
               risk: RiskRecord, severity: Optional[str] = None,
               metadata: Optional[Dict[str, Any]] = None) -> List[Issue]:
        if not self.meets_confidence(risk):
            logger.debug(f"{self.rule_id}: suppressed finding at line {node.start_line} "
                         f"(confidence {risk.confidence:.2f})")
            return []
        return [self.create_security_issue(
            title=title,
            description=f"{description} {risk.description}".strip(),
            node=node,
            context=context,
            risk=risk,
            severity=severity,
            metadata=metadata
        )]

# =============================================================================
# INJECTION
# =============================================================================

class SqlInjectionRule(PhpSecurityRule):
    """
    Detects SQL queries assembled from runtime values.

    Query functions are flagged when their query argument is built from
    variables, concatenation or interpolation. String literals holding SQL
    that take part in a concatenation are flagged on their own to catch
    queries built away from the call site.
    """

    rule_id = "sql_injection"
    name = "SQL Injection"
    description = "SQL query built from untrusted input"
    vulnerability_type = "sql_injection"
    owasp_category = OwaspCategory.A03_INJECTION
    risk_level = RiskLevel.HIGH
    cwe_ids = [89, 564]
    false_positive_probability = 0.15
    supported_node_types = [
        'function_call_expression', 'member_call_expression', 'scoped_call_expression',
        'encapsed_string', 'string'
    ]
    remediation = [
        "Use prepared statements with bound parameters",
        "Validate and type-cast input before it reaches the database layer"
    ]

    # Position of the query argument; -1 is the last argument
    QUERY_FUNCTIONS = {
        'mysql_query': 0,
        'mysqli_query': 1,
        'mysql_db_query': 1,
        'mysqli_real_query': 1,
        'mysqli_multi_query': 1,
        'pg_query': -1,
        'pg_send_query': 1,
        'sqlite_query': 0,
        'mssql_query': 0,
        'odbc_exec': 1
    }
    QUERY_METHODS = {'query', 'exec', 'multi_query', 'real_query'}
    PREPARE_FUNCTIONS = {'mysqli_prepare': 1, 'mysql_prepare': 0, 'pg_prepare': 2}
    PREPARE_METHODS = {'prepare'}
    ESCAPE_FUNCTIONS = {
        'mysqli_real_escape_string', 'mysql_real_escape_string', 'mysql_escape_string',
        'pg_escape_string', 'pg_escape_literal', 'sqlite_escape_string',
        'intval', 'floatval', 'abs', 'quote'
    }
    SQL_KEYWORDS = ['select', 'insert', 'update', 'delete', 'drop', 'create', 'alter', 'union', 'where']
    SQL_PATTERN = re.compile(r'\b(' + '|'.join(SQL_KEYWORDS) + r')\b', re.IGNORECASE)

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        if node.type in CALL_TYPES:
            return self._check_call(node, context)
        return self._check_string(node, context)

    def _query_argument(self, node: Node) -> Optional[Node]:
        if node.type == 'function_call_expression':
            name = get_call_name(node)
            if name in self.QUERY_FUNCTIONS:
                return get_argument(node, self.QUERY_FUNCTIONS[name])
            return None
        if get_method_name(node) in self.QUERY_METHODS:
            return get_argument(node, 0)
        return None

    def _prepare_argument(self, node: Node) -> Optional[Node]:
        if node.type == 'function_call_expression':
            name = get_call_name(node)
            if name in self.PREPARE_FUNCTIONS:
                return get_argument(node, self.PREPARE_FUNCTIONS[name])
            return None
        if get_method_name(node) in self.PREPARE_METHODS:
            return get_argument(node, 0)
        return None

    def is_query_call(self, node: Node) -> bool:
        return node.type in CALL_TYPES and (
            self._query_argument(node) is not None or self._prepare_argument(node) is not None)

    def _check_call(self, node: Node, context: RuleContext) -> List[Issue]:
        query = self._query_argument(node)
        if query is not None:
            risk = self.assess_query(query)
            call_name = get_call_name(node) or get_method_name(node)
            return self.report(
                title="SQL Injection",
                description=f"Query passed to {call_name}() is built from runtime values.",
                node=node,
                context=context,
                risk=risk,
                metadata={'function': call_name, 'sink': 'query'}
            )

        prepared = self._prepare_argument(node)
        if prepared is not None:
            prepared = unwrap(prepared)
            if is_concatenation(prepared) or has_interpolation(prepared):
                risk = self.assess_query(prepared)
                call_name = get_call_name(node) or get_method_name(node)
                return self.report(
                    title="Incorrect usage of safe function",
                    description=f"{call_name}() receives a statement assembled from runtime values, "
                                f"which bypasses parameter binding.",
                    node=node,
                    context=context,
                    risk=risk,
                    severity='medium',
                    metadata={'function': call_name, 'sink': 'prepare'}
                )
        return []

    def assess_query(self, query: Node) -> RiskRecord:
        """
        Accumulate risk factors for a query argument.

        Args:
            query (Node): Expression passed as the SQL statement

        Returns:
            RiskRecord: Factors and capped confidence
        """
        risk = RiskRecord()
        query = unwrap(query)

        if is_literal(query):
            return risk

        if is_concatenation(query):
            parts = concatenation_parts(query)
            dynamic = [part for part in parts if not is_literal(part)]
            if dynamic and all(is_wrapped_by_call(part, self.ESCAPE_FUNCTIONS) for part in dynamic):
                return risk
            risk.add_factor('string_concatenation', 0.8, 'Query is built with string concatenation.')
            if any(self.SQL_PATTERN.search(string_content(part)) for part in parts if part.type in STRING_TYPES):
                risk.add_factor('sql_keywords', 0.1)
        elif has_interpolation(query):
            risk.add_factor('variable_interpolation', 0.7, 'Variables are interpolated into the query string.')
            if self.SQL_PATTERN.search(string_content(query)):
                risk.add_factor('sql_keywords', 0.1)
        elif is_variable(query) or query.type in ('subscript_expression', 'member_access_expression'):
            risk.add_factor('direct_variable_usage', 0.6, 'Query text comes directly from a variable.')
        elif query.type in CALL_TYPES:
            if is_wrapped_by_call(query, self.ESCAPE_FUNCTIONS):
                return risk
            risk.add_factor('dynamic_query', 0.5, 'Query text is produced by a function call.')

        if risk.has_risk and contains_request_input(query):
            risk.add_factor('user_input', 0.2, 'Request parameters reach the query.')
        return risk

    def _check_string(self, node: Node, context: RuleContext) -> List[Issue]:
        parent = context.traversal.parent
        if parent is None or not is_concatenation(parent) and not has_interpolation(node):
            return []

        content = string_content(node)
        match = self.SQL_PATTERN.search(content)
        if match is None or not self._looks_like_query(content):
            return []

        # Literals inside a query call are covered by the call check
        if context.traversal.find_ancestor(self.is_query_call) is not None:
            return []

        # Report once per concatenation chain, at its leftmost literal
        if is_concatenation(parent):
            chain = parent
            for ancestor in context.traversal.ancestors()[1:]:
                if not is_concatenation(ancestor):
                    break
                chain = ancestor
            first_literal = next((part for part in concatenation_parts(chain) if part.type in STRING_TYPES
                                  and self.SQL_PATTERN.search(string_content(part))), None)
            if first_literal is not None and first_literal.start_byte != node.start_byte:
                return []

        risk = RiskRecord()
        if has_interpolation(node):
            risk.add_factor('variable_interpolation', 0.5, 'SQL text interpolates variables.')
        else:
            risk.add_factor('string_concatenation', 0.5, 'SQL text is concatenated with runtime values.')
        if parent is not None and contains_request_input(parent):
            risk.add_factor('user_input', 0.3, 'Request parameters are concatenated into the SQL text.')

        return self.report(
            title="Potential SQL Injection",
            description=f"SQL statement using '{match.group(1).upper()}' is assembled from runtime values.",
            node=node,
            context=context,
            risk=risk,
            metadata={'sink': 'string', 'keyword': match.group(1).lower()}
        )

    def _looks_like_query(self, content: str) -> bool:
        """Require two SQL keywords or a leading statement verb to skip prose."""
        keywords = {match.lower() for match in self.SQL_PATTERN.findall(content)}
        leading = content.lstrip().split(' ', 1)[0].lower()
        return len(keywords) >= 2 or leading in self.SQL_KEYWORDS


class CommandInjectionRule(PhpSecurityRule):
    """Detects shell commands built from runtime values."""

    rule_id = "command_injection"
    name = "Command Injection"
    description = "Operating system command built from untrusted input"
    vulnerability_type = "command_injection"
    owasp_category = OwaspCategory.A03_INJECTION
    risk_level = RiskLevel.CRITICAL
    cwe_ids = [78]
    false_positive_probability = 0.1
    supported_node_types = ['function_call_expression', 'shell_command_expression']
    remediation = [
        "Avoid shell execution; use native PHP functions instead",
        "Escape every argument with escapeshellarg()"
    ]

    SHELL_FUNCTIONS = {'exec', 'system', 'passthru', 'shell_exec', 'popen', 'proc_open', 'pcntl_exec'}
    ESCAPE_FUNCTIONS = {'escapeshellarg', 'escapeshellcmd', 'intval'}

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        if node.type == 'shell_command_expression':
            risk = RiskRecord()
            if any(child.type in ('variable_name', 'subscript_expression', 'member_access_expression')
                   for child in node.walk()):
                risk.add_factor('variable_interpolation', 0.8, 'Backtick command interpolates variables.')
                if contains_request_input(node):
                    risk.add_factor('user_input', 0.2)
            return self.report("Command Injection", "Backtick operator executes a shell command built at runtime.",
                               node, context, risk, metadata={'function': 'backtick'})

        name = get_call_name(node)
        if name not in self.SHELL_FUNCTIONS:
            return []

        command = get_argument(node, 0)
        if command is None or is_literal(command):
            return []

        command = unwrap(command)
        if is_wrapped_by_call(command, self.ESCAPE_FUNCTIONS):
            return []
        if is_concatenation(command):
            dynamic = [part for part in concatenation_parts(command) if not is_literal(part)]
            if dynamic and all(is_wrapped_by_call(part, self.ESCAPE_FUNCTIONS) for part in dynamic):
                return []

        risk = describe_input(command)
        return self.report(
            title="Command Injection",
            description=f"{name}() executes a shell command built from runtime values.",
            node=node,
            context=context,
            risk=risk,
            metadata={'function': name}
        )


class CodeInjectionRule(PhpSecurityRule):
    """Detects evaluation of PHP code assembled at runtime."""

    rule_id = "code_injection"
    name = "Code Injection"
    description = "Dynamic evaluation of PHP code"
    vulnerability_type = "code_injection"
    owasp_category = OwaspCategory.A03_INJECTION
    risk_level = RiskLevel.CRITICAL
    cwe_ids = [94, 95]
    false_positive_probability = 0.1
    supported_node_types = ['function_call_expression']
    remediation = [
        "Remove eval() and create_function(); dispatch through an allowlist of callables",
        "Use preg_replace_callback() instead of the /e modifier"
    ]

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        name = get_call_name(node)
        first = get_argument(node, 0)
        risk = RiskRecord()

        if name == 'eval':
            if first is not None and is_dynamic_value(first):
                risk = describe_input(first)
                risk.add_factor('eval', 0.3)
            else:
                risk.add_factor('eval', 0.5, 'eval() executes arbitrary PHP code.')
            return self.report("Code Injection", "eval() executes PHP code.", node, context, risk,
                               metadata={'function': name})

        if name == 'assert' and first is not None:
            target = unwrap(first)
            if target.type in STRING_TYPES or is_variable(target):
                risk.add_factor('string_assertion', 0.7, 'assert() evaluates string arguments as code.')
                if contains_request_input(target):
                    risk.add_factor('user_input', 0.3)
                return self.report("Code Injection", "assert() called with a string expression.",
                                   node, context, risk, metadata={'function': name})
            return []

        if name == 'create_function':
            risk.add_factor('create_function', 0.8, 'create_function() compiles code with eval().')
            return self.report("Code Injection", "create_function() builds functions from strings.",
                               node, context, risk, metadata={'function': name})

        if name == 'preg_replace' and first is not None and self._has_eval_modifier(first):
            risk.add_factor('eval_modifier', 0.9, 'The /e modifier evaluates the replacement as PHP code.')
            return self.report("Code Injection", "preg_replace() uses the deprecated /e modifier.",
                               node, context, risk, metadata={'function': name})

        return []

    @staticmethod
    def _has_eval_modifier(pattern: Node) -> bool:
        pattern = unwrap(pattern)
        if pattern.type not in STRING_TYPES:
            return False
        content = string_content(pattern)
        if len(content) < 2 or content[0].isalnum() or content[0] == '\\':
            return False
        closing = {'(': ')', '{': '}', '[': ']', '<': '>'}.get(content[0], content[0])
        end = content.rfind(closing)
        return end > 0 and 'e' in content[end + 1:]


class FileInclusionRule(PhpSecurityRule):
    """Detects include/require of paths computed at runtime."""

    rule_id = "file_inclusion"
    name = "File Inclusion"
    description = "include or require with a dynamic path"
    vulnerability_type = "file_inclusion"
    owasp_category = OwaspCategory.A03_INJECTION
    risk_level = RiskLevel.HIGH
    cwe_ids = [98]
    false_positive_probability = 0.2
    supported_node_types = sorted(INCLUDE_TYPES)
    remediation = [
        "Include only constant paths",
        "Map user choices onto an allowlist of files"
    ]

    STATIC_PATH_FUNCTIONS = {'dirname', 'basename'}

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        target = next((child for child in node.children if child.type != 'comment'), None)
        if target is None or self._is_static_path(target):
            return []

        risk = RiskRecord()
        risk.add_factor('dynamic_path', 0.6, 'The included path is computed at runtime.')
        if contains_request_input(target):
            risk.add_factor('user_input', 0.4, 'Request data selects the included file.')

        keyword = node.type.replace('_expression', '')
        return self.report(
            title="File Inclusion",
            description=f"{keyword} loads a file whose path is built from runtime values.",
            node=node,
            context=context,
            risk=risk,
            metadata={'statement': keyword}
        )

    def _is_static_path(self, node: Node) -> bool:
        stack = [unwrap(node)]
        while stack:
            current = unwrap(stack.pop())
            if is_literal(current) or current.type in ('name', 'qualified_name', 'class_constant_access_expression'):
                continue
            if is_concatenation(current):
                stack.extend(current.children)
                continue
            if current.type == 'function_call_expression' and get_call_name(current) in self.STATIC_PATH_FUNCTIONS:
                stack.extend(get_arguments(current))
                continue
            return False
        return True


class PathTraversalRule(PhpSecurityRule):
    """Detects filesystem calls whose path comes from request data."""

    rule_id = "path_traversal"
    name = "Path Traversal"
    description = "Filesystem access with a request-controlled path"
    vulnerability_type = "path_traversal"
    owasp_category = OwaspCategory.A01_BROKEN_ACCESS_CONTROL
    risk_level = RiskLevel.HIGH
    cwe_ids = [22]
    false_positive_probability = 0.2
    supported_node_types = ['function_call_expression']
    remediation = [
        "Resolve the path with realpath() and verify it stays inside the base directory",
        "Use basename() for user supplied file names"
    ]

    FILE_FUNCTIONS = {
        'file_get_contents', 'file_put_contents', 'fopen', 'file', 'readfile', 'unlink',
        'copy', 'rename', 'mkdir', 'rmdir', 'opendir', 'scandir', 'highlight_file',
        'show_source', 'parse_ini_file', 'fileperms', 'is_readable', 'touch', 'chmod'
    }
    SANITIZERS = {'basename', 'realpath', 'intval'}

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        name = get_call_name(node)
        if name not in self.FILE_FUNCTIONS:
            return []

        path = get_argument(node, 0)
        if path is None or not unsanitized_request_input(path, self.SANITIZERS):
            return []

        risk = RiskRecord()
        risk.add_factor('user_input', 0.7, 'A request parameter selects the file path.')
        if is_concatenation(path) or has_interpolation(path):
            risk.add_factor('path_construction', 0.1)

        return self.report(
            title="Path Traversal",
            description=f"{name}() accesses a path controlled by request data.",
            node=node,
            context=context,
            risk=risk,
            metadata={'function': name}
        )


class XssRule(PhpSecurityRule):
    """Detects request data echoed without output encoding."""

    rule_id = "xss"
    name = "Cross-Site Scripting"
    description = "Request data written to the response without escaping"
    vulnerability_type = "xss"
    owasp_category = OwaspCategory.A03_INJECTION
    risk_level = RiskLevel.MEDIUM
    cwe_ids = [79]
    false_positive_probability = 0.2
    supported_node_types = ['echo_statement', 'print_intrinsic']
    remediation = [
        "Escape output with htmlspecialchars($value, ENT_QUOTES, 'UTF-8')"
    ]

    ESCAPE_FUNCTIONS = {
        'htmlspecialchars', 'htmlentities', 'strip_tags', 'intval', 'floatval',
        'json_encode', 'urlencode', 'rawurlencode', 'esc_html', 'esc_attr'
    }

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        if not unsanitized_request_input(node, self.ESCAPE_FUNCTIONS):
            return []

        risk = RiskRecord()
        risk.add_factor('user_input', 0.8, 'Request data is written to the page unescaped.')
        statement = 'echo' if node.type == 'echo_statement' else 'print'
        return self.report(
            title="Cross-Site Scripting",
            description=f"{statement} outputs request data without HTML encoding.",
            node=node,
            context=context,
            risk=risk,
            metadata={'statement': statement}
        )

# =============================================================================
# INTEGRITY, CRYPTOGRAPHY AND CREDENTIALS
# =============================================================================

class InsecureDeserializationRule(PhpSecurityRule):
    """Detects unserialize() of data that is not a constant."""

    rule_id = "insecure_deserialization"
    name = "Insecure Deserialization"
    description = "unserialize() of untrusted data"
    vulnerability_type = "insecure_deserialization"
    owasp_category = OwaspCategory.A08_INTEGRITY_FAILURES
    risk_level = RiskLevel.HIGH
    cwe_ids = [502]
    false_positive_probability = 0.25
    supported_node_types = ['function_call_expression']
    remediation = [
        "Use json_decode() for untrusted data",
        "Pass ['allowed_classes' => false] to unserialize()"
    ]

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        if get_call_name(node) != 'unserialize':
            return []

        data = get_argument(node, 0)
        if data is None or is_literal(data):
            return []

        options = get_argument(node, 1)
        if options is not None and 'allowed_classes' in options.text and 'false' in options.text.lower():
            return []

        risk = RiskRecord()
        risk.add_factor('dynamic_data', 0.6, 'Serialized data is not a constant.')
        if contains_request_input(data):
            risk.add_factor('user_input', 0.3, 'Request data is deserialized.')

        return self.report("Insecure Deserialization", "unserialize() may instantiate attacker chosen objects.",
                           node, context, risk, metadata={'function': 'unserialize'})


class WeakCryptographyRule(PhpSecurityRule):
    """Detects broken hash functions and the removed mcrypt extension."""

    rule_id = "weak_cryptography"
    name = "Weak Cryptography"
    description = "Use of a broken hash or cipher"
    vulnerability_type = "weak_cryptography"
    owasp_category = OwaspCategory.A02_CRYPTOGRAPHIC_FAILURES
    risk_level = RiskLevel.MEDIUM
    cwe_ids = [327, 328]
    false_positive_probability = 0.3
    supported_node_types = ['function_call_expression']
    remediation = [
        "Use password_hash() and password_verify() for passwords",
        "Use hash('sha256') or stronger for integrity checks"
    ]

    WEAK_HASHES = {'md5', 'sha1', 'md5_file', 'sha1_file'}
    WEAK_ALGORITHMS = {'md5', 'sha1', 'md4', 'md2', 'crc32'}
    SENSITIVE_NAMES = re.compile(r'pass|pwd|secret|token|key', re.IGNORECASE)

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        name = get_call_name(node)
        risk = RiskRecord()

        if name in self.WEAK_HASHES:
            risk.add_factor('weak_hash', 0.6, f"{name}() is not collision resistant.")
        elif name == 'hash':
            algorithm = get_argument(node, 0)
            if algorithm is None or string_content(algorithm).lower() not in self.WEAK_ALGORITHMS:
                return []
            risk.add_factor('weak_hash', 0.6, f"hash() uses the {string_content(algorithm).lower()} algorithm.")
        elif name == 'crypt':
            risk.add_factor('legacy_crypt', 0.5, 'crypt() defaults to weak algorithms.')
        elif name.startswith('mcrypt_'):
            risk.add_factor('removed_extension', 0.8, 'The mcrypt extension is unmaintained.')
        else:
            return []

        argument = get_argument(node, -1)
        if argument is not None and self.SENSITIVE_NAMES.search(argument.text):
            risk.add_factor('sensitive_data', 0.3, 'The hashed value looks like a credential.')

        return self.report("Weak Cryptography", f"{name}() is unsuitable for security purposes.",
                           node, context, risk, metadata={'function': name})


class HardcodedCredentialsRule(PhpSecurityRule):
    """Detects credentials assigned from string literals."""

    rule_id = "hardcoded_credentials"
    name = "Hardcoded Credentials"
    description = "Secret stored as a string literal in source code"
    vulnerability_type = "hardcoded_credentials"
    owasp_category = OwaspCategory.A07_AUTHENTICATION_FAILURES
    risk_level = RiskLevel.HIGH
    cwe_ids = [798]
    false_positive_probability = 0.3
    supported_node_types = ['assignment_expression', 'property_element', 'const_element',
                            'array_element_initializer']
    remediation = [
        "Load secrets from environment variables or a secrets manager",
        "Rotate any credential that was committed"
    ]
    DEFAULT_CONFIG = {
        'min_length': 4,
        'ignored_values': ['', 'changeme', 'password', 'secret', 'xxx', 'null']
    }

    CREDENTIAL_NAME = re.compile(
        r'(passw(or)?d|passwd|pwd|secret|api_?key|apikey|auth_?token|access_?token|token|private_?key|access_?key)$',
        re.IGNORECASE
    )

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        errors = super().validate_config(config)
        if 'min_length' in config and (not isinstance(config['min_length'], int) or config['min_length'] < 0):
            errors.append('min_length must be a non-negative integer')
        return errors

    def check(self, node: Node, context: RuleContext) -> List[Issue]:
        target, value = self._target_and_value(node)
        if target is None or value is None:
            return []

        name = target.text.strip('\'"$').rsplit('->', 1)[-1].rsplit('::', 1)[-1]
        if node.type == 'assignment_expression' and target.type == 'subscript_expression':
            index = target.children[-1] if target.children else None
            name = string_content(index) if index is not None else ''
        if not self.CREDENTIAL_NAME.search(name):
            return []

        secret = string_content(value)
        if len(secret) < self.get_config_value('min_length', 4):
            return []
        if secret.lower() in self.get_config_value('ignored_values', []):
            return []

        risk = RiskRecord()
        risk.add_factor('literal_secret', 0.7, f"'{name}' is assigned a literal value.")
        if len(secret) >= 12:
            risk.add_factor('high_entropy_length', 0.1)

        return self.report("Hardcoded Credentials", f"Credential '{name}' is hardcoded in source.",
                           node, context, risk, metadata={'name': name})

    @staticmethod
    def _target_and_value(node: Node):
        if node.type == 'assignment_expression':
            left = node.child_by_field('left')
            right = node.child_by_field('right')
        else:
            children = [child for child in node.children if child.type != 'comment']
            if len(children) < 2:
                return None, None
            left = children[0]
            right = children[-1]
            if right.type == 'property_initializer' and right.children:
                right = right.children[-1]
        if left is None or right is None:
            return None, None
        right = unwrap(right)
        if right.type not in STRING_TYPES or has_interpolation(right):
            return None, None
        if node.type == 'array_element_initializer' and unwrap(left).type not in STRING_TYPES:
            return None, None
        return left, right


SECURITY_RULES = [
    SqlInjectionRule,
    CommandInjectionRule,
    CodeInjectionRule,
    FileInclusionRule,
    PathTraversalRule,
    XssRule,
    InsecureDeserializationRule,
    WeakCryptographyRule,
    HardcodedCredentialsRule
]


def create_security_rules() -> List[PhpSecurityRule]:
    return [rule_class() for rule_class in SECURITY_RULES]
