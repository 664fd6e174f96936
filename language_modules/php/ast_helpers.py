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

import re
from typing import List, Optional, Set

from parsing.nodes import Node

# =============================================================================
# NODE TYPE GROUPS
# =============================================================================

CALL_TYPES = {
    'function_call_expression',
    'member_call_expression',
    'nullsafe_member_call_expression',
    'scoped_call_expression'
}

FUNCTION_SCOPE_TYPES = {
    'function_definition',
    'method_declaration',
    'anonymous_function',
    'anonymous_function_creation_expression',
    'arrow_function'
}

LOOP_TYPES = {
    'for_statement',
    'foreach_statement',
    'while_statement',
    'do_statement'
}

STRING_TYPES = {'string', 'encapsed_string', 'heredoc', 'nowdoc'}

INCLUDE_TYPES = {
    'include_expression',
    'include_once_expression',
    'require_expression',
    'require_once_expression'
}

SUPERGLOBALS = {
    '$_GET', '$_POST', '$_REQUEST', '$_COOKIE',
    '$_FILES', '$_SERVER', '$_ENV', '$GLOBALS', '$_SESSION'
}

# Superglobals an attacker controls directly
REQUEST_SUPERGLOBALS = {'$_GET', '$_POST', '$_REQUEST', '$_COOKIE', '$_FILES', '$_SERVER'}

INTERPOLATION_PATTERN = re.compile(r'\$\w+|\{\$\w+\}')

# =============================================================================
# CALLS AND ARGUMENTS
# =============================================================================

def normalize_name(name: str) -> str:
    """Strip namespace qualifiers and lower-case a PHP function name."""
    return name.rsplit('\\', 1)[-1].strip().lower()


def get_call_name(node: Node) -> str:
    """
    Get the called name of a call expression.

    Plain functions return 'name', method calls 'name' and static calls
    'Scope::name'. Dynamic callees return an empty string.
    """
    if node.type == 'function_call_expression':
        function = node.child_by_field('function') or (node.children[0] if node.children else None)
        if function is not None and function.type in ('name', 'qualified_name'):
            return normalize_name(function.text)
        return ''

    name_node = node.child_by_field('name')
    if name_node is None or name_node.type != 'name':
        return ''

    if node.type == 'scoped_call_expression':
        scope = node.child_by_field('scope')
        scope_name = scope.text.rsplit('\\', 1)[-1] if scope is not None else ''
        return f"{scope_name}::{name_node.text}"

    return name_node.text


def get_method_name(node: Node) -> str:
    """Lower-cased method name of a member or static call."""
    name_node = node.child_by_field('name')
    if node.type in CALL_TYPES - {'function_call_expression'} and name_node is not None:
        return name_node.text.lower()
    return ''


def get_arguments(node: Node) -> List[Node]:
    """Argument expressions of a call, in order."""
    arguments = node.child_by_field('arguments') or node.first_child_of_type('arguments')
    if arguments is None:
        return []

    values = []
    for child in arguments.children:
        if child.type == 'argument':
            value = [c for c in child.children if c.field_name != 'name' and c.type != 'comment']
            if value:
                values.append(value[-1])
        elif child.type != 'comment':
            values.append(child)
    return values


def get_argument(node: Node, position: int) -> Optional[Node]:
    """Argument at a position; negative positions count from the end."""
    arguments = get_arguments(node)
    try:
        return arguments[position]
    except IndexError:
        return None

# =============================================================================
# EXPRESSIONS
# =============================================================================

def unwrap(node: Node) -> Node:
    """Strip parentheses around an expression."""
    while node.type == 'parenthesized_expression' and node.children:
        node = node.children[0]
    return node


def is_concatenation(node: Node) -> bool:
    node = unwrap(node)
    return node.type == 'binary_expression' and node.get_attribute('operator') == '.'


def is_variable(node: Node) -> bool:
    return unwrap(node).type in ('variable_name', 'dynamic_variable_name')


def variable_name(node: Node) -> str:
    """Variable name without the leading '$'."""
    return node.text.lstrip('$') if node.type == 'variable_name' else ''


def contains_request_input(node: Node) -> bool:
    """Check whether any request superglobal is read inside an expression."""
    return any(child.type == 'variable_name' and child.text in REQUEST_SUPERGLOBALS
               for child in node.walk())


def string_content(node: Node) -> str:
    """Literal content of a string node without its delimiters."""
    node = unwrap(node)
    if node.type not in STRING_TYPES:
        return ''
    parts = [child.text for child in node.children
             if child.type in ('string_content', 'string_value', 'heredoc_body', 'nowdoc_body')]
    if parts:
        return ''.join(parts)
    text = node.text
    if len(text) >= 2 and text[0] in ('"', "'") and text[-1] == text[0]:
        return text[1:-1]
    return text


def has_interpolation(node: Node) -> bool:
    """Check whether a string literal interpolates variables or expressions."""
    node = unwrap(node)
    if node.type not in ('encapsed_string', 'heredoc'):
        return False
    for child in node.walk():
        if child is not node and child.type in ('variable_name', 'member_access_expression',
                                                'subscript_expression', 'dynamic_variable_name'):
            return True
    return bool(INTERPOLATION_PATTERN.search(string_content(node)))


def is_dynamic_value(node: Node) -> bool:
    """Anything built at runtime: variables, concatenation, interpolation or calls."""
    node = unwrap(node)
    return (is_variable(node) or is_concatenation(node) or has_interpolation(node)
            or node.type in ('subscript_expression', 'member_access_expression', 'shell_command_expression')
            or node.type in CALL_TYPES)


def is_literal(node: Node) -> bool:
    node = unwrap(node)
    return node.type in ('string', 'nowdoc', 'integer', 'float', 'boolean', 'null') or (
        node.type in ('encapsed_string', 'heredoc') and not has_interpolation(node))


def is_wrapped_by_call(node: Node, names: Set[str]) -> bool:
    """Check whether an expression is a direct call to one of names."""
    node = unwrap(node)
    return node.type in CALL_TYPES and get_call_name(node) in names


def get_function_name(node: Node) -> str:
    name_node = node.child_by_field('name')
    if node.type in ('function_definition', 'method_declaration') and name_node is not None:
        return name_node.text
    return '{closure}'


def get_parameters(node: Node) -> List[Node]:
    """Parameter nodes of a function-like node."""
    parameters = node.child_by_field('parameters') or node.first_child_of_type('formal_parameters')
    if parameters is None:
        return []
    return [child for child in parameters.children if child.type.endswith('parameter')]


def get_parameter_name(parameter: Node) -> str:
    name_node = parameter.child_by_field('name') or parameter.first_child_of_type('variable_name')
    return variable_name(name_node) if name_node is not None else ''


def get_body(node: Node) -> Optional[Node]:
    return node.child_by_field('body') or node.first_child_of_type('compound_statement')
