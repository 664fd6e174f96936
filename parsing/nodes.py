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

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

# =============================================================================
# GENERIC SYNTAX TREE
# =============================================================================

EMPTY_ATTRIBUTES: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, eq=False)
class Node:
    """
    One syntactic construct of a parsed file.

    Nodes are immutable once produced by an AST provider. Line numbers are
    1-based, columns are 0-based, and children are kept in source order.
    """
    type: str
    start_line: int
    end_line: int
    start_column: int = 0
    end_column: int = 0
    start_byte: int = 0
    end_byte: int = 0
    children: Tuple['Node', ...] = ()
    field_name: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=lambda: EMPTY_ATTRIBUTES)
    source: bytes = field(default=b'', repr=False)

    @property
    def text(self) -> str:
        """Source text covered by this node."""
        return self.source[self.start_byte:self.end_byte].decode('utf-8', errors='replace')

    def child_by_field(self, name: str) -> Optional['Node']:
        """Get the first child stored under a grammar field name."""
        for child in self.children:
            if child.field_name == name:
                return child
        return None

    def first_child_of_type(self, *types: str) -> Optional['Node']:
        for child in self.children:
            if child.type in types:
                return child
        return None

    def children_of_type(self, *types: str) -> List['Node']:
        return [child for child in self.children if child.type in types]

    def get_attribute(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def walk(self) -> Iterator['Node']:
        """Iterate over this node and all descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_all(self, types: Union[str, Iterable[str]]) -> List['Node']:
        """Find every descendant (including self) whose type is in types."""
        wanted = {types} if isinstance(types, str) else set(types)
        return [node for node in self.walk() if node.type in wanted]

    def find_first(self, predicate: Callable[['Node'], bool]) -> Optional['Node']:
        for node in self.walk():
            if predicate(node):
                return node
        return None

    def contains_type(self, *types: str) -> bool:
        return self.find_first(lambda node: node.type in types) is not None

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    def __repr__(self) -> str:
        return f"Node({self.type}, lines {self.start_line}-{self.end_line}, children={len(self.children)})"


@dataclass(frozen=True)
class ParseErrorInfo:
    """A syntax error reported by an AST provider."""
    message: str
    line: int
    column: int = 0
    node_type: str = 'ERROR'

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'line': self.line,
            'column': self.column,
            'node_type': self.node_type,
        }


@dataclass(frozen=True)
class Tree:
    """Parsed representation of one file."""
    root: Node
    node_count: int
    has_errors: bool = False
    partial: bool = False

    def walk(self) -> Iterator[Node]:
        return self.root.walk()

    def find_all(self, types: Union[str, Iterable[str]]) -> List[Node]:
        return self.root.find_all(types)

    @classmethod
    def empty(cls, source: str = "") -> 'Tree':
        """A root-only tree for source that no provider could parse."""
        encoded = source.encode('utf-8')
        root = Node('program', 1, source.count('\n') + 1, end_byte=len(encoded), source=encoded)
        return cls(root, 1, has_errors=True)

    def mark_partial(self) -> 'Tree':
        """Return a copy flagged as a best-effort tree from error recovery."""
        return replace(self, has_errors=True, partial=True)

    def max_line(self) -> int:
        return max((node.end_line for node in self.walk() if node.type != 'comment'), default=0)


# =============================================================================
# AST PROVIDER CONTRACT
# =============================================================================

class AstProvider(ABC):
    """Turns source text into a generic Tree plus any syntax errors."""

    @property
    @abstractmethod
    def language_name(self) -> str:
        """Return the name of the language this provider parses."""
        pass

    @abstractmethod
    def parse(self, source: str) -> Tuple[Tree, List[ParseErrorInfo]]:
        """
        Parse source text.

        Must always return a best-effort tree, even when syntax errors are
        found, so that partial analysis remains possible.
        """
        pass
