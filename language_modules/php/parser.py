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
import threading
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

import tree_sitter_php as tsphp
from tree_sitter import Language, Parser

from parsing.nodes import AstProvider, Node, ParseErrorInfo, Tree

logger = logging.getLogger(__name__)

PHP_LANGUAGE = Language(tsphp.language_php())

# Anonymous tokens worth keeping as attributes of their parent
ATTRIBUTE_FIELDS = {'operator'}

MAX_ERROR_TEXT = 40


class _Frame:
    """Conversion state for one native node while its children are built."""

    __slots__ = ('ts_node', 'field_name', 'children', 'attributes')

    def __init__(self, ts_node, field_name: Optional[str]):
        self.ts_node = ts_node
        self.field_name = field_name
        self.children: List[Node] = []
        self.attributes: Dict[str, Any] = {}


class PhpAstProvider(AstProvider):
    """
    AST provider backed by the tree-sitter PHP grammar.

    The native tree is converted into generic Node objects. Only named nodes
    are kept as children; operator tokens are folded into the parent's
    attributes. ERROR nodes and MISSING tokens are reported as syntax errors.
    """

    def __init__(self):
        self._local = threading.local()

    @property
    def language_name(self) -> str:
        return 'php'

    def _parser(self) -> Parser:
        # Parser instances are not shared between threads
        parser = getattr(self._local, 'parser', None)
        if parser is None:
            parser = Parser(PHP_LANGUAGE)
            self._local.parser = parser
        return parser

    def parse(self, source: str) -> Tuple[Tree, List[ParseErrorInfo]]:
        source_bytes = source.encode('utf-8', errors='surrogatepass')
        ts_tree = self._parser().parse(source_bytes)

        errors: List[ParseErrorInfo] = []
        root, node_count = self._convert(ts_tree.root_node, source_bytes, errors)

        errors.sort(key=lambda error: (error.line, error.column))
        tree = Tree(root=root, node_count=node_count, has_errors=bool(errors))
        return tree, errors

    def _convert(self, ts_root, source: bytes, errors: List[ParseErrorInfo]) -> Tuple[Node, int]:
        """Build generic nodes iteratively with a tree cursor."""
        cursor = ts_root.walk()
        frames = [_Frame(cursor.node, None)]
        node_count = 0

        while True:
            if cursor.goto_first_child():
                frames.append(_Frame(cursor.node, cursor.field_name))
                continue

            while True:
                finished = frames.pop()
                built = self._build(finished, source, errors)
                if built is not None:
                    node_count += 1

                if not frames:
                    return built, node_count

                self._attach(frames[-1], finished, built)

                if cursor.goto_next_sibling():
                    frames.append(_Frame(cursor.node, cursor.field_name))
                    break
                cursor.goto_parent()

    def _attach(self, parent: _Frame, finished: _Frame, built: Optional[Node]) -> None:
        if built is not None:
            parent.children.append(built)
        elif finished.field_name in ATTRIBUTE_FIELDS:
            parent.attributes[finished.field_name] = finished.ts_node.type

    def _build(self, frame: _Frame, source: bytes, errors: List[ParseErrorInfo]) -> Optional[Node]:
        ts_node = frame.ts_node
        line = ts_node.start_point[0] + 1
        column = ts_node.start_point[1]

        if ts_node.is_missing:
            errors.append(ParseErrorInfo(
                message=f"Syntax error, missing '{ts_node.type}' on line {line}",
                line=line,
                column=column,
                node_type='MISSING'
            ))
            frame.attributes['expected'] = ts_node.type
            node_type = 'MISSING'
        elif ts_node.type == 'ERROR':
            snippet = source[ts_node.start_byte:ts_node.end_byte].decode('utf-8', errors='replace')
            snippet = snippet.strip().splitlines()[0][:MAX_ERROR_TEXT] if snippet.strip() else ''
            errors.append(ParseErrorInfo(
                message=f"Syntax error, unexpected '{snippet}' on line {line}",
                line=line,
                column=column,
                node_type='ERROR'
            ))
            node_type = 'ERROR'
        elif ts_node.is_named:
            node_type = ts_node.type
        else:
            return None

        return Node(
            type=node_type,
            start_line=line,
            end_line=ts_node.end_point[0] + 1,
            start_column=column,
            end_column=ts_node.end_point[1],
            start_byte=ts_node.start_byte,
            end_byte=ts_node.end_byte,
            children=tuple(frame.children),
            field_name=frame.field_name,
            attributes=MappingProxyType(frame.attributes),
            source=source
        )
