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
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from parsing.nodes import Node

logger = logging.getLogger(__name__)


class VisitAction(Enum):
    """Signals a visitor may return from enter_node or leave_node."""
    CONTINUE = "continue"
    SKIP_CHILDREN = "skip_children"
    STOP = "stop"


@dataclass
class TraversalOptions:
    """Options controlling a traversal run."""
    max_depth: int = 500
    skip_types: Set[str] = field(default_factory=set)
    only_types: Set[str] = field(default_factory=set)
    track_context: bool = True
    enable_metrics: bool = True


@dataclass
class VisitFrame:
    """One entry of the ancestor stack."""
    node: Node
    type: str
    line: int
    depth: int
    entered_at: float


class TraversalContext:
    """
    Ancestor stack and statistics for one traversal run.

    Rules receive this object to ask where the current node sits, for
    example whether it is nested inside a loop or a test class.
    """

    def __init__(self, track_context: bool = True):
        self.track_context = track_context
        self._frames: List[VisitFrame] = []
        self.nodes_visited = 0
        self.type_distribution: Counter = Counter()
        self.max_depth_reached = 0
        self.depth_limit_hits = 0
        self.visit_time = 0.0
        self.stopped = False

    # Stack maintenance, driven by the traverser
    def push(self, node: Node, depth: int) -> None:
        if self.track_context:
            self._frames.append(VisitFrame(node, node.type, node.start_line, depth, time.perf_counter()))

    def pop(self) -> Optional[VisitFrame]:
        if self.track_context and self._frames:
            return self._frames.pop()
        return None

    def record(self, node: Node, depth: int) -> None:
        self.nodes_visited += 1
        self.type_distribution[node.type] += 1
        if depth > self.max_depth_reached:
            self.max_depth_reached = depth

    # Queries
    @property
    def current(self) -> Optional[Node]:
        return self._frames[-1].node if self._frames else None

    @property
    def parent(self) -> Optional[Node]:
        return self._frames[-2].node if len(self._frames) > 1 else None

    @property
    def depth(self) -> int:
        return self._frames[-1].depth if self._frames else 0

    @property
    def frames(self) -> List[VisitFrame]:
        return list(self._frames)

    def ancestors(self, limit: Optional[int] = None) -> List[Node]:
        """Ancestors of the current node, nearest first."""
        chain = [frame.node for frame in reversed(self._frames[:-1])]
        return chain[:limit] if limit is not None else chain

    def is_inside(self, *types: str) -> bool:
        """Check whether the current node is nested inside a node of any given type."""
        return any(frame.type in types for frame in self._frames[:-1])

    def find_ancestor(self, predicate: Callable[[Node], bool]) -> Optional[Node]:
        for frame in reversed(self._frames[:-1]):
            if predicate(frame.node):
                return frame.node
        return None

    def find_ancestor_by_type(self, *types: str) -> Optional[Node]:
        return self.find_ancestor(lambda node: node.type in types)

    def count_ancestors(self, *types: str) -> int:
        return sum(1 for frame in self._frames[:-1] if frame.type in types)

    def path(self) -> str:
        """Readable path from the root to the current node."""
        return ' > '.join(frame.type for frame in self._frames)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'nodes_visited': self.nodes_visited,
            'type_distribution': dict(self.type_distribution),
            'max_depth': self.max_depth_reached,
            'depth_limit_hits': self.depth_limit_hits,
            'visit_time': self.visit_time
        }


class NodeVisitor:
    """
    Base visitor with enter/leave hooks.

    Hooks may return a VisitAction; returning None continues the traversal.
    """

    def before_traverse(self, roots: Sequence[Node]) -> Optional[VisitAction]:
        return None

    def enter_node(self, node: Node, context: TraversalContext) -> Optional[VisitAction]:
        return None

    def leave_node(self, node: Node, context: TraversalContext) -> Optional[VisitAction]:
        return None

    def after_traverse(self, roots: Sequence[Node]) -> Optional[VisitAction]:
        return None


class NodeTraverser:
    """Pre-order, depth-first traversal in source order."""

    def __init__(self, visitor: NodeVisitor, options: Optional[TraversalOptions] = None):
        self.visitor = visitor
        self.options = options or TraversalOptions()

    def traverse(self, roots: Iterable[Node]) -> TraversalContext:
        roots = list(roots)
        options = self.options
        context = TraversalContext(track_context=options.track_context)
        start_time = time.perf_counter()

        if self.visitor.before_traverse(roots) == VisitAction.STOP:
            context.stopped = True
            return context

        # Entries are (node, depth, leaving)
        stack = [(root, 0, False) for root in reversed(roots)]

        while stack:
            node, depth, leaving = stack.pop()

            if leaving:
                action = None
                if self._should_visit(node):
                    action = self.visitor.leave_node(node, context)
                context.pop()
                if action == VisitAction.STOP:
                    context.stopped = True
                    break
                continue

            if node.type in options.skip_types:
                continue

            context.push(node, depth)
            if options.enable_metrics:
                context.record(node, depth)

            action = None
            if self._should_visit(node):
                action = self.visitor.enter_node(node, context)

            if action == VisitAction.STOP:
                context.pop()
                context.stopped = True
                break

            stack.append((node, depth, True))

            if action == VisitAction.SKIP_CHILDREN or not node.children:
                continue

            if depth + 1 > options.max_depth:
                context.depth_limit_hits += 1
                logger.debug(f"Depth limit {options.max_depth} reached at {node.type} line {node.start_line}")
                continue

            for child in reversed(node.children):
                stack.append((child, depth + 1, False))

        self.visitor.after_traverse(roots)
        context.visit_time = time.perf_counter() - start_time
        return context

    def _should_visit(self, node: Node) -> bool:
        return not self.options.only_types or node.type in self.options.only_types

# =============================================================================
# HELPER VISITORS
# =============================================================================

class CollectingVisitor(NodeVisitor):
    """Collects every node matching a predicate."""

    def __init__(self, predicate: Callable[[Node], bool]):
        self.predicate = predicate
        self.collected: List[Node] = []

    def before_traverse(self, roots):
        self.collected = []
        return None

    def enter_node(self, node, context):
        if self.predicate(node):
            self.collected.append(node)
        return None


class FindingVisitor(NodeVisitor):
    """Stops at the first node matching a predicate."""

    def __init__(self, predicate: Callable[[Node], bool]):
        self.predicate = predicate
        self.found: Optional[Node] = None

    def before_traverse(self, roots):
        self.found = None
        return None

    def enter_node(self, node, context):
        if self.predicate(node):
            self.found = node
            return VisitAction.STOP
        return None


class CompositeVisitor(NodeVisitor):
    """
    Runs several visitors in one pass.

    Children are skipped only when every visitor asks for it; STOP from
    any visitor ends the pass.
    """

    def __init__(self, visitors: Sequence[NodeVisitor]):
        self.visitors = list(visitors)

    def before_traverse(self, roots):
        return self._combine([visitor.before_traverse(roots) for visitor in self.visitors])

    def enter_node(self, node, context):
        return self._combine([visitor.enter_node(node, context) for visitor in self.visitors])

    def leave_node(self, node, context):
        return self._combine([visitor.leave_node(node, context) for visitor in self.visitors])

    def after_traverse(self, roots):
        for visitor in self.visitors:
            visitor.after_traverse(roots)
        return None

    @staticmethod
    def _combine(actions: List[Optional[VisitAction]]) -> Optional[VisitAction]:
        if VisitAction.STOP in actions:
            return VisitAction.STOP
        if actions and all(action == VisitAction.SKIP_CHILDREN for action in actions):
            return VisitAction.SKIP_CHILDREN
        return None


def traverse(roots: Iterable[Node], visitor: NodeVisitor,
             options: Optional[TraversalOptions] = None) -> TraversalContext:
    """Convenience wrapper around NodeTraverser."""
    return NodeTraverser(visitor, options).traverse(roots)
