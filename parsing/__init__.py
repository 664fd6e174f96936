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

from .nodes import Node, Tree, ParseErrorInfo, AstProvider
from .parse_cache import ParseCache, ParsedFile, CacheEntry, PARTIAL_PARSE_SENTINEL
from .traversal import (
    NodeVisitor,
    NodeTraverser,
    TraversalContext,
    TraversalOptions,
    VisitAction,
    VisitFrame,
    CollectingVisitor,
    FindingVisitor,
    CompositeVisitor,
    traverse
)

__all__ = [
    # Trees
    'Node',
    'Tree',
    'ParseErrorInfo',
    'AstProvider',

    # Cache
    'ParseCache',
    'ParsedFile',
    'CacheEntry',
    'PARTIAL_PARSE_SENTINEL',

    # Traversal
    'NodeVisitor',
    'NodeTraverser',
    'TraversalContext',
    'TraversalOptions',
    'VisitAction',
    'VisitFrame',
    'CollectingVisitor',
    'FindingVisitor',
    'CompositeVisitor',
    'traverse'
]
