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

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any

from core import CacheError, ParseError
from parsing.nodes import AstProvider, ParseErrorInfo, Tree

logger = logging.getLogger(__name__)

PARTIAL_PARSE_SENTINEL = "// Parsing stopped due to syntax error"

# =============================================================================
# PARSED FILE CONTEXT
# =============================================================================

@dataclass
class ParsedFile:
    """
    A parsed source file handed to analyzers.

    Holds the source text alongside its tree so rules can pull line content
    and code snippets without touching the filesystem again.
    """
    file_path: str
    content: str
    content_hash: str
    tree: Tree
    syntax_errors: List[ParseErrorInfo] = field(default_factory=list)
    encoding: str = "utf-8"
    parse_time: float = 0.0
    from_cache: bool = False

    def __post_init__(self):
        self._lines = self.content.splitlines()

    @property
    def has_errors(self) -> bool:
        return bool(self.syntax_errors) or self.tree.has_errors

    @property
    def partial(self) -> bool:
        return self.tree.partial

    @property
    def lines(self) -> List[str]:
        return self._lines

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def size(self) -> int:
        return len(self.content.encode('utf-8'))

    @property
    def extension(self) -> str:
        return Path(self.file_path).suffix.lower().lstrip('.')

    def get_line(self, line_number: int) -> Optional[str]:
        """Get a specific line by number (1-based)."""
        if 1 <= line_number <= len(self._lines):
            return self._lines[line_number - 1]
        return None

    def get_lines(self, start_line: int, end_line: int) -> List[str]:
        """Get a range of lines (1-based, inclusive)."""
        start_idx = max(0, start_line - 1)
        end_idx = min(len(self._lines), end_line)
        return self._lines[start_idx:end_idx]

    def first_error_line(self) -> Optional[int]:
        if not self.syntax_errors:
            return None
        return min(error.line for error in self.syntax_errors)

# =============================================================================
# PARSE CACHE
# =============================================================================

@dataclass
class CacheEntry:
    key: str
    content_hash: str
    parsed: ParsedFile
    created_at: float
    last_access: float
    hits: int = 0


class ParseCache:
    """
    Bounded LRU store of parsed files keyed by path and content hash.

    The cache is advisory: a failed lookup or store is logged and bypassed,
    and the file is parsed directly. Lookups and stores are serialized by a
    single lock while parsing itself runs outside of it.
    """

    def __init__(self, provider: AstProvider, capacity: int = 1000,
                 eviction_batch: Optional[int] = None,
                 ttl_seconds: Optional[float] = None):
        if capacity <= 0:
            raise ValueError(f"Cache capacity must be positive, got {capacity}")

        self.provider = provider
        self.capacity = capacity
        self.eviction_batch = eviction_batch or max(1, capacity // 10)
        self.ttl_seconds = ttl_seconds
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._lock = threading.RLock()
        self._stats = {
            'files_parsed': 0,
            'cache_hits': 0,
            'cache_misses': 0,
            'parse_errors': 0,
            'partial_parses': 0,
            'provider_failures': 0,
            'evictions': 0,
            'cache_bypasses': 0,
            'total_parse_time': 0.0
        }

    @staticmethod
    def content_hash(content: str) -> str:
        return hashlib.md5(content.encode('utf-8', errors='surrogatepass')).hexdigest()

    @staticmethod
    def make_key(file_path: str, content_hash: str) -> str:
        return f"{file_path}:{content_hash}"

    def get(self, file_path: str, content_hash: str) -> Optional[ParsedFile]:
        """
        Look up a cached parse.

        Args:
            file_path (str): Path the content was read from
            content_hash (str): Hash of the current file content

        Returns:
            ParsedFile: Cached parse, or None on a miss

        Raises:
            CacheError: If the stored entry does not match its key
        """
        key = self.make_key(file_path, content_hash)

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats['cache_misses'] += 1
                return None

            now = time.monotonic()
            if self.ttl_seconds is not None and now - entry.created_at > self.ttl_seconds:
                del self._entries[key]
                self._stats['cache_misses'] += 1
                logger.debug(f"Cache entry expired: {key}")
                return None

            if entry.parsed.content_hash != content_hash or entry.parsed.file_path != file_path:
                del self._entries[key]
                raise CacheError(f"Cache entry {key} does not match its content")

            entry.last_access = now
            entry.hits += 1
            self._entries.move_to_end(key)
            self._stats['cache_hits'] += 1
            return entry.parsed

    def put(self, file_path: str, content_hash: str, parsed: ParsedFile) -> None:
        """Store a parse, evicting a batch of least-recently-used entries on overflow."""
        key = self.make_key(file_path, content_hash)
        now = time.monotonic()

        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = CacheEntry(key, content_hash, parsed, now, now)

            if len(self._entries) > self.capacity:
                self._evict(max(self.eviction_batch, len(self._entries) - self.capacity))

    def _evict(self, count: int) -> None:
        count = min(count, len(self._entries))
        for _ in range(count):
            key, _entry = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry: {key}")
        self._stats['evictions'] += count

    def parse(self, file_path: str, content: str, encoding: str = "utf-8") -> ParsedFile:
        """
        Get the parse of a file, parsing on a cache miss.

        Never raises for cache problems; those are bypassed.
        """
        content_hash = self.content_hash(content)

        try:
            cached = self.get(file_path, content_hash)
        except CacheError as e:
            logger.warning(f"Parse cache bypassed for {file_path}: {str(e)}")
            self._increment('cache_bypasses')
            cached = None

        if cached is not None:
            logger.debug(f"Parse cache hit: {file_path}")
            return ParsedFile(
                file_path=cached.file_path,
                content=cached.content,
                content_hash=cached.content_hash,
                tree=cached.tree,
                syntax_errors=list(cached.syntax_errors),
                encoding=cached.encoding,
                parse_time=cached.parse_time,
                from_cache=True
            )

        parsed = self.parse_source(file_path, content, content_hash, encoding)

        try:
            self.put(file_path, content_hash, parsed)
        except Exception as e:
            logger.warning(f"Could not cache parse of {file_path}: {str(e)}")
            self._increment('cache_bypasses')

        return parsed

    def parse_source(self, file_path: str, content: str,
                     content_hash: Optional[str] = None, encoding: str = "utf-8") -> ParsedFile:
        """Parse without consulting the cache, recovering a prefix on syntax errors."""
        start_time = time.time()
        content_hash = content_hash or self.content_hash(content)

        try:
            tree, errors = self._run_provider(file_path, content)
        except ParseError as e:
            self._increment('provider_failures')
            logger.warning(f"Parser failed on {file_path}: {str(e)}")
            tree = Tree.empty(content)
            errors = [ParseErrorInfo(str(e), max(e.line, 1), node_type='PARSER_FAILURE')]

        if errors:
            self._increment('parse_errors')
            first_error = min(errors, key=lambda error: (error.line, error.column))
            logger.debug(f"Syntax error in {file_path} on line {first_error.line}: {first_error.message}")
            tree = self._partial_parse(file_path, content, first_error.line, tree)

        parse_time = time.time() - start_time
        with self._lock:
            self._stats['files_parsed'] += 1
            self._stats['total_parse_time'] += parse_time

        return ParsedFile(
            file_path=file_path,
            content=content,
            content_hash=content_hash,
            tree=tree,
            syntax_errors=list(errors),
            encoding=encoding,
            parse_time=parse_time
        )

    def _run_provider(self, file_path: str, content: str):
        try:
            return self.provider.parse(content)
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"{type(e).__name__}: {str(e)}", file_path=file_path) from e

    def _partial_parse(self, file_path: str, content: str, error_line: int, fallback: Tree) -> Tree:
        """Re-parse the lines before the first syntax error."""
        prefix_lines = content.splitlines()[:max(0, error_line - 1)]
        prefix = "\n".join(prefix_lines + [PARTIAL_PARSE_SENTINEL])

        try:
            partial_tree, _prefix_errors = self.provider.parse(prefix)
        except Exception as e:
            logger.warning(f"Partial parse of {file_path} failed, using error-tolerant tree: {str(e)}")
            return fallback.mark_partial()

        self._increment('partial_parses')
        logger.info(f"Recovered partial tree for {file_path} (lines 1-{len(prefix_lines)})")
        return partial_tree.mark_partial()

    def _increment(self, stat: str) -> None:
        with self._lock:
            self._stats[stat] += 1

    def invalidate(self, file_path: str) -> int:
        """Drop every cached parse of a path."""
        prefix = f"{file_path}:"
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        """Cache keys from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            lookups = stats['cache_hits'] + stats['cache_misses']
            stats['hit_rate'] = stats['cache_hits'] / lookups if lookups else 0.0
            stats['size'] = len(self._entries)
            stats['capacity'] = self.capacity
            stats['eviction_batch'] = self.eviction_batch
        return stats
