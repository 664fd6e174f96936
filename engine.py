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
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import List, Dict, Any, Optional, Iterable, Union

from core import Analyzer, AnalyzerError, AnalyzerRegistry, AnalyzerResult, Config
from language_modules import load_language_analyzers
from parsing.nodes import AstProvider
from parsing.parse_cache import ParseCache, ParsedFile
from reporter.aggregator import AnalysisReport, BatchReport, ReportAggregator
from utils.file_utils import discover_source_files, read_source_file
from utils.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100


@dataclass
class EngineStats:
    """Counters for one pipeline run, merged into the engine totals afterwards."""
    files_analyzed: int = 0
    files_failed: int = 0
    analyzer_runs: int = 0
    analyzer_failures: int = 0
    analyzers_skipped: int = 0
    issues_found: int = 0
    partial_files: int = 0
    total_time: float = 0.0

    def merge(self, other: 'EngineStats') -> None:
        self.files_analyzed += other.files_analyzed
        self.files_failed += other.files_failed
        self.analyzer_runs += other.analyzer_runs
        self.analyzer_failures += other.analyzer_failures
        self.analyzers_skipped += other.analyzers_skipped
        self.issues_found += other.issues_found
        self.partial_files += other.partial_files
        self.total_time += other.total_time

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AnalysisEngine:
    """
    Orchestrates parsing, analyzers and aggregation for PHP files.

    Every failure met while analyzing a file becomes data: a failed
    AnalyzerResult inside the report, or a failed report entry. Only
    configuration problems raise.
    """

    def __init__(self, config: Optional[Config] = None, provider: Optional[AstProvider] = None,
                 cache: Optional[ParseCache] = None):
        """
        Initialize the engine.

        Args:
            config (Config, optional): Analysis configuration
            provider (AstProvider, optional): Parser; the tree-sitter PHP provider by default
            cache (ParseCache, optional): Shared parse cache
        """
        self.config = config or Config()

        if provider is None:
            from language_modules.php.parser import PhpAstProvider
            provider = PhpAstProvider()

        self.cache = cache or ParseCache(
            provider,
            capacity=self.config.get_cache_capacity(),
            eviction_batch=self.config.get_cache_eviction_batch(),
            ttl_seconds=self.config.get_cache_ttl()
        )
        self.registry = AnalyzerRegistry()
        self.aggregator = ReportAggregator()
        self.stats = EngineStats()
        self._stats_lock = threading.Lock()
        self._last_pool_stats: Dict[str, Any] = {}

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def register_analyzer(self, analyzer: Analyzer) -> None:
        self.registry.register(analyzer)

    def unregister_analyzer(self, name: str) -> bool:
        return self.registry.unregister(name)

    def get_analyzer(self, name: str) -> Optional[Analyzer]:
        return self.registry.get(name)

    def get_analyzers(self) -> List[Analyzer]:
        return self.registry.analyzers()

    def should_run(self, analyzer: Analyzer, parsed_file: ParsedFile) -> bool:
        """An analyzer runs when enabled, compatible with the file and able to handle its parse state."""
        if not self.config.is_analyzer_enabled(analyzer.name):
            return False
        if parsed_file.has_errors and not analyzer.supports_error_recovery():
            return False
        return analyzer.supports_file_type(parsed_file.extension)

    # =========================================================================
    # SINGLE FILE
    # =========================================================================

    def analyze_file(self, file_path: Union[str, Path]) -> AnalysisReport:
        """
        Analyze one file from disk.

        Args:
            file_path: Path to the PHP file

        Returns:
            AnalysisReport: Report for the file, failed if it could not be read
        """
        path = str(file_path)
        max_size = int(self.config.get_max_file_size_mb() * 1024 * 1024)

        try:
            content, encoding = read_source_file(path, max_size)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read {path}: {str(e)}")
            with self._stats_lock:
                self.stats.files_failed += 1
            return AnalysisReport.failure(path, f"Read error: {str(e)}")

        return self.analyze_source(path, content, encoding)

    def analyze_source(self, file_path: str, content: str, encoding: str = "utf-8") -> AnalysisReport:
        """Analyze source text that is already in memory."""
        start_time = time.time()
        run_stats = EngineStats()

        try:
            parsed_file = self.cache.parse(file_path, content, encoding)
            report = self._analyze_parsed(parsed_file, run_stats)
        except Exception as e:
            logger.error(f"Analysis of {file_path} failed: {type(e).__name__}: {str(e)}")
            with self._stats_lock:
                self.stats.files_failed += 1
            return AnalysisReport.failure(file_path, f"Analysis error: {type(e).__name__}: {str(e)}",
                                          execution_time=time.time() - start_time)

        run_stats.files_analyzed += 1
        run_stats.total_time = time.time() - start_time
        report.execution_time = run_stats.total_time

        with self._stats_lock:
            self.stats.merge(run_stats)
        return report

    def _analyze_parsed(self, parsed_file: ParsedFile, stats: EngineStats) -> AnalysisReport:
        results: List[AnalyzerResult] = []

        if parsed_file.partial:
            stats.partial_files += 1
            logger.warning(f"Analyzing {parsed_file.file_path} up to line "
                           f"{parsed_file.first_error_line() - 1} after a syntax error")

        for analyzer in self.registry.analyzers():
            if not self.should_run(analyzer, parsed_file):
                stats.analyzers_skipped += 1
                logger.debug(f"Skipping {analyzer.name} analyzer for {parsed_file.file_path}")
                continue

            result = self._run_analyzer(analyzer, parsed_file)
            stats.analyzer_runs += 1
            if not result.success:
                stats.analyzer_failures += 1
            results.append(result)

        report = self.aggregator.aggregate(
            parsed_file.file_path,
            results,
            parse_errors=[error.to_dict() for error in parsed_file.syntax_errors],
            partial=parsed_file.partial
        )
        stats.issues_found += len(report.issues)
        return report

    def _run_analyzer(self, analyzer: Analyzer, parsed_file: ParsedFile) -> AnalyzerResult:
        start_time = time.time()
        try:
            result = analyzer.analyze(parsed_file)
        except Exception as e:
            error = AnalyzerError(analyzer.name, f"{type(e).__name__}: {str(e)}")
            logger.error(f"{str(error)} on {parsed_file.file_path}")
            return AnalyzerResult.failure(analyzer.name, parsed_file.file_path, str(error), time.time() - start_time)

        if not isinstance(result, AnalyzerResult):
            error = AnalyzerError(analyzer.name, f"returned {type(result).__name__}, expected AnalyzerResult")
            return AnalyzerResult.failure(analyzer.name, parsed_file.file_path, str(error), time.time() - start_time)
        return result

    # =========================================================================
    # MANY FILES
    # =========================================================================

    def analyze_files(self, file_paths: Iterable[Union[str, Path]]) -> Dict[str, AnalysisReport]:
        """Analyze files one after another, in input order."""
        reports: Dict[str, AnalysisReport] = {}
        paths = [str(path) for path in file_paths]

        for index, path in enumerate(paths, start=1):
            reports[path] = self.analyze_file(path)
            if index % PROGRESS_INTERVAL == 0:
                logger.info(f"Analyzed {index}/{len(paths)} files")

        return reports

    def analyze_batch(self, file_paths: Iterable[Union[str, Path]],
                      cancel_event: Optional[threading.Event] = None) -> Dict[str, AnalysisReport]:
        """
        Analyze files concurrently on the worker pool.

        The analyzer registry is read-only while the batch runs. Files that
        fail, time out or are cancelled get a failed report entry, so the
        result always has one entry per input path.

        Args:
            file_paths: Files to analyze
            cancel_event (threading.Event, optional): Stops dispatch of further files

        Returns:
            dict: path -> AnalysisReport, in input order
        """
        paths = list(dict.fromkeys(str(path) for path in file_paths))
        pool = WorkerPool(
            worker_count=self.config.get_worker_count(),
            timeout=self.config.get_per_file_timeout()
        )

        logger.info(f"Starting batch analysis of {len(paths)} files with {pool.worker_count} workers")
        start_time = time.time()

        with self.registry.locked():
            task_results = pool.run(paths, self.analyze_file, cancel_event)

        reports: Dict[str, AnalysisReport] = {}
        failures = 0
        for path, task in task_results.items():
            if task.succeeded:
                reports[path] = task.value
                continue
            failures += 1
            reports[path] = AnalysisReport.failure(path, task.error, status=task.status.value,
                                                   execution_time=task.execution_time)

        with self._stats_lock:
            self.stats.files_failed += failures
        self._last_pool_stats = pool.get_statistics()

        logger.info(f"Batch analysis finished in {time.time() - start_time:.2f}s: "
                    f"{len(paths) - failures} analyzed, {failures} failed")
        return reports

    def create_batch_report(self, reports: Dict[str, AnalysisReport]) -> BatchReport:
        return self.aggregator.create_batch_report(reports)

    def discover_files(self, target: Union[str, Path]) -> List[str]:
        """Find analyzable files under a file or directory, honoring exclusions."""
        files = [str(path) for path in discover_source_files(
            target, self.config.get_file_extensions(), self.config.should_exclude_file)]
        logger.info(f"Discovered {len(files)} PHP files under {target}")
        return files

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            engine_stats = self.stats.to_dict()
        return {
            'engine': engine_stats,
            'cache': self.cache.get_statistics(),
            'aggregator': self.aggregator.get_statistics(),
            'worker_pool': dict(self._last_pool_stats),
            'analyzers': self.registry.names()
        }


def create_default_engine(config: Optional[Config] = None) -> AnalysisEngine:
    """Engine with the built-in PHP analyzers registered."""
    config = config or Config()
    engine = AnalysisEngine(config)
    for analyzer in load_language_analyzers('php', config):
        engine.register_analyzer(analyzer)
    return engine


def analyze_file(file_path: Union[str, Path], config: Optional[Config] = None) -> AnalysisReport:
    return create_default_engine(config).analyze_file(file_path)


def analyze_batch(file_paths: Iterable[Union[str, Path]], config: Optional[Config] = None) -> Dict[str, AnalysisReport]:
    return create_default_engine(config).analyze_batch(file_paths)
