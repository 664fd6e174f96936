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
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Hashable, List, Optional, Sequence, Tuple

from core import AnalysisTimeoutError

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    """Final state of one pool task."""
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class TaskResult:
    key: Hashable
    status: TaskStatus
    value: Any = None
    error: str = ""
    execution_time: float = 0.0
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.COMPLETED


@dataclass
class PoolStatistics:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    cancelled: int = 0
    retries: int = 0
    abandoned: int = 0
    executors_replaced: int = 0
    total_execution_time: float = 0.0
    sequential_fallback: bool = False

    def record(self, result: TaskResult) -> None:
        self.total_execution_time += result.execution_time
        if result.status == TaskStatus.COMPLETED:
            self.completed += 1
        elif result.status == TaskStatus.TIMEOUT:
            self.timed_out += 1
        elif result.status == TaskStatus.CANCELLED:
            self.cancelled += 1
        else:
            self.failed += 1

    @property
    def average_execution_time(self) -> float:
        finished = self.completed + self.failed + self.timed_out
        return self.total_execution_time / finished if finished else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'submitted': self.submitted,
            'completed': self.completed,
            'failed': self.failed,
            'timed_out': self.timed_out,
            'cancelled': self.cancelled,
            'retries': self.retries,
            'abandoned_threads': self.abandoned,
            'executors_replaced': self.executors_replaced,
            'average_execution_time': self.average_execution_time,
            'sequential_fallback': self.sequential_fallback
        }


class _RunningTask:
    """Bookkeeping for a dispatched task; started_at is set by the worker thread."""

    def __init__(self, key: Hashable, attempt: int):
        self.key = key
        self.attempt = attempt
        self.started_at: Optional[float] = None

    def elapsed(self, now: float) -> float:
        return now - self.started_at if self.started_at is not None else 0.0


class WorkerPool:
    """
    Runs one callable per task key on a bounded thread pool.

    At most worker_count tasks are live at once. Each task gets its own
    timeout, measured from the moment it starts running; a task that runs
    over is abandoned and reported as TIMEOUT while the others continue;
    once every thread is held by such a task the executor is replaced.
    If threads cannot be started the remaining tasks run sequentially.
    Results are returned keyed in input order whatever the completion order.
    """

    def __init__(self, worker_count: int = 4, timeout: Optional[float] = None,
                 max_retries: int = 0, poll_interval: float = 0.05,
                 executor_factory: Callable[..., Any] = ThreadPoolExecutor):
        """
        Args:
            worker_count (int): Concurrent tasks; 0 or less runs sequentially
            timeout (float, optional): Per-task timeout in seconds
            max_retries (int): Extra attempts for tasks that raise
            poll_interval (float): Seconds between timeout checks
            executor_factory: Callable creating the executor (max_workers=...)
        """
        self.worker_count = worker_count
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.poll_interval = poll_interval
        self.executor_factory = executor_factory
        self.stats = PoolStatistics()

    def run(self, keys: Sequence[Hashable], func: Callable[[Hashable], Any],
            cancel_event: Optional[threading.Event] = None) -> Dict[Hashable, TaskResult]:
        """
        Execute func(key) for every key.

        Args:
            keys: Unique task keys
            func: Work function; its return value becomes TaskResult.value
            cancel_event (threading.Event, optional): Stops dispatching new tasks when set

        Returns:
            dict: key -> TaskResult, in input order
        """
        self.stats = PoolStatistics(submitted=len(keys))
        results: Dict[Hashable, TaskResult] = {}
        pending: Deque[Tuple[Hashable, int]] = deque((key, 1) for key in keys)

        if self.worker_count <= 0:
            self._run_sequential(pending, func, cancel_event, results)
        else:
            self._run_threaded(pending, func, cancel_event, results)

        return {key: results[key] for key in keys}

    # -------------------------------------------------------------------------
    # Threaded execution
    # -------------------------------------------------------------------------

    def _run_threaded(self, pending, func, cancel_event, results) -> None:
        # Spare threads absorb abandoned tasks without stalling dispatch
        max_threads = self.worker_count * 2
        try:
            executor = self.executor_factory(max_workers=max_threads)
        except RuntimeError as e:
            logger.warning(f"Worker threads unavailable ({str(e)}), running sequentially")
            self.stats.sequential_fallback = True
            self._run_sequential(pending, func, cancel_event, results)
            return

        live: Dict[Future, _RunningTask] = {}
        abandoned: List[Future] = []
        fallback = False

        try:
            while live or (pending and not fallback):
                if cancel_event is not None and cancel_event.is_set() and pending:
                    self._cancel_pending(pending, results)

                abandoned = [future for future in abandoned if not future.done()]
                free_threads = max_threads - len(abandoned)

                while pending and not fallback and len(live) < min(self.worker_count, free_threads):
                    key, attempt = pending.popleft()
                    task = _RunningTask(key, attempt)
                    try:
                        future = executor.submit(self._invoke, func, task)
                    except RuntimeError as e:
                        logger.warning(f"Task dispatch failed ({str(e)}), running remaining tasks sequentially")
                        pending.appendleft((key, attempt))
                        fallback = True
                        self.stats.sequential_fallback = True
                        break
                    live[future] = task

                if not live:
                    if not pending or fallback:
                        break
                    # Every thread is held by an abandoned task
                    try:
                        executor = self._replace_executor(executor, max_threads, len(abandoned))
                    except RuntimeError as e:
                        logger.warning(f"Worker threads unavailable ({str(e)}), running remaining tasks sequentially")
                        fallback = True
                        self.stats.sequential_fallback = True
                    abandoned = []
                    continue

                done, _ = wait(list(live), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for future in done:
                    task = live.pop(future)
                    self._collect(future, task, pending, results)

                if self.timeout is not None:
                    now = time.monotonic()
                    for future, task in list(live.items()):
                        if task.started_at is not None and task.elapsed(now) > self.timeout:
                            del live[future]
                            future.cancel()
                            abandoned.append(future)
                            self.stats.abandoned += 1
                            logger.warning(f"Task {task.key} exceeded timeout of {self.timeout:.3f}s, abandoning")
                            self._finish(results, TaskResult(
                                key=task.key,
                                status=TaskStatus.TIMEOUT,
                                error=str(AnalysisTimeoutError(str(task.key), self.timeout)),
                                execution_time=task.elapsed(now),
                                attempts=task.attempt
                            ))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if pending:
            self._run_sequential(pending, func, cancel_event, results)

    @staticmethod
    def _invoke(func, task: _RunningTask):
        task.started_at = time.monotonic()
        return func(task.key)

    def _collect(self, future: Future, task: _RunningTask, pending, results) -> None:
        elapsed = task.elapsed(time.monotonic())
        try:
            value = future.result()
        except Exception as e:
            if task.attempt <= self.max_retries:
                logger.warning(f"Task {task.key} failed on attempt {task.attempt}: {str(e)}, retrying")
                self.stats.retries += 1
                pending.appendleft((task.key, task.attempt + 1))
                return
            logger.error(f"Task {task.key} failed: {str(e)}")
            self._finish(results, TaskResult(task.key, TaskStatus.FAILED, error=str(e),
                                             execution_time=elapsed, attempts=task.attempt))
            return

        self._finish(results, TaskResult(task.key, TaskStatus.COMPLETED, value=value,
                                         execution_time=elapsed, attempts=task.attempt))

    def _cancel_pending(self, pending, results) -> None:
        logger.info(f"Cancellation requested, {len(pending)} tasks not dispatched")
        while pending:
            key, attempt = pending.popleft()
            self._finish(results, TaskResult(key, TaskStatus.CANCELLED, error="Cancelled before start",
                                             attempts=attempt - 1))

    def _replace_executor(self, executor, max_threads: int, stuck: int):
        logger.warning(f"All worker threads are held by {stuck} timed-out tasks, starting a fresh executor")
        executor.shutdown(wait=False, cancel_futures=True)
        replacement = self.executor_factory(max_workers=max_threads)
        self.stats.executors_replaced += 1
        return replacement

    # -------------------------------------------------------------------------
    # Sequential execution
    # -------------------------------------------------------------------------

    def _run_sequential(self, pending, func, cancel_event, results) -> None:
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                self._cancel_pending(pending, results)
                return

            key, attempt = pending.popleft()
            start_time = time.monotonic()
            try:
                value = func(key)
            except Exception as e:
                if attempt <= self.max_retries:
                    logger.warning(f"Task {key} failed on attempt {attempt}: {str(e)}, retrying")
                    self.stats.retries += 1
                    pending.appendleft((key, attempt + 1))
                    continue
                logger.error(f"Task {key} failed: {str(e)}")
                self._finish(results, TaskResult(key, TaskStatus.FAILED, error=str(e),
                                                 execution_time=time.monotonic() - start_time, attempts=attempt))
                continue

            elapsed = time.monotonic() - start_time
            if self.timeout is not None and elapsed > self.timeout:
                # Cannot interrupt inline work; discard the late result
                logger.warning(f"Task {key} took {elapsed:.3f}s, over the {self.timeout:.3f}s timeout")
                self._finish(results, TaskResult(key, TaskStatus.TIMEOUT,
                                                 error=str(AnalysisTimeoutError(str(key), self.timeout)),
                                                 execution_time=elapsed, attempts=attempt))
                continue

            self._finish(results, TaskResult(key, TaskStatus.COMPLETED, value=value,
                                             execution_time=elapsed, attempts=attempt))

    def _finish(self, results: Dict[Hashable, TaskResult], result: TaskResult) -> None:
        results[result.key] = result
        self.stats.record(result)

    def get_statistics(self) -> Dict[str, Any]:
        return self.stats.to_dict()
