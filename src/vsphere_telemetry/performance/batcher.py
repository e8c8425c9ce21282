"""
Performance batcher.

vSphere bounds how many entities and how many counters one QueryPerf call
may carry. The batcher splits a request into bounded queries and merges the
answers so callers see one table, as if a single unbounded query had run.

Plan
Objects are split into consecutive chunks of at most max_entities.
Counters are split into consecutive chunks of at most max_counters.
Every (object chunk, counter chunk) pair is one query, so E objects and C
counters cost ceil(E / max_entities) * ceil(C / max_counters) queries.

Merge
Each (object, counter) pair belongs to exactly one query, so the merge is a
disjoint union. A pair without data stays absent.

Failures
A failing query is recorded and the others still run. Completed queries are
always merged, even when the call is cancelled or runs out of time.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from vsphere_telemetry.core.config import DEFAULT_PERF_WORKERS
from vsphere_telemetry.core.errors import InvalidConfiguration
from vsphere_telemetry.core.types import ObjectRef, PerfSample
from vsphere_telemetry.performance.base import PerformanceService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How often a waiting get_metrics call checks the cancel signal.
POLL_INTERVAL_SECONDS = 0.05


class _Cancelled(Exception):
    """Raised inside a worker when the cancel signal fired before the query started."""


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive chunks of at most size elements."""
    if size < 1:
        raise InvalidConfiguration(f"chunk size must be at least 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def expected_queries(entities: int, counters: int, max_entities: int, max_counters: int) -> int:
    """Number of queries needed for the given request shape."""
    return math.ceil(entities / max_entities) * math.ceil(counters / max_counters)


@dataclass(frozen=True)
class ChunkFailure:
    """A query that did not produce data, with the reason."""

    refs: Tuple[ObjectRef, ...]
    counters: Tuple[str, ...]
    error: str

    def describe(self) -> str:
        first, last = self.refs[0], self.refs[-1]
        return (
            f"{len(self.refs)} objects ({first}..{last}) x "
            f"{len(self.counters)} counters ({self.counters[0]}..{self.counters[-1]}): {self.error}"
        )


@dataclass
class BatchResult:
    """
    Merged result of one get_metrics call.

    samples
    Object reference to its samples, in requested counter order.
    Objects without any data are absent.

    failures
    Queries that failed, were cancelled, or were still running at cancellation.

    queries
    Number of planned queries.
    """

    samples: Dict[ObjectRef, List[PerfSample]] = field(default_factory=dict)
    failures: List[ChunkFailure] = field(default_factory=list)
    queries: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def get(self, ref: ObjectRef) -> List[PerfSample]:
        return self.samples.get(ref, [])

    def keys(self) -> Set[Tuple[ObjectRef, str]]:
        """All (object, counter) pairs present in the result."""
        return {(s.ref, s.counter) for samples in self.samples.values() for s in samples}

    def warning(self) -> Optional[str]:
        """One line summary of failed queries, None when all succeeded."""
        if not self.failures:
            return None
        return f"{len(self.failures)} of {self.queries} performance queries failed: " + "; ".join(
            f.describe() for f in self.failures
        )


class PerformanceBatcher:
    """
    Bounded performance queries.

    service
    Performance service answering one bounded query.

    max_entities, max_counters
    Upper bounds per query, both at least 1.

    workers
    Size of the pool running queries concurrently.

    timeout
    Optional bound in seconds for one get_metrics call.
    """

    def __init__(
        self,
        service: PerformanceService,
        max_entities: int,
        max_counters: int,
        workers: int = DEFAULT_PERF_WORKERS,
        timeout: Optional[float] = None,
        log: logging.Logger | None = None,
    ) -> None:
        for name, value in (("max_entities", max_entities), ("max_counters", max_counters), ("workers", workers)):
            if value < 1:
                raise InvalidConfiguration(f"{name} must be at least 1, got {value}")

        self._service = service
        self._max_entities = max_entities
        self._max_counters = max_counters
        self._workers = workers
        self._timeout = timeout
        self._log = log or logger

    @property
    def max_entities(self) -> int:
        return self._max_entities

    @property
    def max_counters(self) -> int:
        return self._max_counters

    def plan(
        self,
        refs: Sequence[ObjectRef],
        counters: Sequence[str],
    ) -> List[Tuple[List[ObjectRef], List[str]]]:
        """
        Build the list of bounded queries.

        Duplicates are dropped, first occurrence wins, order is kept.
        """
        unique_refs = list(dict.fromkeys(refs))
        unique_counters = list(dict.fromkeys(counters))
        return [
            (ref_chunk, counter_chunk)
            for ref_chunk in chunked(unique_refs, self._max_entities)
            for counter_chunk in chunked(unique_counters, self._max_counters)
        ]

    def get_metrics(
        self,
        refs: Sequence[ObjectRef],
        counters: Sequence[str],
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """
        Query every (object, counter) pair and merge the answers.

        cancel
        Optional signal from the collection cycle. Queries not yet started are
        skipped, queries still running are abandoned, finished ones are kept.
        """
        plan = self.plan(refs, counters)
        result = BatchResult(queries=len(plan))
        if not plan:
            return result

        stop = threading.Event()
        deadline = None if self._timeout is None else time.monotonic() + self._timeout

        def stopped() -> bool:
            return stop.is_set() or (cancel is not None and cancel.is_set())

        def run(ref_chunk: List[ObjectRef], counter_chunk: List[str]) -> List[PerfSample]:
            if stopped():
                raise _Cancelled()
            return self._service.query(ref_chunk, counter_chunk)

        collected: List[Tuple[List[ObjectRef], List[str], List[PerfSample]]] = []

        pool = ThreadPoolExecutor(max_workers=min(self._workers, len(plan)), thread_name_prefix="perf-query")
        try:
            pending: Dict[Future, Tuple[List[ObjectRef], List[str]]] = {
                pool.submit(run, ref_chunk, counter_chunk): (ref_chunk, counter_chunk)
                for ref_chunk, counter_chunk in plan
            }

            while pending:
                if deadline is not None and time.monotonic() >= deadline:
                    self._log.warning("performance queries exceeded %.1fs, abandoning %d", self._timeout, len(pending))
                    stop.set()
                if stopped():
                    self._abandon(pending, result, collected)
                    break

                done, _ = wait(pending, timeout=POLL_INTERVAL_SECONDS, return_when=FIRST_COMPLETED)
                for fut in done:
                    self._harvest(fut, pending.pop(fut), result, collected)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        self._merge(result, refs, counters, collected)
        return result

    def _harvest(
        self,
        fut: Future,
        chunk: Tuple[List[ObjectRef], List[str]],
        result: BatchResult,
        collected: List[Tuple[List[ObjectRef], List[str], List[PerfSample]]],
    ) -> None:
        ref_chunk, counter_chunk = chunk
        try:
            collected.append((ref_chunk, counter_chunk, fut.result()))
        except _Cancelled:
            self._fail(result, ref_chunk, counter_chunk, "cancelled before start")
        except Exception as exc:
            self._fail(result, ref_chunk, counter_chunk, str(exc) or exc.__class__.__name__)

    def _fail(self, result: BatchResult, refs: List[ObjectRef], counters: List[str], error: str) -> None:
        failure = ChunkFailure(refs=tuple(refs), counters=tuple(counters), error=error)
        self._log.warning("performance query failed for %s", failure.describe())
        result.failures.append(failure)

    def _abandon(
        self,
        pending: Dict[Future, Tuple[List[ObjectRef], List[str]]],
        result: BatchResult,
        collected: List[Tuple[List[ObjectRef], List[str], List[PerfSample]]],
    ) -> None:
        for fut, chunk in list(pending.items()):
            if fut.cancel():
                self._fail(result, chunk[0], chunk[1], "cancelled before start")
            elif fut.done():
                self._harvest(fut, chunk, result, collected)
            else:
                self._fail(result, chunk[0], chunk[1], "cancelled while running")
        pending.clear()

    def _merge(
        self,
        result: BatchResult,
        refs: Sequence[ObjectRef],
        counters: Sequence[str],
        collected: List[Tuple[List[ObjectRef], List[str], List[PerfSample]]],
    ) -> None:
        counter_order = {name: i for i, name in enumerate(dict.fromkeys(counters))}
        merged: Dict[ObjectRef, Dict[str, PerfSample]] = {}

        for ref_chunk, counter_chunk, samples in collected:
            allowed_refs = set(ref_chunk)
            allowed_counters = set(counter_chunk)
            for sample in samples:
                if sample.ref not in allowed_refs or sample.counter not in allowed_counters:
                    self._log.debug("dropping unrequested sample %s %s", sample.ref, sample.counter)
                    continue
                by_counter = merged.setdefault(sample.ref, {})
                if sample.counter in by_counter:
                    self._log.debug("dropping duplicate sample %s %s", sample.ref, sample.counter)
                    continue
                by_counter[sample.counter] = sample

        for ref in dict.fromkeys(refs):
            by_counter = merged.get(ref)
            if by_counter:
                result.samples[ref] = sorted(by_counter.values(), key=lambda s: counter_order[s.counter])
