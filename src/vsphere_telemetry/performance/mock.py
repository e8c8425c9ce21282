"""
In memory performance service.

This service is used for tests and local simulations.
It behaves like a counter database keyed by object reference and counter name.

Features
- Records every query so callers can assert on batch shapes
- Can fail queries that touch given objects
- Can block queries until released, to exercise cancellation
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from vsphere_telemetry.core.errors import ServiceUnavailable
from vsphere_telemetry.core.types import ObjectRef, PerfSample
from vsphere_telemetry.performance.base import PerformanceService


@dataclass
class InMemoryPerformanceService(PerformanceService):
    """
    In memory performance service.

    samples
    Mapping of object to counter to the sample returned for that pair.

    failing
    Objects whose presence in a query makes the whole query fail.

    gated, gate
    Queries touching a gated object wait on gate, when given, before answering.
    """

    samples: Dict[ObjectRef, Dict[str, PerfSample]] = field(default_factory=dict)
    failing: Set[ObjectRef] = field(default_factory=set)
    gated: Set[ObjectRef] = field(default_factory=set)
    gate: Optional[threading.Event] = None
    calls: List[Tuple[Tuple[ObjectRef, ...], Tuple[str, ...]]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, ref: ObjectRef, counter: str, value: Optional[float], instances: Optional[Dict[str, float]] = None) -> None:
        self.samples.setdefault(ref, {})[counter] = PerfSample(
            ref=ref,
            counter=counter,
            value=value,
            instances=dict(instances or {}),
        )

    def query(self, refs: Sequence[ObjectRef], counters: Sequence[str]) -> List[PerfSample]:
        with self._lock:
            self.calls.append((tuple(refs), tuple(counters)))

        if self.gate is not None and any(ref in self.gated for ref in refs):
            self.gate.wait()

        bad = [ref for ref in refs if ref in self.failing]
        if bad:
            raise ServiceUnavailable(f"performance query failed for {', '.join(str(r) for r in bad)}")

        out: List[PerfSample] = []
        for ref in refs:
            by_counter = self.samples.get(ref, {})
            for counter in counters:
                if counter in by_counter:
                    out.append(by_counter[counter])
        return out
