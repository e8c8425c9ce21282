"""
Performance service interface.

Goal
Define a stable interface for performance counter queries without binding the
batcher to pyVmomi.

Design notes
query receives at most the configured number of objects and counters.
It returns one PerfSample per (object, counter) pair that has data.
Pairs without data are simply missing from the returned list.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence

from vsphere_telemetry.core.types import ObjectRef, PerfSample


class PerformanceService(Protocol):
    """
    Minimal performance service interface.

    Real implementations wrap the vSphere PerformanceManager.
    We keep the interface narrow for testability.
    """

    def query(self, refs: Sequence[ObjectRef], counters: Sequence[str]) -> List[PerfSample]:
        """Return samples for the requested objects and counters."""
