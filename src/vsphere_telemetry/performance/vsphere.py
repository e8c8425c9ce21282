"""
vSphere performance service.

Wraps PerformanceManager.QueryPerf behind the PerformanceService interface.

Counter names use the group.name.rollup form, e.g. disk.used.latest.
They are resolved to numeric counter ids once, from perfManager.perfCounter.

Instances
With instances disabled, only the aggregate series (instance "") is requested.
With instances enabled, every series is requested (instance "*") and each
non empty instance key lands in PerfSample.instances.
"""

from __future__ import annotations

import http.client
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pyVmomi import vim, vmodl

from vsphere_telemetry.core.errors import ServiceUnavailable
from vsphere_telemetry.core.types import ObjectKind, ObjectRef, PerfSample
from vsphere_telemetry.performance.base import PerformanceService

logger = logging.getLogger(__name__)

# Default vCenter real time sampling interval
REAL_TIME_INTERVAL = 20
# Datastores, clusters and datacenters only expose historical intervals.
HISTORICAL_INTERVAL = 300

INTERVAL_BY_KIND: Dict[str, int] = {
    ObjectKind.host.value: REAL_TIME_INTERVAL,
    ObjectKind.vm.value: REAL_TIME_INTERVAL,
    ObjectKind.datastore.value: HISTORICAL_INTERVAL,
    ObjectKind.cluster.value: HISTORICAL_INTERVAL,
    ObjectKind.datacenter.value: HISTORICAL_INTERVAL,
}

# Value reported by vSphere when a sample is not available.
UNAVAILABLE = -1


def counter_catalogue(perf_counters: Iterable[Any]) -> Dict[str, int]:
    """Map group.name.rollup to counter id."""
    catalogue: Dict[str, int] = {}
    for info in perf_counters:
        name = f"{info.groupInfo.key}.{info.nameInfo.key}.{info.rollupType}"
        catalogue[name] = info.key
    return catalogue


def _latest(series: Sequence[Any]) -> Optional[float]:
    if not series:
        return None
    value = series[-1]
    if value is None or value == UNAVAILABLE:
        return None
    return float(value)


def parse_entity_metrics(
    results: Iterable[Any],
    refs: Sequence[ObjectRef],
    counter_names: Mapping[int, str],
    log: logging.Logger | None = None,
) -> List[PerfSample]:
    """
    Convert QueryPerf results into PerfSample records.

    results are EntityMetric objects, each with an entity and a list of
    series keyed by (counterId, instance). Series of entities or counters
    that were not requested are skipped.
    """
    log = log or logger
    by_moid = {ref.moid: ref for ref in refs}
    samples: List[PerfSample] = []

    for entity_metric in results or []:
        moid = getattr(entity_metric.entity, "_moId", None)
        ref = by_moid.get(moid)
        if ref is None:
            log.debug("skipping performance data for unrequested entity %s", moid)
            continue

        aggregate: Dict[str, float] = {}
        instances: Dict[str, Dict[str, float]] = {}
        order: List[str] = []

        for series in entity_metric.value or []:
            counter = counter_names.get(series.id.counterId)
            if counter is None:
                continue
            value = _latest(series.value)
            if value is None:
                continue
            if counter not in order:
                order.append(counter)
            instance = series.id.instance or ""
            if instance:
                instances.setdefault(counter, {})[instance] = value
            else:
                aggregate[counter] = value

        for counter in order:
            samples.append(
                PerfSample(
                    ref=ref,
                    counter=counter,
                    value=aggregate.get(counter),
                    instances=instances.get(counter, {}),
                )
            )

    return samples


class VSpherePerformanceService(PerformanceService):
    """
    Performance service backed by a connected ServiceInstance.

    The counter catalogue is read lazily on the first call and kept for the
    lifetime of the service, which is one collection cycle.
    """

    def __init__(
        self,
        service_instance: Any,
        consider_instances: bool = False,
        log: logging.Logger | None = None,
    ) -> None:
        self._si = service_instance
        self._perf_manager = service_instance.content.perfManager
        self._consider_instances = consider_instances
        self._log = log or logger
        self._catalogue: Optional[Dict[str, int]] = None
        self._names: Dict[int, str] = {}

    def catalogue(self) -> Dict[str, int]:
        if self._catalogue is None:
            try:
                self._catalogue = counter_catalogue(self._perf_manager.perfCounter)
            except (vmodl.MethodFault, OSError, http.client.HTTPException) as exc:
                raise ServiceUnavailable(f"cannot read performance counters: {exc}") from exc
            self._names = {key: name for name, key in self._catalogue.items()}
        return self._catalogue

    def log_available_counters(self) -> None:
        for name in sorted(self.catalogue()):
            self._log.info("available performance counter %s", name)

    def known_counters(self, counters: Sequence[str], kind: str = "") -> List[str]:
        """Keep the counters the server exposes, warn about the others."""
        catalogue = self.catalogue()
        known: List[str] = []
        for counter in counters:
            if counter in catalogue:
                known.append(counter)
            else:
                self._log.warning("performance counter %s not available for %s, skipping", counter, kind or "objects")
        return known

    def _managed_object(self, ref: ObjectRef) -> Any:
        return getattr(vim, ref.kind)(ref.moid, self._si._stub)

    def query(self, refs: Sequence[ObjectRef], counters: Sequence[str]) -> List[PerfSample]:
        if not refs or not counters:
            return []

        catalogue = self.catalogue()
        instance = "*" if self._consider_instances else ""
        metric_ids = [
            vim.PerformanceManager.MetricId(counterId=catalogue[c], instance=instance)
            for c in counters
            if c in catalogue
        ]
        if not metric_ids:
            return []

        interval = INTERVAL_BY_KIND.get(refs[0].kind, REAL_TIME_INTERVAL)
        specs = [
            vim.PerformanceManager.QuerySpec(
                entity=self._managed_object(ref),
                metricId=metric_ids,
                intervalId=interval,
                maxSample=1,
            )
            for ref in refs
        ]

        try:
            results = self._perf_manager.QueryPerf(querySpec=specs)
        except (vmodl.MethodFault, OSError, http.client.HTTPException) as exc:
            raise ServiceUnavailable(f"QueryPerf failed: {exc}") from exc

        return parse_entity_metrics(results, refs, self._names, log=self._log)
