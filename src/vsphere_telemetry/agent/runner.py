"""
Collection driver.

Purpose
Every cycle:
- Load inventory
- Load tags
- Query performance counters in bounded batches
- Build entities and metric sets
- Hand the result to the sink

This is the composition layer of the system.
Collaborators are injected, so the same driver runs against vCenter,
a static inventory file, or in memory test doubles.

Error policy
ServiceUnavailable from the inventory aborts the cycle and propagates.
Tag and performance failures degrade the cycle and are reported as warnings.
Entity and metric failures are counted and reported as errors.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from vsphere_telemetry.collect.datastores import DatastoreCollector, DatastoreOptions, datastore_refs
from vsphere_telemetry.core.config import CollectorConfig
from vsphere_telemetry.core.errors import ServiceUnavailable, TagServiceError
from vsphere_telemetry.core.types import ObjectKind, ObjectRef
from vsphere_telemetry.inventory.plugins.base import InventoryPlugin, TagService
from vsphere_telemetry.inventory.store import InventoryStore
from vsphere_telemetry.output.builder import EntityBuilder
from vsphere_telemetry.output.entity import Entity, EntityRegistry
from vsphere_telemetry.performance.base import PerformanceService
from vsphere_telemetry.performance.batcher import BatchResult, PerformanceBatcher
from vsphere_telemetry.performance.counters import CounterSelection
from vsphere_telemetry.tags.filter import InclusionFilter
from vsphere_telemetry.tags.index import TagIndex

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """
    Outcome of one collection cycle.

    entities
    Every entity built, in creation order.

    warnings
    Degradations such as missing tags or failed performance queries.

    errors
    Entities and metrics that were skipped.
    """

    entities: List[Entity] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    datastores: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors and not self.warnings


Sink = Callable[[CycleReport], None]


class CollectionDriver:
    """
    Top level collection loop.

    config
    Validated collector configuration.

    inventory_plugin
    Source of datacenters and datastores.

    tag_service
    Optional source of tags. Only used when tag collection is enabled.

    perf_service, counters
    Optional performance service and the counters to query per object kind.

    sink
    Receives the report of every successful cycle.
    """

    def __init__(
        self,
        config: CollectorConfig,
        inventory_plugin: InventoryPlugin,
        tag_service: TagService | None = None,
        perf_service: PerformanceService | None = None,
        counters: CounterSelection | None = None,
        sink: Sink | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._inventory_plugin = inventory_plugin
        self._tag_service = tag_service
        self._counters = counters or CounterSelection()
        self._sink = sink
        self._log = log or logger
        self._batcher: Optional[PerformanceBatcher] = None
        if perf_service is not None:
            self._batcher = PerformanceBatcher(
                perf_service,
                max_entities=config.batch_size_perf_entities,
                max_counters=config.batch_size_perf_metrics,
                workers=config.perf_workers,
                timeout=config.perf_timeout,
                log=self._log,
            )

    def run_cycle(self, cancel: threading.Event | None = None) -> CycleReport:
        """
        Execute one collection cycle.

        Raises ServiceUnavailable when the inventory cannot be loaded.
        """
        cfg = self._config
        report = CycleReport()

        inventory = self._inventory_plugin.load()
        tags_enabled = cfg.tag_collection_enabled(inventory.is_vcenter)

        tag_index = self._load_tags(tags_enabled, report)
        if cfg.include_tags.strip() and not tags_enabled:
            self._log.warning("include_tags is ignored, tag collection is not enabled or not supported")
        inclusion = InclusionFilter.parse(cfg.include_tags, tags_enabled, log=self._log)

        builder = EntityBuilder(EntityRegistry(), log=self._log)
        collector = DatastoreCollector(
            builder,
            DatastoreOptions(
                datacenter_location=cfg.datacenter_location,
                is_vcenter=inventory.is_vcenter,
                tags=tags_enabled,
                perf_metrics=cfg.perf_metrics_enabled() and self._batcher is not None,
                consider_instances=cfg.consider_instances_enabled(),
            ),
            inclusion,
            tag_index,
            log=self._log,
        )

        perf: Dict[ObjectRef, BatchResult] = {}
        if cfg.perf_metrics_enabled():
            perf = self._query_perf(inventory, collector, report, cancel)

        report.datastores = collector.collect(inventory, perf)
        report.entities = builder.registry.entities()
        report.errors.extend(builder.errors.messages)

        self._log.info(
            "cycle built %d entities (%d datastores), %d warnings, %d errors",
            len(report.entities),
            report.datastores,
            len(report.warnings),
            len(report.errors),
        )

        if self._sink is not None:
            self._sink(report)
        return report

    def _load_tags(self, enabled: bool, report: CycleReport) -> TagIndex:
        index = TagIndex(log=self._log)
        if not enabled or self._tag_service is None:
            return index
        try:
            index.load(self._tag_service.snapshot)
        except TagServiceError as exc:
            self._log.warning("continuing without tags: %s", exc)
            report.warnings.append(str(exc))
        return index

    def _query_perf(
        self,
        inventory: InventoryStore,
        collector: DatastoreCollector,
        report: CycleReport,
        cancel: threading.Event | None,
    ) -> Dict[ObjectRef, BatchResult]:
        if self._batcher is None:
            self._log.warning("performance metrics enabled but no performance service is available")
            return {}

        counters = self._counters.counters_for(ObjectKind.datastore)
        if not counters:
            self._log.debug("no datastore counters selected")
            return {}

        results: Dict[ObjectRef, BatchResult] = {}
        for dc in inventory:
            refs = datastore_refs(dc, collector)
            if not refs:
                continue
            result = self._batcher.get_metrics(refs, counters, cancel=cancel)
            warning = result.warning()
            if warning:
                report.warnings.append(f"{dc.name}: {warning}")
            results[dc.ref] = result
        return results

    def run_forever(self, stop: threading.Event | None = None) -> None:
        """
        Continuous loop execution.

        A cycle failing with ServiceUnavailable is logged, the next one still runs.
        With interval_seconds 0 a single cycle runs.
        """
        stop = stop or threading.Event()
        while not stop.is_set():
            try:
                self.run_cycle(cancel=stop)
            except ServiceUnavailable as exc:
                self._log.error("collection cycle aborted: %s", exc)
            if self._config.interval_seconds == 0:
                return
            stop.wait(self._config.interval_seconds)
