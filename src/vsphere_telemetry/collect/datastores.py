"""
Datastore samples.

Builds one VSphereDatastoreSample entity per included datastore.

Order of work per datastore
1) inclusion filter, before anything is written
2) entity, keyed by the datastore url
3) summary attributes and capacity gauges
4) backing specific attributes
5) tags
6) performance counters, plus per instance entities when enabled
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from vsphere_telemetry.core.types import BackingKind, Datacenter, Datastore, DatastoreBacking, ObjectRef
from vsphere_telemetry.inventory.store import InventoryStore
from vsphere_telemetry.output.builder import EntityBuilder, context_attributes
from vsphere_telemetry.output.entity import MetricSet
from vsphere_telemetry.performance.batcher import BatchResult
from vsphere_telemetry.tags.filter import InclusionFilter
from vsphere_telemetry.tags.index import TagIndex

logger = logging.getLogger(__name__)

ENTITY_TYPE_DATASTORE = "Datastore"

GIB = float(1 << 30)

BackingAttributes = Callable[[DatastoreBacking], Dict[str, str]]


def _nas_attributes(backing: DatastoreBacking) -> Dict[str, str]:
    return {
        "nas.remoteHost": backing.remote_host,
        "nas.remotePath": backing.remote_path,
    }


BACKING_ATTRIBUTES: Dict[BackingKind, BackingAttributes] = {
    BackingKind.nas: _nas_attributes,
}


def sanitize_entity_name(name: str, datacenter_name: str, is_vcenter: bool) -> str:
    """
    Entity name of an inventory object.

    On vCenter, names are only unique within a datacenter, so the datacenter
    name is prepended.
    """
    name = name.strip()
    if is_vcenter and datacenter_name and name:
        return f"{datacenter_name}:{name}"
    return name


@dataclass(frozen=True)
class DatastoreOptions:
    """
    What to collect for datastores.

    datacenter_location is written when not empty.
    tags and perf_metrics switch the optional sections.
    """

    datacenter_location: str = ""
    is_vcenter: bool = False
    tags: bool = False
    perf_metrics: bool = False
    consider_instances: bool = False


class DatastoreCollector:
    """
    Writes datastore samples into an EntityBuilder.

    perf
    Batch result per datacenter reference, from PerformanceBatcher.get_metrics.
    """

    def __init__(
        self,
        builder: EntityBuilder,
        options: DatastoreOptions,
        inclusion: InclusionFilter,
        tag_index: TagIndex,
        log: logging.Logger | None = None,
    ) -> None:
        self._builder = builder
        self._options = options
        self._inclusion = inclusion
        self._tags = tag_index
        self._log = log or logger

    def included(self, ds: Datastore) -> bool:
        return self._inclusion.allows(ds.ref, self._tags)

    def collect(self, inventory: InventoryStore, perf: Optional[Dict[ObjectRef, BatchResult]] = None) -> int:
        """Build samples for every included datastore. Returns the number built."""
        perf = perf or {}
        built = 0
        for dc in inventory:
            result = perf.get(dc.ref)
            for ds in dc.datastores:
                if self.collect_one(dc, ds, result):
                    built += 1
        return built

    def collect_one(self, dc: Datacenter, ds: Datastore, perf: Optional[BatchResult] = None) -> bool:
        # filtering here to avoid sending data of excluded datastores
        if not self.included(ds):
            self._log.debug("datastore %s excluded by tag filter", ds.ref)
            return False

        opts = self._options
        b = self._builder

        entity_name = sanitize_entity_name(ds.name, dc.name, opts.is_vcenter)
        created = b.entity(ENTITY_TYPE_DATASTORE, entity_name, ds.url)
        if created is None:
            self._log.error("skipping datastore %s (%s): no entity", ds.name, ds.ref)
            return False
        entity, ms = created

        if opts.datacenter_location:
            b.set_attribute(ms, "datacenterLocation", opts.datacenter_location)
        if opts.is_vcenter:
            b.set_attribute(ms, "datacenterName", dc.name)

        b.set_attribute(ms, "name", ds.name)
        b.set_attribute(ms, "fileSystemType", ds.fs_type)
        b.set_attribute(ms, "overallStatus", ds.overall_status)
        b.set_attribute(ms, "accessible", ds.accessible)
        b.set_gauge(ms, "vmCount", ds.vm_count)
        b.set_gauge(ms, "hostCount", ds.host_count)
        b.set_attribute(ms, "url", ds.url)
        b.set_gauge(ms, "capacity", ds.capacity / GIB)
        b.set_gauge(ms, "freeSpace", ds.free_space / GIB)
        b.set_gauge(ms, "uncommitted", ds.uncommitted / GIB)

        self._backing(ms, ds.backing)

        if opts.tags:
            b.add_tags(entity, ms, self._tags.tags_by_category(ds.ref))

        if opts.perf_metrics and perf is not None:
            context = context_attributes(
                dataStoreID=ds.url,
                datacenterLocation=opts.datacenter_location,
                datacenterName=dc.name if opts.is_vcenter else "",
            )
            b.add_perf_samples(entity, ms, perf.get(ds.ref), context, opts.consider_instances)

        return True

    def _backing(self, ms: MetricSet, backing: DatastoreBacking) -> None:
        extract = BACKING_ATTRIBUTES.get(backing.kind)
        if extract is None:
            return
        for key, value in extract(backing).items():
            if value:
                self._builder.set_attribute(ms, key, value)


def datastore_refs(dc: Datacenter, collector: DatastoreCollector) -> List[ObjectRef]:
    """References of the datastores of dc that pass the inclusion filter."""
    return [ds.ref for ds in dc.datastores if collector.included(ds)]
