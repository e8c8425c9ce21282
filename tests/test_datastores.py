from __future__ import annotations

from vsphere_telemetry.collect.datastores import (
    DatastoreCollector,
    DatastoreOptions,
    datastore_refs,
    sanitize_entity_name,
)
from vsphere_telemetry.core.types import (
    BackingKind,
    Datacenter,
    Datastore,
    DatastoreBacking,
    ObjectRef,
    Tag,
)
from vsphere_telemetry.inventory.store import InventoryStore
from vsphere_telemetry.output.builder import EntityBuilder
from vsphere_telemetry.output.entity import EntityRegistry
from vsphere_telemetry.performance.batcher import PerformanceBatcher
from vsphere_telemetry.performance.mock import InMemoryPerformanceService
from vsphere_telemetry.tags.filter import InclusionFilter
from vsphere_telemetry.tags.index import TagIndex

GIB = 1 << 30


def make_datastore(moid: str, name: str, **kw) -> Datastore:
    return Datastore(
        ref=ObjectRef(kind="Datastore", moid=moid),
        name=name,
        url=f"ds:///vmfs/volumes/{moid}/",
        fs_type=kw.pop("fs_type", "VMFS"),
        overall_status="green",
        accessible=True,
        capacity=100 * GIB,
        free_space=40 * GIB,
        uncommitted=5 * GIB,
        vm_count=3,
        host_count=2,
        **kw,
    )


def make_inventory(*datastores: Datastore, is_vcenter: bool = True) -> InventoryStore:
    store = InventoryStore(is_vcenter=is_vcenter)
    store.add(Datacenter(ref=ObjectRef(kind="Datacenter", moid="datacenter-2"), name="dc1", datastores=list(datastores)))
    return store


def make_collector(
    options: DatastoreOptions,
    include_tags: str = "",
    tags: dict | None = None,
) -> tuple[DatastoreCollector, EntityBuilder]:
    builder = EntityBuilder(EntityRegistry())
    index = TagIndex.from_mapping(tags or {})
    inclusion = InclusionFilter.parse(include_tags, tag_collection_enabled=options.tags)
    return DatastoreCollector(builder, options, inclusion, index), builder


def test_sanitize_entity_name():
    assert sanitize_entity_name(" ds1 ", "dc1", is_vcenter=True) == "dc1:ds1"
    assert sanitize_entity_name("ds1", "ha-datacenter", is_vcenter=False) == "ds1"
    assert sanitize_entity_name("ds1", "", is_vcenter=True) == "ds1"


def test_datastore_sample_attributes():
    ds = make_datastore("datastore-11", "ds1")
    collector, builder = make_collector(DatastoreOptions(datacenter_location="sydney", is_vcenter=True))

    assert collector.collect(make_inventory(ds)) == 1

    entity = builder.registry.get("Datastore", ds.url)
    ms = entity.metric_set
    assert entity.name == "dc1:ds1"
    assert ms.event_type == "VSphereDatastoreSample"
    assert ms.get("datacenterLocation") == "sydney"
    assert ms.get("datacenterName") == "dc1"
    assert ms.get("name") == "ds1"
    assert ms.get("fileSystemType") == "VMFS"
    assert ms.get("overallStatus") == "green"
    assert ms.get("accessible") == "true"
    assert ms.get("url") == ds.url
    assert ms.get("vmCount") == 3.0
    assert ms.get("hostCount") == 2.0
    assert ms.get("capacity") == 100.0
    assert ms.get("freeSpace") == 40.0
    assert ms.get("uncommitted") == 5.0
    assert "nas.remoteHost" not in ms


def test_esxi_has_no_datacenter_name():
    ds = make_datastore("datastore-11", "ds1")
    collector, builder = make_collector(DatastoreOptions(is_vcenter=False))

    collector.collect(make_inventory(ds, is_vcenter=False))

    ms = builder.registry.get("Datastore", ds.url).metric_set
    assert "datacenterName" not in ms
    assert "datacenterLocation" not in ms


def test_nas_backing_attributes():
    ds = make_datastore(
        "datastore-12",
        "nfs01",
        fs_type="NFS",
        backing=DatastoreBacking(kind=BackingKind.nas, remote_host="10.0.0.5", remote_path="/export/ds"),
    )
    collector, builder = make_collector(DatastoreOptions(is_vcenter=True))

    collector.collect(make_inventory(ds))

    ms = builder.registry.get("Datastore", ds.url).metric_set
    assert ms.get("nas.remoteHost") == "10.0.0.5"
    assert ms.get("nas.remotePath") == "/export/ds"


def test_tag_filter_excludes_before_anything_is_written():
    prod = make_datastore("datastore-1", "prod")
    dev = make_datastore("datastore-2", "dev")
    untagged = make_datastore("datastore-3", "untagged")
    tags = {
        prod.ref: {Tag("env", "prod")},
        dev.ref: {Tag("env", "dev")},
    }
    collector, builder = make_collector(DatastoreOptions(is_vcenter=True, tags=True), "env=prod", tags)
    inventory = make_inventory(prod, dev, untagged)

    assert collector.collect(inventory) == 1
    assert len(builder.registry) == 1

    entity = builder.registry.get("Datastore", prod.url)
    assert entity.metric_set.get("tags.env") == "prod"
    assert entity.inventory == {"tags/env": "prod"}
    assert datastore_refs(inventory.get("dc1"), collector) == [prod.ref]


def test_filter_ignored_when_tags_disabled():
    a = make_datastore("datastore-1", "a")
    b = make_datastore("datastore-2", "b")
    collector, builder = make_collector(DatastoreOptions(is_vcenter=True, tags=False), "env=prod")

    assert collector.collect(make_inventory(a, b)) == 2
    assert "tags.env" not in builder.registry.get("Datastore", a.url).metric_set


def test_performance_samples_and_instances():
    ds = make_datastore("datastore-11", "ds1")
    svc = InMemoryPerformanceService()
    svc.add(ds.ref, "disk.used.latest", 42.0, instances={"lun1": 10.0, "lun2": 32.0})
    result = PerformanceBatcher(svc, max_entities=10, max_counters=10).get_metrics([ds.ref], ["disk.used.latest"])

    collector, builder = make_collector(
        DatastoreOptions(datacenter_location="sydney", is_vcenter=True, perf_metrics=True, consider_instances=True)
    )
    inventory = make_inventory(ds)
    collector.collect(inventory, {inventory.get("dc1").ref: result})

    assert len(builder.registry) == 3
    assert builder.registry.get("Datastore", ds.url).metric_set.get("perf.disk.used.latest") == 42.0

    lun = builder.registry.get("DatastoreInstance", f"{ds.url}:lun1").metric_set
    assert lun.get("perf.disk.used.latest") == 10.0
    assert lun.get("dataStoreID") == ds.url
    assert lun.get("datacenterLocation") == "sydney"
    assert lun.get("datacenterName") == "dc1"
    assert lun.get("instanceName") == "lun1"


def test_entity_without_url_is_skipped_and_reported():
    ds = make_datastore("datastore-11", "ds1")
    ds.url = ""
    ok = make_datastore("datastore-12", "ds2")
    collector, builder = make_collector(DatastoreOptions(is_vcenter=True))

    assert collector.collect(make_inventory(ds, ok)) == 1
    assert builder.errors.entities == 1
