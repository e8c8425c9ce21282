from __future__ import annotations

import json
import threading
from pathlib import Path

from vsphere_telemetry.agent.runner import CollectionDriver, CycleReport
from vsphere_telemetry.core.config import CollectorConfig
from vsphere_telemetry.core.errors import ServiceUnavailable, TagServiceError
from vsphere_telemetry.core.serialization import INTEGRATION_NAME, payload_to_json
from vsphere_telemetry.core.types import ObjectKind, ObjectRef
from vsphere_telemetry.inventory.plugins.static import StaticInventoryPlugin
from vsphere_telemetry.inventory.store import InventoryStore
from vsphere_telemetry.performance.counters import CounterSelection
from vsphere_telemetry.performance.mock import InMemoryPerformanceService

DS1 = ObjectRef(kind="Datastore", moid="datastore-11")
DS2 = ObjectRef(kind="Datastore", moid="datastore-12")


def make_datastore(moid: str, name: str) -> dict:
    return {
        "moid": moid,
        "name": name,
        "url": f"ds:///vmfs/volumes/{moid}/",
        "type": "VMFS",
        "overall_status": "green",
        "accessible": True,
        "capacity": 1 << 31,
        "free_space": 1 << 30,
        "vm_count": 1,
        "host_count": 1,
    }


def write_inventory(tmp_path: Path) -> StaticInventoryPlugin:
    payload = {
        "api_type": "VirtualCenter",
        "datacenters": [
            {
                "name": "dc1",
                "moid": "datacenter-2",
                "datastores": [make_datastore("datastore-11", "prod01"), make_datastore("datastore-12", "dev01")],
            }
        ],
        "tags": [
            {"type": "Datastore", "id": "datastore-11", "category": "env", "name": "prod"},
            {"type": "Datastore", "id": "datastore-12", "category": "env", "name": "dev"},
        ],
    }
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return StaticInventoryPlugin(path=path)


def test_runner_cycle_with_static_inventory_tags_and_perf(tmp_path: Path):
    plugin = write_inventory(tmp_path)
    perf = InMemoryPerformanceService()
    perf.add(DS1, "disk.used.latest", 42.0, instances={"lun1": 10.0, "lun2": 32.0})
    perf.add(DS2, "disk.used.latest", 7.0)

    reports: list[CycleReport] = []
    config = CollectorConfig(
        enable_perf_metrics=True,
        consider_instances=True,
        enable_tags=True,
        include_tags="env=prod",
        batch_size_perf_entities=1,
    )
    driver = CollectionDriver(
        config,
        inventory_plugin=plugin,
        tag_service=plugin,
        perf_service=perf,
        counters=CounterSelection(by_kind={ObjectKind.datastore: ["disk.used.latest"]}),
        sink=reports.append,
    )

    report = driver.run_cycle()

    assert reports == [report]
    assert report.ok
    assert report.datastores == 1
    # excluded datastores are never queried
    assert perf.calls == [((DS1,), ("disk.used.latest",))]

    kinds = sorted(e.kind for e in report.entities)
    assert kinds == ["Datastore", "DatastoreInstance", "DatastoreInstance"]

    parent = report.entities[0]
    assert parent.name == "dc1:prod01"
    assert parent.metric_set.get("perf.disk.used.latest") == 42.0
    assert parent.metric_set.get("tags.env") == "prod"
    assert parent.metric_set.get("capacity") == 2.0


def test_tag_failure_degrades_to_warning(tmp_path: Path):
    plugin = write_inventory(tmp_path)

    class BrokenTags:
        def snapshot(self):
            raise TagServiceError("tagging endpoint returned 503")

    config = CollectorConfig(enable_tags=True, include_tags="env=prod")
    report = CollectionDriver(config, inventory_plugin=plugin, tag_service=BrokenTags()).run_cycle()

    assert report.warnings == ["tagging endpoint returned 503"]
    # no tags known, so the filter lets nothing through
    assert report.datastores == 0
    assert report.entities == []


def test_tags_disabled_reports_everything(tmp_path: Path):
    plugin = write_inventory(tmp_path)
    config = CollectorConfig(include_tags="env=prod")

    report = CollectionDriver(config, inventory_plugin=plugin, tag_service=plugin).run_cycle()

    assert report.datastores == 2
    assert all("tags.env" not in e.metric_set for e in report.entities)


def test_failed_perf_chunk_is_a_warning(tmp_path: Path):
    plugin = write_inventory(tmp_path)
    perf = InMemoryPerformanceService(failing={DS2})
    perf.add(DS1, "disk.used.latest", 1.0)

    config = CollectorConfig(enable_perf_metrics=True, batch_size_perf_entities=1)
    driver = CollectionDriver(
        config,
        inventory_plugin=plugin,
        perf_service=perf,
        counters=CounterSelection(by_kind={ObjectKind.datastore: ["disk.used.latest"]}),
    )
    report = driver.run_cycle()

    assert report.datastores == 2
    assert len(report.warnings) == 1
    assert report.warnings[0].startswith("dc1: 1 of 2 performance queries failed")

    by_name = {e.name: e for e in report.entities}
    assert by_name["dc1:prod01"].metric_set.get("perf.disk.used.latest") == 1.0
    assert "perf.disk.used.latest" not in by_name["dc1:dev01"].metric_set


def test_run_forever_survives_unavailable_inventory():
    stop = threading.Event()
    reports: list[CycleReport] = []

    class FlakyPlugin:
        def __init__(self):
            self.calls = 0

        def load(self):
            self.calls += 1
            if self.calls == 1:
                raise ServiceUnavailable("vCenter not reachable")
            stop.set()
            return InventoryStore(is_vcenter=True)

    plugin = FlakyPlugin()
    CollectionDriver(CollectorConfig(interval_seconds=1), inventory_plugin=plugin, sink=reports.append).run_forever(stop)

    assert plugin.calls == 2
    assert len(reports) == 1


def test_payload_shape(tmp_path: Path):
    plugin = write_inventory(tmp_path)
    config = CollectorConfig(enable_tags=True)
    report = CollectionDriver(config, inventory_plugin=plugin, tag_service=plugin).run_cycle()

    payload = payload_to_json(report.entities, "0.3.0")

    assert payload["name"] == INTEGRATION_NAME
    assert payload["protocol_version"] == "3"
    first = payload["data"][0]
    assert first["entity"] == {"name": "dc1:prod01", "type": "Datastore", "id": "ds:///vmfs/volumes/datastore-11/"}
    assert first["metrics"][0]["event_type"] == "VSphereDatastoreSample"
    assert first["inventory"] == {"tags/env": {"value": "prod"}}
    json.dumps(payload)


def test_run_forever_with_zero_interval_runs_one_cycle():
    calls = []

    class CountingPlugin:
        def load(self):
            calls.append(1)
            raise ServiceUnavailable("vCenter not reachable")

    CollectionDriver(CollectorConfig(interval_seconds=0), inventory_plugin=CountingPlugin()).run_forever()

    assert calls == [1]


def test_same_named_datacenters_keep_their_own_datastores(tmp_path: Path):
    payload = {
        "api_type": "VirtualCenter",
        "datacenters": [
            {"name": "dc1", "moid": "datacenter-2", "datastores": [make_datastore("datastore-11", "a")]},
            {"name": "dc1", "moid": "datacenter-7", "datastores": [make_datastore("datastore-12", "b")]},
        ],
    }
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    perf = InMemoryPerformanceService()
    perf.add(DS1, "disk.used.latest", 1.0)
    perf.add(DS2, "disk.used.latest", 2.0)
    config = CollectorConfig(enable_perf_metrics=True)
    driver = CollectionDriver(
        config,
        inventory_plugin=StaticInventoryPlugin(path=path),
        perf_service=perf,
        counters=CounterSelection(by_kind={ObjectKind.datastore: ["disk.used.latest"]}),
    )

    report = driver.run_cycle()

    assert report.datastores == 2
    values = sorted(e.metric_set.get("perf.disk.used.latest") for e in report.entities)
    assert values == [1.0, 2.0]
