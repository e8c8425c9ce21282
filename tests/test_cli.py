from __future__ import annotations

import json
from pathlib import Path

from vsphere_telemetry.agent import cli
from vsphere_telemetry.agent.cli import build_parser, main
from vsphere_telemetry.core.errors import ServiceUnavailable

INVENTORY = {
    "api_type": "VirtualCenter",
    "datacenters": [
        {
            "name": "dc1",
            "datastores": [{"moid": "datastore-11", "name": "ds1", "url": "ds:///vmfs/volumes/ds1/", "accessible": True}],
        }
    ],
    "tags": [{"type": "Datastore", "id": "datastore-11", "category": "env", "name": "prod"}],
}


def test_offline_cycle_prints_payload(tmp_path: Path, capsys):
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps(INVENTORY), encoding="utf-8")

    code = main(["--inventory_file", str(path), "--enable_vsphere_tags", "--datacenter_location", "sydney"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    (item,) = payload["data"]
    assert item["entity"]["name"] == "dc1:ds1"
    assert item["metrics"][0]["datacenterLocation"] == "sydney"
    assert item["metrics"][0]["tags.env"] == "prod"


def test_invalid_batch_size_exits_with_2(tmp_path: Path):
    assert main(["--inventory_file", str(tmp_path / "x.json"), "--batch_size_perf_entities", "0"]) == 2


def test_missing_connection_arguments_exit_with_2(monkeypatch):
    for name in ("VSPHERE_URL", "VSPHERE_USER", "VSPHERE_PASS"):
        monkeypatch.delenv(name, raising=False)
    assert main([]) == 2


def test_unreadable_inventory_exits_with_1(tmp_path: Path):
    assert main(["--inventory_file", str(tmp_path / "missing.json")]) == 1


def test_flags_read_from_environment(monkeypatch):
    monkeypatch.setenv("VSPHERE_BATCH_SIZE_PERF_METRICS", "10")
    monkeypatch.setenv("VSPHERE_ENABLE_VSPHERE_TAGS", "true")
    monkeypatch.setenv("VSPHERE_INCLUDE_TAGS", "env=prod")

    args = build_parser().parse_args([])

    assert args.batch_size_perf_metrics == 10
    assert args.enable_vsphere_tags
    assert args.include_tags == "env=prod"


def test_live_mode_closes_tag_client_and_disconnects(monkeypatch):
    events: list[str] = []
    service_instance = object()

    class RecordingClient:
        def __init__(self, **kwargs):
            events.append("client")

        def close(self):
            events.append("close")

    class UnreachableInventory:
        def __init__(self, si):
            pass

        def load(self):
            raise ServiceUnavailable("vCenter not reachable")

    monkeypatch.setattr(cli, "connect_service_instance", lambda config: service_instance)
    monkeypatch.setattr(cli, "disconnect_service_instance", lambda si: events.append("disconnect"))
    monkeypatch.setattr(cli, "is_vcenter", lambda si: True)
    monkeypatch.setattr(cli, "RequestsRestClient", RecordingClient)
    monkeypatch.setattr(cli, "VSphereInventoryPlugin", UnreachableInventory)

    code = main(["--url", "https://vc.local/sdk", "--user", "u", "--pass", "p", "--enable_vsphere_tags"])

    assert code == 1
    assert events == ["client", "close", "disconnect"]


def test_perf_timeout_read_from_environment(monkeypatch):
    monkeypatch.setenv("VSPHERE_PERF_TIMEOUT", "12.5")
    assert build_parser().parse_args([]).perf_timeout == 12.5
