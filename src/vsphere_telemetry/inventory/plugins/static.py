"""
Static inventory plugin.

Reads a local json file that contains datacenters, datastores and tags.
This is useful for dev, tests, and collecting from a saved snapshot.

Schema example
{
  "api_type": "VirtualCenter",
  "datacenters": [
    {
      "name": "dc1",
      "moid": "datacenter-2",
      "datastores": [
        {
          "moid": "datastore-11",
          "name": "nfs01",
          "url": "ds:///vmfs/volumes/6a1b-2c3d/",
          "type": "NFS",
          "overall_status": "green",
          "accessible": true,
          "capacity": 1099511627776,
          "free_space": 549755813888,
          "uncommitted": 0,
          "vm_count": 3,
          "host_count": 2,
          "backing": {"kind": "nas", "remote_host": "10.0.0.5", "remote_path": "/export/ds"}
        }
      ]
    }
  ],
  "tags": [
    {"type": "Datastore", "id": "datastore-11", "category": "env", "name": "prod"}
  ]
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Set

from vsphere_telemetry.core.errors import ServiceUnavailable
from vsphere_telemetry.core.types import (
    BackingKind,
    Datacenter,
    Datastore,
    DatastoreBacking,
    ObjectKind,
    ObjectRef,
    Tag,
)
from vsphere_telemetry.inventory.plugins.base import InventoryPlugin, TagService
from vsphere_telemetry.inventory.store import InventoryStore

VCENTER_API_TYPE = "VirtualCenter"


def _parse_backing(obj: dict[str, Any]) -> DatastoreBacking:
    """Convert a backing dict to DatastoreBacking, unknown kinds become other."""
    kind_raw = str(obj.get("kind", "other"))
    try:
        kind = BackingKind(kind_raw)
    except ValueError:
        kind = BackingKind.other
    return DatastoreBacking(
        kind=kind,
        remote_host=str(obj.get("remote_host", "")),
        remote_path=str(obj.get("remote_path", "")),
    )


def _datastore_from_dict(obj: dict[str, Any]) -> Datastore:
    """Convert a datastore dict into a Datastore."""
    return Datastore(
        ref=ObjectRef(kind=ObjectKind.datastore.value, moid=str(obj["moid"])),
        name=str(obj.get("name", "")),
        url=str(obj.get("url", "")),
        fs_type=str(obj.get("type", "")),
        overall_status=str(obj.get("overall_status", "gray")),
        accessible=bool(obj.get("accessible", False)),
        capacity=int(obj.get("capacity", 0) or 0),
        free_space=int(obj.get("free_space", 0) or 0),
        uncommitted=int(obj.get("uncommitted", 0) or 0),
        vm_count=int(obj.get("vm_count", 0) or 0),
        host_count=int(obj.get("host_count", 0) or 0),
        backing=_parse_backing(obj.get("backing", {}) or {}),
    )


def _datacenter_from_dict(obj: dict[str, Any]) -> Datacenter:
    """Convert a datacenter dict into a Datacenter."""
    name = str(obj["name"])
    dc = Datacenter(
        ref=ObjectRef(kind=ObjectKind.datacenter.value, moid=str(obj.get("moid", name))),
        name=name,
    )
    for raw in obj.get("datastores", []) or []:
        if isinstance(raw, dict):
            dc.datastores.append(_datastore_from_dict(raw))
    return dc


@dataclass(frozen=True)
class StaticInventoryPlugin(InventoryPlugin, TagService):
    """
    Load inventory and tags from a local json file.

    path points to a json file that matches the schema described in the module docstring.
    """

    path: Path

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ServiceUnavailable(f"cannot read inventory file {self.path}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def load(self) -> InventoryStore:
        data = self._read()

        store = InventoryStore(is_vcenter=data.get("api_type", VCENTER_API_TYPE) == VCENTER_API_TYPE)
        datacenters = data.get("datacenters", [])
        if isinstance(datacenters, list):
            for obj in datacenters:
                if not isinstance(obj, dict):
                    continue
                try:
                    store.add(_datacenter_from_dict(obj))
                except (AttributeError, KeyError, TypeError, ValueError) as exc:
                    raise ServiceUnavailable(f"malformed inventory file {self.path}: {exc!r}") from exc

        return store

    def snapshot(self) -> Dict[ObjectRef, Set[Tag]]:
        data = self._read()

        tags: Dict[ObjectRef, Set[Tag]] = {}
        for raw in data.get("tags", []) or []:
            if not isinstance(raw, dict):
                continue
            ref = ObjectRef(kind=str(raw.get("type", "")), moid=str(raw.get("id", "")))
            tags.setdefault(ref, set()).add(Tag(category=str(raw.get("category", "")), value=str(raw.get("name", ""))))
        return tags
