"""
Inventory store.

We keep a simple in memory store as the normalized view of one collection cycle.
Inventory plugins fill it once, collectors only read it.

Why not keep pyVmomi objects
Every property access on a managed object is a round trip to the server.
Plugins copy what the collectors need into plain records once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from vsphere_telemetry.core.types import Datacenter, Datastore, ObjectKind, ObjectRef


@dataclass
class InventoryStore:
    """
    Datacenter registry keyed by datacenter reference.

    Names are only unique within a folder, so two datacenters may share one.

    is_vcenter
    True when the inventory comes from a vCenter, False for a standalone ESXi host.
    Tags and datacenter names are only meaningful on vCenter.
    """

    is_vcenter: bool = False
    _datacenters: Dict[ObjectRef, Datacenter] = field(default_factory=dict)

    def add(self, dc: Datacenter) -> None:
        """Add or replace a datacenter record."""
        self._datacenters[dc.ref] = dc

    def get(self, name: str) -> Optional[Datacenter]:
        """First datacenter with the given name."""
        for dc in self._datacenters.values():
            if dc.name == name:
                return dc
        return None

    def by_ref(self, ref: ObjectRef) -> Optional[Datacenter]:
        return self._datacenters.get(ref)

    def all(self) -> List[Datacenter]:
        return list(self._datacenters.values())

    def names(self) -> List[str]:
        """Return sorted datacenter names. Useful for deterministic outputs."""
        return sorted(dc.name for dc in self._datacenters.values())

    def datastores(self) -> Iterator[Tuple[Datacenter, Datastore]]:
        for dc in self._datacenters.values():
            for ds in dc.datastores:
                yield dc, ds

    def list_objects(self, kind: ObjectKind) -> List[ObjectRef]:
        """Return the references of every object of the given kind."""
        if kind == ObjectKind.datacenter:
            return [dc.ref for dc in self._datacenters.values()]
        if kind == ObjectKind.datastore:
            return [ds.ref for _, ds in self.datastores()]
        return []

    def __iter__(self) -> Iterator[Datacenter]:
        return iter(self._datacenters.values())

    def __len__(self) -> int:
        return len(self._datacenters)
