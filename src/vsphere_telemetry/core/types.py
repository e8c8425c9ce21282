"""
Core types.

This file defines the shared data structures used across the agent.

Important design choice
We keep these types SDK neutral.

SDK neutral means:
Inventory plugins translate pyVmomi objects into these records once,
and the rest of the agent never touches a managed object directly.
That keeps the batcher, the filter and the builders testable with plain data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ObjectKind(str, Enum):
    """
    Inventory object kinds.

    Values are the vSphere managed object type names so an ObjectRef built
    from a tag association and one built from a managed object compare equal.
    """

    datacenter = "Datacenter"
    datastore = "Datastore"
    host = "HostSystem"
    vm = "VirtualMachine"
    cluster = "ClusterComputeResource"


class MetricType(str, Enum):
    """
    Metric classification.

    attribute
      Strings and booleans describing the entity.

    gauge
      Numeric sample.
    """

    attribute = "attribute"
    gauge = "gauge"


class BackingKind(str, Enum):
    """
    Datastore backing kinds.

    Only some kinds carry extra attributes, see collect.datastores.
    """

    nas = "nas"
    vmfs = "vmfs"
    vsan = "vsan"
    other = "other"


@dataclass(frozen=True, order=True)
class ObjectRef:
    """
    Opaque stable identifier for one inventory object.

    kind is the managed object type, moid the managed object id
    such as datastore-12.
    """

    kind: str
    moid: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.moid}"


@dataclass(frozen=True, order=True)
class Tag:
    """A category and value pair attached to inventory objects."""

    category: str
    value: str


@dataclass(frozen=True)
class PerfSample:
    """
    One performance counter reading for one object.

    value is the aggregate value. It is None when the service only returned
    per instance series for the counter.

    instances maps a vendor assigned instance key to its value.
    It is empty for aggregate only counters.
    """

    ref: ObjectRef
    counter: str
    value: Optional[float]
    instances: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class DatastoreBacking:
    """
    How a datastore is backed.

    remote_host and remote_path are only meaningful for nas.
    """

    kind: BackingKind = BackingKind.other
    remote_host: str = ""
    remote_path: str = ""


@dataclass
class Datastore:
    """
    A datastore record.

    capacity, free_space and uncommitted are in bytes, as reported by the
    datastore summary.
    """

    ref: ObjectRef
    name: str
    url: str
    fs_type: str = ""
    overall_status: str = "gray"
    accessible: bool = False
    capacity: int = 0
    free_space: int = 0
    uncommitted: int = 0
    vm_count: int = 0
    host_count: int = 0
    backing: DatastoreBacking = field(default_factory=DatastoreBacking)


@dataclass
class Datacenter:
    """
    A datacenter and the objects collected below it.

    On a standalone ESXi host there is a single implicit datacenter.
    """

    ref: ObjectRef
    name: str
    datastores: List[Datastore] = field(default_factory=list)
