"""
Inventory plugin interfaces.

Goal
Provide pluggable inventory ingestion so the collectors are source agnostic.

Inventory is normalized into InventoryStore, Datacenter and Datastore records.

We keep the interfaces narrow so they are easy to fake in tests.
"""

from __future__ import annotations

from typing import Dict, Protocol, Set

from vsphere_telemetry.core.types import ObjectRef, Tag
from vsphere_telemetry.inventory.store import InventoryStore


class InventoryPlugin(Protocol):
    """
    Inventory plugin interface.

    load returns a fully populated InventoryStore.
    It raises ServiceUnavailable when the inventory cannot be read.
    """

    def load(self) -> InventoryStore:
        """Load inventory into an InventoryStore."""


class TagService(Protocol):
    """
    Tag service interface.

    snapshot returns every tagged object with its tags.
    """

    def snapshot(self) -> Dict[ObjectRef, Set[Tag]]:
        """Return the current tag associations."""
