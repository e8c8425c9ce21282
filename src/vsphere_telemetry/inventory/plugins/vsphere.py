"""
vSphere inventory plugin.

Reads datacenters and datastores from a vCenter or a standalone ESXi host
through pyVmomi, and copies what collectors need into plain records.

Connecting and disconnecting live here too, so the rest of the agent only
sees a ServiceInstance handle.
"""

from __future__ import annotations

import http.client
import logging
from dataclasses import dataclass
from typing import Any, List
from urllib.parse import urlparse

from pyVim import connect
from pyVmomi import vim, vmodl

from vsphere_telemetry.core.config import CollectorConfig
from vsphere_telemetry.core.errors import ServiceUnavailable
from vsphere_telemetry.core.types import (
    BackingKind,
    Datacenter,
    Datastore,
    DatastoreBacking,
    ObjectKind,
    ObjectRef,
)
from vsphere_telemetry.inventory.plugins.base import InventoryPlugin
from vsphere_telemetry.inventory.store import InventoryStore

logger = logging.getLogger(__name__)

VCENTER_API_TYPE = "VirtualCenter"

_FS_TYPE_BACKING = {
    "NFS": BackingKind.nas,
    "NFS41": BackingKind.nas,
    "CIFS": BackingKind.nas,
    "VMFS": BackingKind.vmfs,
    "VSAN": BackingKind.vsan,
}

_SDK_ERRORS = (vmodl.MethodFault, OSError, http.client.HTTPException)


def connect_service_instance(config: CollectorConfig) -> Any:
    """
    Open a session against the SDK url in config.

    Raises ServiceUnavailable when the endpoint cannot be reached or rejects
    the credentials.
    """
    config.require_connection()
    parsed = urlparse(config.url)
    host = parsed.hostname or config.url
    port = parsed.port or 443

    try:
        return connect.SmartConnect(
            host=host,
            port=port,
            user=config.user,
            pwd=config.password,
            disableSslCertValidation=not config.validate_ssl,
        )
    except _SDK_ERRORS as exc:
        raise ServiceUnavailable(f"connection to {host} failed: {exc}") from exc


def disconnect_service_instance(service_instance: Any) -> None:
    try:
        connect.Disconnect(service_instance)
    except _SDK_ERRORS as exc:
        logger.debug("disconnect failed: %s", exc)


def is_vcenter(service_instance: Any) -> bool:
    return service_instance.content.about.apiType == VCENTER_API_TYPE


def datastore_backing(info: Any, fs_type: str) -> DatastoreBacking:
    """Classify a datastore by its info object, falling back to the file system type."""
    if isinstance(info, vim.host.NasDatastoreInfo):
        nas = info.nas
        if nas is None:
            return DatastoreBacking(kind=BackingKind.nas)
        return DatastoreBacking(
            kind=BackingKind.nas,
            remote_host=nas.remoteHost or "",
            remote_path=nas.remotePath or "",
        )
    if isinstance(info, vim.host.VmfsDatastoreInfo):
        return DatastoreBacking(kind=BackingKind.vmfs)
    return DatastoreBacking(kind=_FS_TYPE_BACKING.get(fs_type.upper(), BackingKind.other))


def datastore_record(ds: Any) -> Datastore:
    """Copy the fields collectors need out of a vim.Datastore."""
    summary = ds.summary
    fs_type = summary.type or ""
    return Datastore(
        ref=ObjectRef(kind=ObjectKind.datastore.value, moid=ds._moId),
        name=summary.name,
        url=summary.url or "",
        fs_type=fs_type,
        overall_status=str(ds.overallStatus),
        accessible=bool(summary.accessible),
        capacity=summary.capacity or 0,
        free_space=summary.freeSpace or 0,
        uncommitted=summary.uncommitted or 0,
        vm_count=len(ds.vm),
        host_count=len(ds.host),
        backing=datastore_backing(ds.info, fs_type),
    )


@dataclass
class VSphereInventoryPlugin(InventoryPlugin):
    """
    Load inventory from a connected ServiceInstance.

    Datacenters are found with a recursive container view from the root folder.
    A standalone ESXi host exposes a single ha-datacenter.
    """

    service_instance: Any
    log: logging.Logger = logger

    def load(self) -> InventoryStore:
        try:
            return self._load()
        except _SDK_ERRORS as exc:
            raise ServiceUnavailable(f"inventory retrieval failed: {exc}") from exc

    def _load(self) -> InventoryStore:
        content = self.service_instance.content
        store = InventoryStore(is_vcenter=is_vcenter(self.service_instance))

        for dc_obj in self._datacenters(content):
            dc = Datacenter(
                ref=ObjectRef(kind=ObjectKind.datacenter.value, moid=dc_obj._moId),
                name=dc_obj.name,
            )
            for ds in dc_obj.datastore:
                try:
                    dc.datastores.append(datastore_record(ds))
                except vmodl.fault.ManagedObjectNotFound as exc:
                    self.log.warning("datastore %s vanished during collection: %s", ds._moId, exc)
            store.add(dc)
            self.log.debug("datacenter %s has %d datastores", dc.name, len(dc.datastores))

        return store

    def _datacenters(self, content: Any) -> List[Any]:
        view = content.viewManager.CreateContainerView(content.rootFolder, [vim.Datacenter], True)
        try:
            return list(view.view)
        finally:
            view.Destroy()
