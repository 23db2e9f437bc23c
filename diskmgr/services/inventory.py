"""
Host inventory
Startup-time writer of reference rows: region, storage detail and the devices
a daemon discovers on its host. Runtime code reads them via TopologyCatalog.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from diskmgr.database import seed_reference_data
from diskmgr.errors import InventoryMismatch, NotFound
from diskmgr.models import (
    DaemonInstance,
    Device,
    DeviceState,
    Region,
    StorageBackend,
    StorageDetail,
    StorageType,
)
from diskmgr.services.process_registry import ProcessRegistry

logger = logging.getLogger(__name__)


@dataclass
class HostDetails:
    entry: DaemonInstance
    region: Region
    detail: StorageDetail


class HostInventory:

    def __init__(self, db: Session):
        self.db = db

    def seed(self) -> None:
        seed_reference_data(self.db)

    def ensure_region(self, region_name: str, commit: bool = True) -> Region:
        region = self.db.scalars(select(Region).where(Region.region_name == region_name)).first()
        if region is None:
            logger.debug(f"Adding region {region_name} to database")
            region = Region(region_name=region_name)
            self.db.add(region)
            self.db.flush()
        if commit:
            self.db.commit()
        return region

    def ensure_storage_detail(
        self,
        region: Region,
        backend: StorageBackend,
        hostname: str,
        array_name: Optional[str] = None,
        pool_name: Optional[str] = None,
        uuid: Optional[str] = None,
        commit: bool = True,
    ) -> StorageDetail:
        """
        Raises:
            NotFound: backend type was never seeded
        """
        backend = StorageBackend(backend)
        storage_type = self.db.scalars(select(StorageType).where(StorageType.storage_type == backend)).first()
        if storage_type is None:
            logger.error(f"Storage type {backend.value} not in database")
            raise NotFound("Storage type", backend.value)

        detail = self.db.scalars(
            select(StorageDetail).where(
                StorageDetail.storage_id == storage_type.storage_id,
                StorageDetail.region_id == region.region_id,
                StorageDetail.hostname == hostname,
            )
        ).first()
        if detail is None:
            detail = StorageDetail(
                storage_type=storage_type,
                region=region,
                hostname=hostname,
                name_key1=array_name,
                name_key2=pool_name,
                uuid=uuid,
            )
            self.db.add(detail)
            self.db.flush()
            logger.info(f"Added storage detail {detail.detail_id} ({region.region_name}/{backend.value}/{hostname})")
        if commit:
            self.db.commit()
        return detail

    def register_device(
        self,
        detail: StorageDetail,
        device_name: str,
        device_path: str,
        device_uuid: Optional[str] = None,
        mount_path: Optional[str] = None,
    ) -> Device:
        """
        Insert a discovered device, or return the existing row for (device_path, detail).
        New devices start in the ``unknown`` state.

        Raises:
            InventoryMismatch: a different device already occupies this path
        """
        device = self.db.scalars(
            select(Device).where(Device.device_path == device_path, Device.detail_id == detail.detail_id)
        ).first()
        if device is not None:
            if device.device_name != device_name:
                raise InventoryMismatch(
                    f"{device_path} on storage detail {detail.detail_id} is recorded as "
                    f"{device.device_name}, discovered {device_name}"
                )
            if device_uuid and device.device_uuid and device.device_uuid != device_uuid:
                raise InventoryMismatch(
                    f"Information about {device_name} for storage detail {detail.detail_id} didn't match"
                )
            return device

        device = Device(
            detail=detail,
            device_name=device_name,
            device_path=device_path,
            device_uuid=device_uuid,
            mount_path=mount_path,
            state=DeviceState.UNKNOWN,
        )
        self.db.add(device)
        self.db.commit()
        logger.info(f"Registered device {device.device_id} ({device_name} at {device_path})")
        return device

    def update_mount(self, device: Device, mount_path: Optional[str]) -> Device:
        device.mount_path = mount_path
        self.db.commit()
        return device

    def bootstrap_host(
        self,
        ip: str,
        pid: int,
        region_name: str,
        backend: StorageBackend,
        hostname: str,
        array_name: Optional[str] = None,
        pool_name: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> HostDetails:
        """Register the daemon and make sure its region and storage detail exist."""
        logger.info(f"Adding datacenter and host information for {hostname} ({ip}) to database")
        try:
            region = self.ensure_region(region_name, commit=False)
            detail = self.ensure_storage_detail(region, backend, hostname, array_name, pool_name, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        entry = ProcessRegistry(self.db).register(ip, pid, at=at)
        return HostDetails(entry=entry, region=region, detail=detail)

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def decommission_device(self, device: Device) -> None:
        """Delete a device; its operations and their steps go with it."""
        device_id = device.device_id
        self.db.delete(device)
        self.db.commit()
        logger.info(f"Decommissioned device {device_id}")

    def purge_registry_entry(self, entry: DaemonInstance) -> None:
        """Delete a registry entry. Operations keep their entry_id as history."""
        entry_id = entry.entry_id
        self.db.delete(entry)
        self.db.commit()
        logger.info(f"Purged registry entry {entry_id}")
