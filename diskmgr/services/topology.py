"""
Topology Catalog
Read-only lookups over regions, storage backends, storage details and devices.
Reference rows are written at startup by the host inventory, never here.
"""

import logging
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from diskmgr.errors import NotFound
from diskmgr.models import Device, Region, StorageBackend, StorageDetail, StorageType

logger = logging.getLogger(__name__)


class DeviceListing:
    """
    Devices of one storage detail ordered by device name.

    Iterating runs the query again, so the listing can be walked more than
    once; rows are streamed in batches rather than loaded at once.
    """

    def __init__(self, db: Session, detail_id: int, batch_size: int = 100):
        self.db = db
        self.detail_id = detail_id
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[Device]:
        stmt = (
            select(Device)
            .where(Device.detail_id == self.detail_id)
            .order_by(Device.device_name, Device.device_id)
            .execution_options(yield_per=self.batch_size)
        )
        for device in self.db.scalars(stmt):
            yield device


class TopologyCatalog:

    def __init__(self, db: Session):
        self.db = db

    def get_region_id(self, region_name: str) -> Optional[int]:
        region_id = self.db.scalar(select(Region.region_id).where(Region.region_name == region_name))
        if region_id is None:
            logger.debug(f"No region with name {region_name} in database")
        return region_id

    def get_storage_id(self, backend: StorageBackend) -> Optional[int]:
        backend = StorageBackend(backend)
        storage_id = self.db.scalar(select(StorageType.storage_id).where(StorageType.storage_type == backend))
        if storage_id is None:
            logger.debug(f"No storage with type {backend.value} in database")
        return storage_id

    def get_storage_detail_id(self, storage_id: int, region_id: int, hostname: str) -> Optional[int]:
        return self.db.scalar(
            select(StorageDetail.detail_id).where(
                StorageDetail.storage_id == storage_id,
                StorageDetail.region_id == region_id,
                StorageDetail.hostname == hostname,
            )
        )

    def resolve_storage_detail(self, region_name: str, backend: StorageBackend, hostname: str) -> StorageDetail:
        """
        Raises:
            NotFound: region, backend or the (region, backend, hostname) detail is absent
        """
        backend = StorageBackend(backend)
        detail = self.db.scalars(
            select(StorageDetail)
            .join(Region, Region.region_id == StorageDetail.region_id)
            .join(StorageType, StorageType.storage_id == StorageDetail.storage_id)
            .where(
                Region.region_name == region_name,
                StorageType.storage_type == backend,
                StorageDetail.hostname == hostname,
            )
        ).first()
        if detail is None:
            raise NotFound("Storage detail", f"{region_name}/{backend.value}/{hostname}")
        return detail

    def get_storage_detail(self, detail_id: int) -> StorageDetail:
        detail = self.db.get(StorageDetail, detail_id)
        if detail is None:
            raise NotFound("Storage detail", detail_id)
        return detail

    def list_devices(self, detail: StorageDetail, batch_size: int = 100) -> DeviceListing:
        return DeviceListing(self.db, detail.detail_id, batch_size=batch_size)

    def get_device(self, device_id: int) -> Device:
        device = self.db.get(Device, device_id)
        if device is None:
            raise NotFound("Device", device_id)
        return device

    def find_device(self, detail: StorageDetail, device_path: str) -> Optional[Device]:
        return self.db.scalars(
            select(Device).where(Device.detail_id == detail.detail_id, Device.device_path == device_path)
        ).first()

    def get_hostname(self, device_id: int) -> Optional[str]:
        return self.db.scalar(
            select(StorageDetail.hostname)
            .join(Device, Device.detail_id == StorageDetail.detail_id)
            .where(Device.device_id == device_id)
        )
