"""
Topology and inventory API

Read side: storage details and their devices.
Write side: host bootstrap and device registration done by daemons at startup.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from diskmgr.api.common import to_http
from diskmgr.database import get_db
from diskmgr.errors import DiskManagerError
from diskmgr.logic import detail_to_dict, device_to_dict, entry_to_dict, get_catalog, get_inventory
from diskmgr.models import StorageBackend

router = APIRouter(tags=["topology"])


class BootstrapRequest(BaseModel):
    ip: str
    pid: int
    region: str
    backend: StorageBackend
    hostname: str
    array_name: Optional[str] = None
    pool_name: Optional[str] = None
    at: Optional[datetime] = None


class DeviceRegisterRequest(BaseModel):
    device_name: str
    device_path: str
    device_uuid: Optional[str] = None
    mount_path: Optional[str] = None


class MountUpdateRequest(BaseModel):
    mount_path: Optional[str] = None


@router.post("/inventory/bootstrap")
def bootstrap_host(request: BootstrapRequest, db: Session = Depends(get_db)):
    """Ensure region and storage detail exist, then register the daemon."""
    try:
        host = get_inventory(db).bootstrap_host(
            request.ip,
            request.pid,
            request.region,
            request.backend,
            request.hostname,
            array_name=request.array_name,
            pool_name=request.pool_name,
            at=request.at,
        )
    except DiskManagerError as e:
        raise to_http(e)
    return {
        "entry": entry_to_dict(host.entry),
        "region_id": host.region.region_id,
        "storage_detail": detail_to_dict(host.detail),
    }


@router.get("/storage-details/resolve")
def resolve_storage_detail(
    region: str = Query(...),
    backend: StorageBackend = Query(...),
    hostname: str = Query(...),
    db: Session = Depends(get_db),
):
    try:
        return detail_to_dict(get_catalog(db).resolve_storage_detail(region, backend, hostname))
    except DiskManagerError as e:
        raise to_http(e)


@router.get("/storage-details/{detail_id}")
def get_storage_detail(detail_id: int, db: Session = Depends(get_db)):
    try:
        return detail_to_dict(get_catalog(db).get_storage_detail(detail_id))
    except DiskManagerError as e:
        raise to_http(e)


@router.get("/storage-details/{detail_id}/devices")
def list_devices(detail_id: int, db: Session = Depends(get_db)):
    catalog = get_catalog(db)
    try:
        detail = catalog.get_storage_detail(detail_id)
    except DiskManagerError as e:
        raise to_http(e)
    return [device_to_dict(d) for d in catalog.list_devices(detail)]


@router.post("/storage-details/{detail_id}/devices")
def register_device(detail_id: int, request: DeviceRegisterRequest, db: Session = Depends(get_db)):
    try:
        detail = get_catalog(db).get_storage_detail(detail_id)
        device = get_inventory(db).register_device(
            detail,
            request.device_name,
            request.device_path,
            device_uuid=request.device_uuid,
            mount_path=request.mount_path,
        )
    except DiskManagerError as e:
        raise to_http(e)
    return device_to_dict(device)


@router.get("/devices/{device_id}")
def get_device(device_id: int, db: Session = Depends(get_db)):
    catalog = get_catalog(db)
    try:
        device = catalog.get_device(device_id)
    except DiskManagerError as e:
        raise to_http(e)
    data = device_to_dict(device)
    data["hostname"] = catalog.get_hostname(device_id)
    return data


@router.put("/devices/{device_id}/mount")
def update_mount(device_id: int, request: MountUpdateRequest, db: Session = Depends(get_db)):
    try:
        device = get_catalog(db).get_device(device_id)
    except DiskManagerError as e:
        raise to_http(e)
    return device_to_dict(get_inventory(db).update_mount(device, request.mount_path))


@router.delete("/devices/{device_id}")
def decommission_device(device_id: int, db: Session = Depends(get_db)):
    try:
        device = get_catalog(db).get_device(device_id)
    except DiskManagerError as e:
        raise to_http(e)
    get_inventory(db).decommission_device(device)
    return {"status": "deleted", "device_id": device_id}
