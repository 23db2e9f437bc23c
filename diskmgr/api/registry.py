"""
Process registry API

Daemons register on boot, heartbeat while running and deregister on clean exit.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from diskmgr.api.common import to_http
from diskmgr.database import get_db
from diskmgr.errors import DiskManagerError
from diskmgr.logic import entry_to_dict, get_registry
from diskmgr.models import DaemonStatus

router = APIRouter(prefix="/registry", tags=["registry"])


class RegisterRequest(BaseModel):
    ip: str
    pid: int
    at: Optional[datetime] = None


class HeartbeatRequest(BaseModel):
    status: DaemonStatus
    at: Optional[datetime] = None


@router.post("/register")
def register_daemon(request: RegisterRequest, db: Session = Depends(get_db)):
    registry = get_registry(db)
    try:
        entry = registry.register(request.ip, request.pid, at=request.at)
    except DiskManagerError as e:
        raise to_http(e)
    return entry_to_dict(entry)


@router.get("/entries")
def list_entries(ip: Optional[str] = None, db: Session = Depends(get_db)):
    registry = get_registry(db)
    return [entry_to_dict(e, registry) for e in registry.list_entries(ip=ip)]


@router.get("/{entry_id}")
def get_entry(entry_id: int, db: Session = Depends(get_db)):
    registry = get_registry(db)
    try:
        return entry_to_dict(registry.get(entry_id), registry)
    except DiskManagerError as e:
        raise to_http(e)


@router.post("/{entry_id}/heartbeat")
def heartbeat(entry_id: int, request: HeartbeatRequest, db: Session = Depends(get_db)):
    registry = get_registry(db)
    try:
        entry = registry.heartbeat(registry.get(entry_id), request.status, at=request.at)
    except DiskManagerError as e:
        raise to_http(e)
    return entry_to_dict(entry)


@router.post("/{entry_id}/terminate")
def terminate(entry_id: int, db: Session = Depends(get_db)):
    registry = get_registry(db)
    try:
        entry = registry.mark_terminated(registry.get(entry_id))
    except DiskManagerError as e:
        raise to_http(e)
    return entry_to_dict(entry)
