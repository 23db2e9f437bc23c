"""
Repair tickets API

Devices waiting for new hardware and the external ticket ids attached to them.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from diskmgr.api.common import to_http
from diskmgr.database import get_db
from diskmgr.errors import DiskManagerError
from diskmgr.logic import get_catalog, get_tickets, step_to_dict, ticket_to_dict

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("/")
def list_tickets(detail_id: Optional[int] = None, db: Session = Depends(get_db)):
    tickets = get_tickets(db)
    if detail_id is None:
        return [ticket_to_dict(t) for t in tickets.all_pending_tickets()]
    try:
        detail = get_catalog(db).get_storage_detail(detail_id)
    except DiskManagerError as e:
        raise to_http(e)
    return [ticket_to_dict(t) for t in tickets.outstanding_repair_tickets(detail)]


@router.get("/waiting")
def is_waiting_repair(detail_id: int, device_name: str, device_uuid: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        detail = get_catalog(db).get_storage_detail(detail_id)
    except DiskManagerError as e:
        raise to_http(e)
    waiting = get_tickets(db).is_waiting_repair(detail, device_name, device_uuid=device_uuid)
    return {"detail_id": detail_id, "device_name": device_name, "waiting": waiting}


@router.post("/{ticket_id}/resolve")
def resolve_ticket(ticket_id: str, db: Session = Depends(get_db)):
    try:
        detail = get_tickets(db).resolve_ticket(ticket_id)
    except DiskManagerError as e:
        raise to_http(e)
    data = step_to_dict(detail)
    data["device_state"] = detail.operation.device.state.value
    return data
