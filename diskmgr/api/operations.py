"""
Operations API

Top-level operations on a device and the sub-operation steps recorded under them.

Endpoints:
- POST /operations: open an operation on a device
- POST /operations/{id}/heartbeat, /operations/{id}/close
- GET /operations/open, /operations/stalled
- POST /operations/{id}/steps: append a step
- POST /steps/{id}/advance, /steps/{id}/tracking, /steps/{id}/heartbeat
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from diskmgr.api.common import to_http
from diskmgr.database import get_db
from diskmgr.errors import DiskManagerError
from diskmgr.logic import get_catalog, get_registry, get_step_log, get_tracker, operation_to_dict, step_to_dict
from diskmgr.models import OperationKind, OperationOutcome, OperationStatus

router = APIRouter(tags=["operations"])


class OpenOperationRequest(BaseModel):
    device_id: int
    entry_id: int
    reason: Optional[str] = None
    behalf_of: Optional[str] = None
    at: Optional[datetime] = None


class TimestampRequest(BaseModel):
    at: Optional[datetime] = None


class CloseRequest(BaseModel):
    outcome: OperationOutcome = OperationOutcome.COMPLETE
    at: Optional[datetime] = None


class AppendStepRequest(BaseModel):
    type: OperationKind
    at: Optional[datetime] = None


class AdvanceRequest(BaseModel):
    status: OperationStatus
    smart_passed: Optional[bool] = None
    device_present: Optional[bool] = None
    at: Optional[datetime] = None


class TrackingRequest(BaseModel):
    tracking_id: str
    at: Optional[datetime] = None


@router.post("/operations")
def open_operation(request: OpenOperationRequest, db: Session = Depends(get_db)):
    try:
        device = get_catalog(db).get_device(request.device_id)
        entry = get_registry(db).get(request.entry_id)
        operation = get_tracker(db).open_operation(
            device, entry, reason=request.reason, requester=request.behalf_of, at=request.at
        )
    except DiskManagerError as e:
        raise to_http(e)
    return operation_to_dict(operation)


@router.get("/operations/open")
def list_open_operations(
    entry_id: Optional[int] = None,
    device_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    try:
        entry = get_registry(db).get(entry_id) if entry_id is not None else None
        device = get_catalog(db).get_device(device_id) if device_id is not None else None
    except DiskManagerError as e:
        raise to_http(e)
    return [operation_to_dict(o) for o in get_tracker(db).list_open(entry=entry, device=device)]


@router.get("/operations/stalled")
def list_stalled_operations(db: Session = Depends(get_db)):
    tracker = get_tracker(db)
    result = []
    for operation in tracker.find_stalled():
        data = operation_to_dict(operation, include_steps=False)
        data["snapshot_age_seconds"] = round(tracker.snapshot_age(operation).total_seconds(), 1)
        result.append(data)
    return result


@router.get("/operations/{operation_id}")
def get_operation(operation_id: int, db: Session = Depends(get_db)):
    try:
        return operation_to_dict(get_tracker(db).get(operation_id))
    except DiskManagerError as e:
        raise to_http(e)


@router.post("/operations/{operation_id}/heartbeat")
def operation_heartbeat(operation_id: int, request: Optional[TimestampRequest] = None, db: Session = Depends(get_db)):
    tracker = get_tracker(db)
    at = request.at if request else None
    try:
        operation = tracker.heartbeat(tracker.get(operation_id), at=at)
    except DiskManagerError as e:
        raise to_http(e)
    return operation_to_dict(operation, include_steps=False)


@router.post("/operations/{operation_id}/close")
def close_operation(operation_id: int, request: CloseRequest, db: Session = Depends(get_db)):
    tracker = get_tracker(db)
    try:
        operation = tracker.close(tracker.get(operation_id), outcome=request.outcome, at=request.at)
    except DiskManagerError as e:
        raise to_http(e)
    return operation_to_dict(operation)


@router.post("/operations/{operation_id}/steps")
def append_step(operation_id: int, request: AppendStepRequest, db: Session = Depends(get_db)):
    try:
        operation = get_tracker(db).get(operation_id)
        detail = get_step_log(db).append_step(operation, request.type, at=request.at)
    except DiskManagerError as e:
        raise to_http(e)
    return step_to_dict(detail)


@router.get("/steps/{operation_detail_id}")
def get_step(operation_detail_id: int, db: Session = Depends(get_db)):
    try:
        return step_to_dict(get_step_log(db).get(operation_detail_id))
    except DiskManagerError as e:
        raise to_http(e)


@router.post("/steps/{operation_detail_id}/advance")
def advance_step(operation_detail_id: int, request: AdvanceRequest, db: Session = Depends(get_db)):
    log = get_step_log(db)
    try:
        detail = log.advance(
            log.get(operation_detail_id),
            request.status,
            at=request.at,
            smart_passed=request.smart_passed,
            device_present=request.device_present,
        )
    except DiskManagerError as e:
        raise to_http(e)
    data = step_to_dict(detail)
    data["device_state"] = detail.operation.device.state.value
    return data


@router.post("/steps/{operation_detail_id}/tracking")
def attach_tracking_ref(operation_detail_id: int, request: TrackingRequest, db: Session = Depends(get_db)):
    log = get_step_log(db)
    try:
        detail = log.attach_tracking_ref(log.get(operation_detail_id), request.tracking_id, at=request.at)
    except DiskManagerError as e:
        raise to_http(e)
    return step_to_dict(detail)


@router.post("/steps/{operation_detail_id}/heartbeat")
def step_heartbeat(operation_detail_id: int, request: Optional[TimestampRequest] = None, db: Session = Depends(get_db)):
    log = get_step_log(db)
    at = request.at if request else None
    try:
        detail = log.heartbeat(log.get(operation_detail_id), at=at)
    except DiskManagerError as e:
        raise to_http(e)
    return step_to_dict(detail)
