"""
Crash recovery API

A restarted daemon asks which operations its dead predecessors on the same
host left open, then resumes or abandons each one.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from diskmgr.api.common import to_http
from diskmgr.database import get_db
from diskmgr.errors import DiskManagerError, NotFound
from diskmgr.logic import get_recovery, get_registry, operation_to_dict, orphan_to_dict

router = APIRouter(prefix="/recovery", tags=["recovery"])


class AbandonRequest(BaseModel):
    entry_id: int
    at: Optional[datetime] = None


@router.get("/{entry_id}/orphans")
def scan_orphans(entry_id: int, db: Session = Depends(get_db)):
    try:
        entry = get_registry(db).get(entry_id)
    except DiskManagerError as e:
        raise to_http(e)
    return [orphan_to_dict(o) for o in get_recovery(db).scan(entry)]


@router.post("/orphans/{operation_id}/abandon")
def abandon_orphan(operation_id: int, request: AbandonRequest, db: Session = Depends(get_db)):
    """Cancel an orphaned operation on behalf of the restarted daemon ``entry_id``."""
    recovery = get_recovery(db)
    try:
        entry = get_registry(db).get(request.entry_id)
        orphan = next((o for o in recovery.scan(entry) if o.operation.operation_id == operation_id), None)
        if orphan is None:
            raise NotFound("Orphaned operation", operation_id)
        operation = recovery.abandon(orphan, at=request.at)
    except DiskManagerError as e:
        raise to_http(e)
    return operation_to_dict(operation)
