"""
Shared helpers for the disk manager API routers.
"""

import logging

from fastapi import HTTPException

from diskmgr.errors import (
    DiskManagerError,
    DuplicateActiveInstance,
    DuplicateStepType,
    InvalidStatusTransition,
    InvalidTransition,
    InventoryMismatch,
    NotFound,
    OperationAlreadyOpen,
    StaleWrite,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFound: 404,
    DuplicateActiveInstance: 409,
    OperationAlreadyOpen: 409,
    DuplicateStepType: 409,
    InventoryMismatch: 409,
    StaleWrite: 409,
    InvalidTransition: 400,
    InvalidStatusTransition: 400,
}


def to_http(exc: DiskManagerError) -> HTTPException:
    status_code = STATUS_CODES.get(type(exc), 400)
    if status_code != 404:
        logger.warning(f"{exc.code}: {exc.message}")
    return HTTPException(status_code=status_code, detail={"error": exc.code, "message": exc.message})
