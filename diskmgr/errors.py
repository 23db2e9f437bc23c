"""
Disk manager error hierarchy.

    DiskManagerError (base)
        ├── NotFound
        ├── DuplicateActiveInstance
        ├── OperationAlreadyOpen
        ├── DuplicateStepType
        ├── InventoryMismatch
        ├── InvalidTransition
        ├── InvalidStatusTransition
        └── StaleWrite

Lookup misses and uniqueness violations are recoverable and surface to the
caller. Transition errors are programming errors in the calling control loop.
StaleWrite means the write arrived out of order and should be discarded.
"""

from datetime import datetime
from typing import Optional


class DiskManagerError(Exception):
    """Base class for disk manager errors."""

    code = "DiskManagerError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(DiskManagerError):
    """Reference lookup miss."""

    code = "NotFound"

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class DuplicateActiveInstance(DiskManagerError):
    code = "DuplicateActiveInstance"

    def __init__(self, ip: str, pid: int, entry_id: int):
        self.ip = ip
        self.pid = pid
        self.entry_id = entry_id
        super().__init__(f"Daemon {ip}:{pid} already registered as entry {entry_id}")


class OperationAlreadyOpen(DiskManagerError):
    code = "OperationAlreadyOpen"

    def __init__(self, device_id: int, operation_id: int, entry_id: Optional[int]):
        self.device_id = device_id
        self.operation_id = operation_id
        self.entry_id = entry_id
        super().__init__(
            f"Device {device_id} already has open operation {operation_id} (entry {entry_id})"
        )


class DuplicateStepType(DiskManagerError):
    code = "DuplicateStepType"

    def __init__(self, operation_id: int, kind: str):
        self.operation_id = operation_id
        self.kind = kind
        super().__init__(f"Operation {operation_id} already has a '{kind}' step")


class InventoryMismatch(DiskManagerError):
    """Discovered device disagrees with the stored row for the same path."""

    code = "InventoryMismatch"


class InvalidTransition(DiskManagerError):
    """Device lifecycle move that is not adjacent in the state graph."""

    code = "InvalidTransition"

    def __init__(self, device_id: int, current: str, requested: str, reason: str = ""):
        self.device_id = device_id
        self.current = current
        self.requested = requested
        msg = f"Device {device_id}: cannot move {current} -> {requested}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidStatusTransition(DiskManagerError):
    """Step or entry status change outside the allowed progression."""

    code = "InvalidStatusTransition"


class StaleWrite(DiskManagerError):
    code = "StaleWrite"

    def __init__(self, row: str, stored: datetime, attempted: datetime):
        self.row = row
        self.stored = stored
        self.attempted = attempted
        super().__init__(
            f"Stale write on {row}: {attempted.isoformat()} is older than {stored.isoformat()}"
        )
