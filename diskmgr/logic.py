"""
Logic layer adapter.
Builds service objects for a session and renders rows as API dicts.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from diskmgr.models import DaemonInstance, Device, Operation, OperationDetail, StorageDetail
from diskmgr.services.device_state import DeviceStateMachine
from diskmgr.services.inventory import HostInventory
from diskmgr.services.operation_log import SubOperationLog
from diskmgr.services.operation_tracker import OperationTracker
from diskmgr.services.process_registry import ProcessRegistry
from diskmgr.services.recovery import CrashRecovery, OrphanedOperation
from diskmgr.services.tickets import RepairTicket, RepairTickets
from diskmgr.services.topology import TopologyCatalog

# ============================================================================
# SERVICE INTEGRATION LAYER
# ============================================================================

def get_registry(session: Session) -> ProcessRegistry:
    return ProcessRegistry(session)


def get_catalog(session: Session) -> TopologyCatalog:
    return TopologyCatalog(session)


def get_inventory(session: Session) -> HostInventory:
    return HostInventory(session)


def get_step_log(session: Session) -> SubOperationLog:
    return SubOperationLog(session, DeviceStateMachine())


def get_tracker(session: Session) -> OperationTracker:
    return OperationTracker(session, get_step_log(session))


def get_tickets(session: Session) -> RepairTickets:
    return RepairTickets(session, get_step_log(session))


def get_recovery(session: Session) -> CrashRecovery:
    return CrashRecovery(session, get_tracker(session))

# ============================================================================
# SERIALIZATION
# ============================================================================

def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _val(value):
    return getattr(value, "value", value)


def entry_to_dict(entry: DaemonInstance, registry: Optional[ProcessRegistry] = None) -> dict:
    data = {
        "entry_id": entry.entry_id,
        "ip": entry.ip,
        "pid": entry.pid,
        "status": _val(entry.status),
        "start_time": _ts(entry.start_time),
        "snapshot_time": _ts(entry.snapshot_time),
    }
    if registry is not None:
        data["is_live"] = registry.is_live(entry)
    return data


def detail_to_dict(detail: StorageDetail) -> dict:
    return {
        "detail_id": detail.detail_id,
        "region": detail.region.region_name,
        "storage_type": _val(detail.storage_type.storage_type),
        "hostname": detail.hostname,
        "array_name": detail.name_key1,
        "pool_name": detail.name_key2,
        "uuid": detail.uuid,
    }


def device_to_dict(device: Device) -> dict:
    return {
        "device_id": device.device_id,
        "detail_id": device.detail_id,
        "device_name": device.device_name,
        "device_path": device.device_path,
        "device_uuid": device.device_uuid,
        "mount_path": device.mount_path,
        "state": _val(device.state),
        "smart_passed": device.smart_passed,
    }


def step_to_dict(detail: OperationDetail) -> dict:
    return {
        "operation_detail_id": detail.operation_detail_id,
        "operation_id": detail.operation_id,
        "type": detail.kind.value,
        "status": _val(detail.status),
        "tracking_id": detail.tracking_id,
        "start_time": _ts(detail.start_time),
        "snapshot_time": _ts(detail.snapshot_time),
        "done_time": _ts(detail.done_time),
    }


def operation_to_dict(operation: Operation, include_steps: bool = True) -> dict:
    data = {
        "operation_id": operation.operation_id,
        "device_id": operation.device_id,
        "entry_id": operation.entry_id,
        "start_time": _ts(operation.start_time),
        "snapshot_time": _ts(operation.snapshot_time),
        "done_time": _ts(operation.done_time),
        "behalf_of": operation.behalf_of,
        "reason": operation.reason,
        "is_open": operation.is_open,
    }
    if include_steps:
        data["steps"] = [step_to_dict(d) for d in operation.details]
    return data


def ticket_to_dict(ticket: RepairTicket) -> dict:
    return {
        "ticket_id": ticket.ticket_id,
        "device_id": ticket.device_id,
        "device_name": ticket.device_name,
        "device_path": ticket.device_path,
        "operation_detail_id": ticket.operation_detail_id,
        "status": ticket.status.value,
    }


def orphan_to_dict(orphan: OrphanedOperation) -> dict:
    return {
        "operation": operation_to_dict(orphan.operation, include_steps=False),
        "entry_id": orphan.entry.entry_id,
        "pid": orphan.entry.pid,
        "last_step": orphan.last_kind.value if orphan.last_kind else None,
        "last_status": orphan.last_status.value if orphan.last_status else None,
    }
