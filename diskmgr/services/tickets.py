"""
Repair ticket queries over waitforreplacement steps.

A device awaiting new hardware carries an open waitforreplacement step whose
tracking ref is the external ticket id. Resolving the ticket completes that step.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from diskmgr.errors import NotFound
from diskmgr.models import (
    Device,
    Operation,
    OperationDetail,
    OperationKind,
    OperationStatus,
    OperationType,
    StorageDetail,
)
from diskmgr.services.device_state import AWAITING_REPLACEMENT
from diskmgr.services.operation_log import SubOperationLog

logger = logging.getLogger(__name__)

OPEN_STATUSES = (OperationStatus.PENDING, OperationStatus.IN_PROGRESS)


@dataclass
class RepairTicket:
    ticket_id: str
    device_id: int
    device_name: str
    device_path: str
    operation_detail_id: int
    status: OperationStatus


class RepairTickets:

    def __init__(self, db: Session, log: Optional[SubOperationLog] = None):
        self.db = db
        self.log = log or SubOperationLog(db)

    def _waiting_steps(self):
        return (
            select(OperationDetail, Device)
            .join(Operation, Operation.operation_id == OperationDetail.operation_id)
            .join(Device, Device.device_id == Operation.device_id)
            .join(OperationType, OperationType.type_id == OperationDetail.type_id)
            .where(
                OperationType.op_name == OperationKind.WAIT_FOR_REPLACEMENT,
                OperationDetail.status.in_(OPEN_STATUSES),
                OperationDetail.tracking_id.is_not(None),
                Device.state.in_(AWAITING_REPLACEMENT),
            )
            .order_by(Operation.start_time, Operation.operation_id)
        )

    def _to_tickets(self, rows) -> List[RepairTicket]:
        return [
            RepairTicket(
                ticket_id=detail.tracking_id,
                device_id=device.device_id,
                device_name=device.device_name,
                device_path=device.device_path,
                operation_detail_id=detail.operation_detail_id,
                status=OperationStatus(detail.status),
            )
            for detail, device in rows
        ]

    def outstanding_repair_tickets(self, detail: StorageDetail) -> List[RepairTicket]:
        """Open replacement tickets for devices of one storage detail, oldest operation first."""
        rows = self.db.execute(self._waiting_steps().where(Device.detail_id == detail.detail_id)).all()
        tickets = self._to_tickets(rows)
        logger.debug(f"{len(tickets)} pending tickets for storage detail {detail.detail_id}")
        return tickets

    def all_pending_tickets(self) -> List[RepairTicket]:
        rows = self.db.execute(self._waiting_steps()).all()
        return self._to_tickets(rows)

    def is_waiting_repair(self, detail: StorageDetail, device_name: str, device_uuid: Optional[str] = None) -> bool:
        stmt = (
            select(OperationDetail.operation_detail_id)
            .join(Operation, Operation.operation_id == OperationDetail.operation_id)
            .join(Device, Device.device_id == Operation.device_id)
            .join(OperationType, OperationType.type_id == OperationDetail.type_id)
            .where(
                OperationType.op_name == OperationKind.WAIT_FOR_REPLACEMENT,
                OperationDetail.status.in_(OPEN_STATUSES),
                Device.detail_id == detail.detail_id,
                Device.device_name == device_name,
                Device.state.in_(AWAITING_REPLACEMENT),
            )
        )
        if device_uuid is not None:
            stmt = stmt.where(Device.device_uuid == device_uuid)
        return self.db.scalar(stmt.limit(1)) is not None

    def resolve_ticket(self, ticket_id: str) -> OperationDetail:
        """
        Complete the open waitforreplacement step carrying ``ticket_id``.

        Raises:
            NotFound: no open step carries this ticket id
        """
        detail = self.db.scalars(
            select(OperationDetail)
            .join(OperationType, OperationType.type_id == OperationDetail.type_id)
            .where(
                OperationDetail.tracking_id == ticket_id,
                OperationType.op_name == OperationKind.WAIT_FOR_REPLACEMENT,
                OperationDetail.status.in_(OPEN_STATUSES),
            )
        ).first()
        if detail is None:
            raise NotFound("Open ticket", ticket_id)

        logger.info(f"Resolving ticket {ticket_id} (step {detail.operation_detail_id})")
        if detail.status == OperationStatus.PENDING:
            self.log.advance(detail, OperationStatus.IN_PROGRESS, commit=False)
        return self.log.advance(detail, OperationStatus.COMPLETE)
