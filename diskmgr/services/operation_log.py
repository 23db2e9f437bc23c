"""
Sub-operation Log
Typed steps within an operation. Each step moves
pending -> in_progress -> {complete, failed} and reports its terminal
outcome to the DeviceStateMachine in the same transaction.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from diskmgr.errors import DuplicateStepType, InvalidStatusTransition, InvalidTransition, NotFound, StaleWrite
from diskmgr.models import (
    Operation,
    OperationDetail,
    OperationKind,
    OperationStatus,
    OperationType,
    as_utc,
)
from diskmgr.services.device_state import DeviceStateMachine, StepOutcome

logger = logging.getLogger(__name__)


NEXT_STATUS = {
    OperationStatus.PENDING: {OperationStatus.IN_PROGRESS},
    OperationStatus.IN_PROGRESS: {OperationStatus.COMPLETE, OperationStatus.FAILED},
}


class SubOperationLog:

    def __init__(self, db: Session, state_machine: Optional[DeviceStateMachine] = None):
        self.db = db
        self.state_machine = state_machine or DeviceStateMachine()

    def get(self, operation_detail_id: int) -> OperationDetail:
        detail = self.db.get(OperationDetail, operation_detail_id)
        if detail is None:
            raise NotFound("Sub-operation", operation_detail_id)
        return detail

    def _operation_type(self, kind: OperationKind) -> OperationType:
        op_type = self.db.scalars(select(OperationType).where(OperationType.op_name == kind)).first()
        if op_type is None:
            raise NotFound("Operation type", kind.value)
        return op_type

    def _touch(self, operation: Operation, now: datetime) -> None:
        # Operation snapshot only moves forward
        if operation.snapshot_time is None or now > operation.snapshot_time:
            operation.snapshot_time = now

    def _check_order(self, detail: OperationDetail, now: datetime) -> None:
        if detail.snapshot_time is not None and now < detail.snapshot_time:
            logger.warning(f"Discarding stale write for step {detail.operation_detail_id}")
            raise StaleWrite(f"operation_details[{detail.operation_detail_id}]", detail.snapshot_time, now)

    # ========================================================================
    # STEPS
    # ========================================================================

    def append_step(self, operation: Operation, kind: OperationKind, at: Optional[datetime] = None) -> OperationDetail:
        """
        Append a pending step of ``kind`` to an open operation.

        Raises:
            InvalidStatusTransition: operation is closed
            DuplicateStepType: a step of this kind already exists on the operation
            InvalidTransition: device state does not allow this kind of work
        """
        kind = OperationKind(kind)
        if not operation.is_open:
            raise InvalidStatusTransition(f"Operation {operation.operation_id} is closed")
        if any(d.kind == kind for d in operation.details):
            raise DuplicateStepType(operation.operation_id, kind.value)

        self.state_machine.check_step_allowed(operation.device, kind)

        now = as_utc(at)
        detail = OperationDetail(
            operation=operation,
            op_type=self._operation_type(kind),
            status=OperationStatus.PENDING,
            start_time=now,
            snapshot_time=now,
        )
        self.db.add(detail)
        self._touch(operation, now)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateStepType(operation.operation_id, kind.value)

        logger.info(f"Operation {operation.operation_id}: appended {kind.value} step {detail.operation_detail_id}")
        return detail

    def advance(
        self,
        detail: OperationDetail,
        new_status: OperationStatus,
        at: Optional[datetime] = None,
        smart_passed: Optional[bool] = None,
        device_present: Optional[bool] = None,
        cancelled: bool = False,
        commit: bool = True,
    ) -> OperationDetail:
        """
        Move a step forward. Terminal statuses set done_time and drive the
        device state machine; if the device move is illegal nothing is recorded.

        Args:
            smart_passed: health-check result carried by an evaluation step
            device_present: False when an evaluation found the device absent
            cancelled: step is being failed because its operation was cancelled
            commit: False when the caller batches several writes in one transaction

        Raises:
            InvalidStatusTransition: move is not pending->in_progress->{complete, failed}
            StaleWrite: ``at`` is older than the step's snapshot
            InvalidTransition: resulting device move is not adjacent
        """
        new_status = OperationStatus(new_status)
        current = OperationStatus(detail.status)
        if new_status not in NEXT_STATUS.get(current, set()):
            raise InvalidStatusTransition(
                f"Step {detail.operation_detail_id} ({detail.kind.value}): cannot move {current.value} -> {new_status.value}"
            )

        now = as_utc(at)
        self._check_order(detail, now)

        detail.status = new_status
        detail.snapshot_time = now
        if new_status in (OperationStatus.COMPLETE, OperationStatus.FAILED):
            detail.done_time = now
            outcome = StepOutcome(
                kind=detail.kind,
                status=new_status,
                smart_passed=smart_passed,
                device_present=device_present,
                cancelled=cancelled,
            )
            try:
                self.state_machine.apply_transition(detail.operation.device, outcome)
            except InvalidTransition:
                self.db.rollback()
                raise
        self._touch(detail.operation, now)

        if commit:
            self.db.commit()
        logger.info(f"Step {detail.operation_detail_id} ({detail.kind.value}) -> {new_status.value}")
        return detail

    def attach_tracking_ref(self, detail: OperationDetail, tracking_ref: str, at: Optional[datetime] = None) -> OperationDetail:
        if detail.is_terminal:
            raise InvalidStatusTransition(
                f"Step {detail.operation_detail_id} is {OperationStatus(detail.status).value}; tracking ref can no longer change"
            )
        now = as_utc(at)
        self._check_order(detail, now)

        detail.tracking_id = tracking_ref
        detail.snapshot_time = now
        self._touch(detail.operation, now)
        self.db.commit()
        logger.info(f"Step {detail.operation_detail_id} tracking ref set to {tracking_ref}")
        return detail

    def heartbeat(self, detail: OperationDetail, at: Optional[datetime] = None) -> OperationDetail:
        if detail.is_terminal:
            raise InvalidStatusTransition(f"Step {detail.operation_detail_id} is already finished")
        now = as_utc(at)
        self._check_order(detail, now)

        detail.snapshot_time = now
        self._touch(detail.operation, now)
        self.db.commit()
        return detail

    def last_step(self, operation: Operation) -> Optional[OperationDetail]:
        """Most recently written step, or None for an operation with no steps."""
        if not operation.details:
            return None
        return max(operation.details, key=lambda d: (d.snapshot_time, d.operation_detail_id))
