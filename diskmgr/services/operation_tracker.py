"""
Operation Tracker
Opens, heartbeats and closes top-level operations. The open-operation
uniqueness check is the only mutual exclusion between daemons: a second open
on the same device fails fast and the caller decides what to do.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from diskmgr.config import STALL_THRESHOLD_SECONDS
from diskmgr.errors import DiskManagerError, InvalidStatusTransition, NotFound, OperationAlreadyOpen, StaleWrite
from diskmgr.models import (
    DaemonInstance,
    DaemonStatus,
    Device,
    Operation,
    OperationOutcome,
    OperationStatus,
    as_utc,
)
from diskmgr.services.operation_log import SubOperationLog

logger = logging.getLogger(__name__)


class OperationTracker:

    def __init__(
        self,
        db: Session,
        log: Optional[SubOperationLog] = None,
        stall_threshold_seconds: int = STALL_THRESHOLD_SECONDS,
    ):
        """
        Args:
            db: SQLAlchemy session
            log: step log used to fail open steps when an operation is cancelled
            stall_threshold_seconds: open operations quiet for longer are reported as stalled
        """
        self.db = db
        self.log = log or SubOperationLog(db)
        self.stall_threshold = timedelta(seconds=stall_threshold_seconds)

    def get(self, operation_id: int) -> Operation:
        operation = self.db.get(Operation, operation_id)
        if operation is None:
            raise NotFound("Operation", operation_id)
        return operation

    def find_open(self, device: Device) -> Optional[Operation]:
        return self.db.scalars(
            select(Operation).where(Operation.device_id == device.device_id, Operation.done_time.is_(None))
        ).first()

    def list_open(self, entry: Optional[DaemonInstance] = None, device: Optional[Device] = None) -> List[Operation]:
        stmt = select(Operation).where(Operation.done_time.is_(None)).order_by(Operation.start_time, Operation.operation_id)
        if entry is not None:
            stmt = stmt.where(Operation.entry_id == entry.entry_id)
        if device is not None:
            stmt = stmt.where(Operation.device_id == device.device_id)
        return list(self.db.scalars(stmt).all())

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def open_operation(
        self,
        device: Device,
        entry: DaemonInstance,
        reason: Optional[str] = None,
        requester: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Operation:
        """
        Open an operation on ``device`` attributed to ``entry``.

        A closed operation for the same (device, entry) is superseded: the row
        is reopened and its previous steps are discarded.

        Raises:
            OperationAlreadyOpen: device already has an open operation
            InvalidStatusTransition: entry is terminated
        """
        if entry.status == DaemonStatus.TERMINATED:
            raise InvalidStatusTransition(f"Registry entry {entry.entry_id} is terminated")

        holder = self.find_open(device)
        if holder is not None:
            raise OperationAlreadyOpen(device.device_id, holder.operation_id, holder.entry_id)

        now = as_utc(at)
        operation = self.db.scalars(
            select(Operation).where(Operation.device_id == device.device_id, Operation.entry_id == entry.entry_id)
        ).first()

        if operation is not None:
            logger.warning(
                f"Superseding closed operation {operation.operation_id} on device {device.device_id} "
                f"for entry {entry.entry_id} (done {operation.done_time})"
            )
            operation.details.clear()
            self.db.flush()
        else:
            operation = Operation(device=device, entry=entry)
            self.db.add(operation)

        operation.start_time = now
        operation.snapshot_time = now
        operation.done_time = None
        operation.reason = reason
        operation.behalf_of = requester

        try:
            self.db.commit()
        except IntegrityError:
            # Another daemon opened one between our check and insert
            self.db.rollback()
            holder = self.find_open(device)
            raise OperationAlreadyOpen(
                device.device_id,
                holder.operation_id if holder else -1,
                holder.entry_id if holder else None,
            )

        logger.info(
            f"Opened operation {operation.operation_id} on device {device.device_id} "
            f"for entry {entry.entry_id} (reason={reason}, behalf_of={requester})"
        )
        return operation

    def heartbeat(self, operation: Operation, at: Optional[datetime] = None) -> Operation:
        """
        Raises:
            StaleWrite: ``at`` is older than the stored snapshot, or the operation is already closed
        """
        now = as_utc(at)
        if not operation.is_open:
            raise StaleWrite(f"operations[{operation.operation_id}]", operation.done_time, now)
        if now < operation.snapshot_time:
            logger.warning(f"Discarding stale heartbeat for operation {operation.operation_id}")
            raise StaleWrite(f"operations[{operation.operation_id}]", operation.snapshot_time, now)

        operation.snapshot_time = now
        self.db.commit()
        return operation

    def close(
        self,
        operation: Operation,
        outcome: OperationOutcome = OperationOutcome.COMPLETE,
        at: Optional[datetime] = None,
    ) -> Operation:
        """
        Close an operation. Closing an already closed operation is a no-op.

        A ``failed`` outcome cancels the operation: every unfinished step is
        walked to ``failed``. A ``complete`` outcome requires all steps to be
        finished already.

        Raises:
            InvalidStatusTransition: ``complete`` requested with unfinished steps
            StaleWrite: ``at`` is older than the stored snapshot
        """
        if not operation.is_open:
            logger.debug(f"Operation {operation.operation_id} already closed at {operation.done_time}")
            return operation

        outcome = OperationOutcome(outcome)
        now = as_utc(at)
        if now < operation.snapshot_time:
            raise StaleWrite(f"operations[{operation.operation_id}]", operation.snapshot_time, now)

        unfinished = [d for d in operation.details if not d.is_terminal]
        if outcome == OperationOutcome.COMPLETE and unfinished:
            kinds = ", ".join(d.kind.value for d in unfinished)
            raise InvalidStatusTransition(f"Operation {operation.operation_id} has unfinished steps: {kinds}")

        try:
            for detail in unfinished:
                if detail.status == OperationStatus.PENDING:
                    self.log.advance(detail, OperationStatus.IN_PROGRESS, at=now, commit=False)
                self.log.advance(detail, OperationStatus.FAILED, at=now, cancelled=True, commit=False)

            operation.done_time = now
            operation.snapshot_time = now
            self.db.commit()
        except DiskManagerError:
            self.db.rollback()
            raise

        logger.info(f"Closed operation {operation.operation_id} on device {operation.device_id} as {outcome.value}")
        return operation

    # ========================================================================
    # MONITORING
    # ========================================================================

    def snapshot_age(self, operation: Operation, now: Optional[datetime] = None) -> timedelta:
        return as_utc(now) - operation.snapshot_time

    def find_stalled(self, now: Optional[datetime] = None) -> List[Operation]:
        """Open operations whose last snapshot is older than the stall threshold."""
        cutoff = as_utc(now) - self.stall_threshold
        return list(self.db.scalars(
            select(Operation)
            .where(Operation.done_time.is_(None), Operation.snapshot_time < cutoff)
            .order_by(Operation.snapshot_time)
        ).all())
