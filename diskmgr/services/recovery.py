"""
Crash recovery scan.

After a restart the daemon has a new or revived registry entry. Operations
its earlier runs left open on this host still hold their devices. scan() reports them
with their last recorded step; the caller either resumes from that step or
abandons the operation (closes it as failed).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from diskmgr.models import DaemonInstance, Operation, OperationDetail, OperationKind, OperationOutcome, OperationStatus
from diskmgr.services.operation_tracker import OperationTracker

logger = logging.getLogger(__name__)


@dataclass
class OrphanedOperation:
    operation: Operation
    entry: DaemonInstance
    last_step: Optional[OperationDetail]

    @property
    def last_kind(self) -> Optional[OperationKind]:
        return self.last_step.kind if self.last_step is not None else None

    @property
    def last_status(self) -> Optional[OperationStatus]:
        return OperationStatus(self.last_step.status) if self.last_step is not None else None


class CrashRecovery:

    def __init__(self, db: Session, tracker: Optional[OperationTracker] = None):
        self.db = db
        self.tracker = tracker or OperationTracker(db)

    def scan(self, current_entry: DaemonInstance) -> List[OrphanedOperation]:
        """
        Open operations left by earlier runs on the same host.

        A restart that reuses its pid revives the same registry entry, so the
        current entry's own operations count when they predate its start time.
        """
        rows = self.db.execute(
            select(Operation, DaemonInstance)
            .join(DaemonInstance, DaemonInstance.entry_id == Operation.entry_id)
            .where(
                DaemonInstance.ip == current_entry.ip,
                or_(
                    DaemonInstance.entry_id != current_entry.entry_id,
                    Operation.start_time < current_entry.start_time,
                ),
                Operation.done_time.is_(None),
            )
            .order_by(Operation.start_time, Operation.operation_id)
        ).all()

        orphans = [
            OrphanedOperation(operation=op, entry=entry, last_step=self.tracker.log.last_step(op))
            for op, entry in rows
        ]
        if orphans:
            logger.warning(f"Found {len(orphans)} open operations from earlier runs on {current_entry.ip}")
        return orphans

    def abandon(self, orphan: OrphanedOperation, at: Optional[datetime] = None) -> Operation:
        logger.info(
            f"Abandoning operation {orphan.operation.operation_id} from entry {orphan.entry.entry_id} "
            f"(last step {orphan.last_kind.value if orphan.last_kind else None}: "
            f"{orphan.last_status.value if orphan.last_status else None})"
        )
        return self.tracker.close(orphan.operation, OperationOutcome.FAILED, at=at)
