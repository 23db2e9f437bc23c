"""
Process Registry
Tracks daemon instances by (ip, pid), their status and heartbeat recency.
Entries are never deleted here; stale ones are marked terminated so that
operations keep their attribution.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from diskmgr.config import LIVENESS_THRESHOLD_SECONDS
from diskmgr.errors import DuplicateActiveInstance, InvalidStatusTransition, NotFound, StaleWrite
from diskmgr.models import DaemonInstance, DaemonStatus, as_utc, utcnow

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """
    Registry of daemon runs. One row per (ip, pid).
    """

    def __init__(self, db: Session, liveness_threshold_seconds: int = LIVENESS_THRESHOLD_SECONDS):
        """
        Args:
            db: SQLAlchemy session
            liveness_threshold_seconds: entry is presumed dead after this long without a heartbeat
        """
        self.db = db
        self.liveness_threshold = timedelta(seconds=liveness_threshold_seconds)

    def get(self, entry_id: int) -> DaemonInstance:
        entry = self.db.get(DaemonInstance, entry_id)
        if entry is None:
            raise NotFound("Registry entry", entry_id)
        return entry

    def find(self, ip: str, pid: int) -> Optional[DaemonInstance]:
        return self.db.scalars(
            select(DaemonInstance).where(DaemonInstance.ip == ip, DaemonInstance.pid == pid)
        ).first()

    def list_entries(self, ip: Optional[str] = None) -> List[DaemonInstance]:
        stmt = select(DaemonInstance).order_by(DaemonInstance.entry_id)
        if ip is not None:
            stmt = stmt.where(DaemonInstance.ip == ip)
        return list(self.db.scalars(stmt).all())

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def register(self, ip: str, pid: int, at: Optional[datetime] = None) -> DaemonInstance:
        """
        Register a daemon run.

        A terminated entry for the same (ip, pid) is a restart: the row is
        revived with a fresh start time instead of inserting a duplicate key.

        Raises:
            DuplicateActiveInstance: a non-terminated entry exists for (ip, pid)
        """
        now = as_utc(at)
        existing = self.find(ip, pid)
        if existing is not None:
            if existing.status != DaemonStatus.TERMINATED:
                raise DuplicateActiveInstance(ip, pid, existing.entry_id)
            existing.status = DaemonStatus.STARTING
            existing.start_time = now
            existing.snapshot_time = now
            self.db.commit()
            logger.info(f"Daemon {ip}:{pid} restarted, reusing registry entry {existing.entry_id}")
            return existing

        entry = DaemonInstance(ip=ip, pid=pid, status=DaemonStatus.STARTING, start_time=now, snapshot_time=now)
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with another registration of the same (ip, pid)
            self.db.rollback()
            winner = self.find(ip, pid)
            raise DuplicateActiveInstance(ip, pid, winner.entry_id if winner else -1)

        self.db.refresh(entry)
        logger.info(f"Daemon {ip}:{pid} registered as entry {entry.entry_id}")
        return entry

    def heartbeat(self, entry: DaemonInstance, status: DaemonStatus, at: Optional[datetime] = None) -> DaemonInstance:
        """
        Record liveness and the daemon's current status.

        Raises:
            StaleWrite: ``at`` is older than the stored heartbeat
            InvalidStatusTransition: entry is already terminated
        """
        now = as_utc(at)
        status = DaemonStatus(status)
        if entry.status == DaemonStatus.TERMINATED:
            raise InvalidStatusTransition(f"Registry entry {entry.entry_id} is terminated")

        last = entry.snapshot_time or entry.start_time
        if last is not None and now < last:
            logger.warning(f"Discarding stale heartbeat for entry {entry.entry_id}")
            raise StaleWrite(f"process_manager[{entry.entry_id}]", last, now)

        entry.status = status
        entry.snapshot_time = now
        self.db.commit()
        logger.debug(f"Heartbeat entry {entry.entry_id}: status={status.value}")
        return entry

    def mark_terminated(self, entry: DaemonInstance) -> DaemonInstance:
        if entry.status != DaemonStatus.TERMINATED:
            entry.status = DaemonStatus.TERMINATED
            self.db.commit()
            logger.info(f"Registry entry {entry.entry_id} ({entry.ip}:{entry.pid}) marked terminated")
        return entry

    # ========================================================================
    # LIVENESS
    # ========================================================================

    def is_live(self, entry: DaemonInstance, now: Optional[datetime] = None) -> bool:
        if entry.status == DaemonStatus.TERMINATED:
            return False
        last = entry.snapshot_time or entry.start_time
        return as_utc(now) - last <= self.liveness_threshold

    def sweep_stale(self, now: Optional[datetime] = None) -> List[DaemonInstance]:
        """Mark every non-terminated entry whose heartbeat is too old as terminated."""
        now = as_utc(now)
        entries = self.db.scalars(
            select(DaemonInstance).where(DaemonInstance.status != DaemonStatus.TERMINATED)
        ).all()

        stale = [e for e in entries if not self.is_live(e, now)]
        for entry in stale:
            entry.status = DaemonStatus.TERMINATED
            age = (now - (entry.snapshot_time or entry.start_time)).total_seconds()
            logger.warning(f"Registry entry {entry.entry_id} ({entry.ip}:{entry.pid}) terminated, no heartbeat for {age:.1f}s")
        if stale:
            self.db.commit()
        return stale
