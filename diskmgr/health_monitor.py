"""
Disk manager health monitor

Background service that watches daemon liveness and operation progress.

Key responsibilities:
- Mark registry entries terminated when their heartbeat goes stale
- Report open operations whose snapshot has not moved within the stall threshold
- Summarize registry and operation health for the API

Runs in a background thread.
"""

import threading
import time
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from diskmgr.config import HEALTH_CHECK_INTERVAL_SECONDS, LIVENESS_THRESHOLD_SECONDS, STALL_THRESHOLD_SECONDS
from diskmgr.models import DaemonInstance, DaemonStatus, Device, Operation, utcnow
from diskmgr.services.operation_tracker import OperationTracker
from diskmgr.services.process_registry import ProcessRegistry

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Sweep stale daemons and report stalled operations.
    Runs in background thread.
    """

    def __init__(
        self,
        session_factory,
        check_interval_seconds: int = HEALTH_CHECK_INTERVAL_SECONDS,
        liveness_threshold_seconds: int = LIVENESS_THRESHOLD_SECONDS,
        stall_threshold_seconds: int = STALL_THRESHOLD_SECONDS,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory
            check_interval_seconds: How often to sweep
            liveness_threshold_seconds: Terminate entries silent for longer than this
            stall_threshold_seconds: Report open operations quiet for longer than this
        """
        self.session_factory = session_factory
        self.check_interval = check_interval_seconds
        self.liveness_threshold = liveness_threshold_seconds
        self.stall_threshold = stall_threshold_seconds

        self.running = False
        self.monitor_thread: Optional[threading.Thread] = None

        logger.info(
            f"Health monitor initialized: check_interval={check_interval_seconds}s, "
            f"liveness={liveness_threshold_seconds}s, stall={stall_threshold_seconds}s"
        )

    def start(self):
        """Start health monitor in background thread"""
        if self.running:
            logger.warning("Health monitor already running")
            return

        self.running = True
        self.monitor_thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self.monitor_thread.start()

        logger.info("Health monitor started")

    def stop(self):
        if not self.running:
            return

        self.running = False

        if self.monitor_thread and self.monitor_thread.is_alive():
            self.monitor_thread.join(timeout=5)

        logger.info("Health monitor stopped")

    def _monitor_loop(self):
        while self.running:
            try:
                self.check_once()
            except Exception as e:
                logger.error(f"Health check error: {e}", exc_info=True)

            # Sleep in small increments for responsive shutdown
            for _ in range(int(self.check_interval * 10)):
                if not self.running:
                    break
                time.sleep(0.1)

    def check_once(self) -> Dict[str, List[int]]:
        """
        Run a single sweep.

        Returns:
            Dict with ids of entries terminated and operations found stalled
        """
        db = self.session_factory()
        try:
            now = utcnow()
            registry = ProcessRegistry(db, liveness_threshold_seconds=self.liveness_threshold)
            terminated = registry.sweep_stale(now)
            for entry in terminated:
                self._generate_alert(
                    "DAEMON_TERMINATED",
                    f"entry {entry.entry_id}",
                    f"{entry.ip}:{entry.pid} stopped sending heartbeats",
                )

            tracker = OperationTracker(db, stall_threshold_seconds=self.stall_threshold)
            stalled = tracker.find_stalled(now)
            for operation in stalled:
                age = tracker.snapshot_age(operation, now).total_seconds()
                self._generate_alert(
                    "OPERATION_STALLED",
                    f"operation {operation.operation_id}",
                    f"device {operation.device_id}, entry {operation.entry_id}, no progress for {age:.0f}s",
                )

            if terminated or stalled:
                logger.info(f"Health check: {len(terminated)} entries terminated, {len(stalled)} operations stalled")

            return {
                "terminated_entries": [e.entry_id for e in terminated],
                "stalled_operations": [o.operation_id for o in stalled],
            }
        finally:
            db.close()

    def _generate_alert(self, alert_type: str, subject: str, message: str):
        logger.warning(f"ALERT [{alert_type}] {subject}: {message}")

    def get_health_summary(self) -> Dict[str, Any]:
        """
        Registry and operation health for the API.

        Returns:
            Dict with daemon counts by status, device counts by state,
            open and stalled operation counts and an overall status
        """
        db = self.session_factory()
        try:
            now = utcnow()
            registry = ProcessRegistry(db, liveness_threshold_seconds=self.liveness_threshold)
            entries = db.scalars(select(DaemonInstance)).all()
            by_status = Counter(e.status.value for e in entries)
            live_count = sum(1 for e in entries if registry.is_live(e, now))
            overdue_count = sum(
                1 for e in entries if e.status != DaemonStatus.TERMINATED and not registry.is_live(e, now)
            )

            devices = db.execute(select(Device.state, func.count()).group_by(Device.state)).all()
            by_state = {state.value: count for state, count in devices}

            open_count = db.scalar(select(func.count()).select_from(Operation).where(Operation.done_time.is_(None)))
            tracker = OperationTracker(db, stall_threshold_seconds=self.stall_threshold)
            stalled_count = len(tracker.find_stalled(now))

            if overdue_count == 0 and stalled_count == 0:
                overall_status = "healthy"
            elif live_count == 0 and overdue_count > 0:
                overall_status = "critical"
            else:
                overall_status = "warning"

            return {
                "status": overall_status,
                "timestamp": now.isoformat(),
                "daemons": {
                    "total": len(entries),
                    "live": live_count,
                    "overdue": overdue_count,
                    "by_status": dict(by_status),
                },
                "devices": by_state,
                "operations": {
                    "open": open_count or 0,
                    "stalled": stalled_count,
                },
                "liveness_threshold_seconds": self.liveness_threshold,
                "stall_threshold_seconds": self.stall_threshold,
            }
        finally:
            db.close()
