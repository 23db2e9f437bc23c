"""
Daemon heartbeat sender

Background thread a worker daemon runs to keep its registry entry (and the
operation it is working on, if any) alive on the disk manager service.
"""

import requests
import threading
import time
import logging
from typing import Optional

from diskmgr.config import BASE_URL, HEARTBEAT_INTERVAL_SECONDS
from diskmgr.models import DaemonStatus
from diskmgr.startup_profile import validate_base_url

logger = logging.getLogger(__name__)


class HeartbeatSender:
    """
    Sends periodic heartbeats to the disk manager API.
    """

    def __init__(
        self,
        entry_id: int,
        base_url: str = BASE_URL,
        interval_seconds: int = HEARTBEAT_INTERVAL_SECONDS,
    ):
        """
        Args:
            entry_id: Registry entry returned by registration
            base_url: Service base URL (e.g., "http://10.0.1.1:8002")
            interval_seconds: Heartbeat interval
        """
        validate_base_url(base_url)
        self.entry_id = entry_id
        self.base_url = base_url.rstrip("/")
        self.interval_seconds = interval_seconds

        self.status = DaemonStatus.IDLE
        self.operation_id: Optional[int] = None
        self._lock = threading.Lock()

        self.running = False
        self.thread = None

        logger.info(f"Heartbeat sender initialized: url={self.base_url}, entry={entry_id}, interval={interval_seconds}s")

    def set_status(self, status: DaemonStatus, operation_id: Optional[int] = None):
        """Report ``busy`` with the operation being worked on, or ``idle`` with none."""
        with self._lock:
            self.status = DaemonStatus(status)
            self.operation_id = operation_id

    def start(self):
        if self.running:
            logger.warning("Heartbeat sender already running")
            return

        self.running = True
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

        logger.info("Heartbeat sender started")

    def stop(self):
        self.running = False
        if self.thread:
            self.thread.join(timeout=5)

        logger.info("Heartbeat sender stopped")

    def _run(self):
        while self.running:
            try:
                self.send_heartbeat()
            except Exception as e:
                logger.error(f"Heartbeat error: {e}", exc_info=True)

            # Sleep in small increments for responsive shutdown
            for _ in range(int(self.interval_seconds * 10)):
                if not self.running:
                    break
                time.sleep(0.1)

    def send_heartbeat(self) -> bool:
        """Send one round of heartbeats. Returns True when the registry accepted it."""
        with self._lock:
            status = self.status
            operation_id = self.operation_id

        try:
            response = requests.post(
                f"{self.base_url}/registry/{self.entry_id}/heartbeat",
                json={"status": status.value},
                timeout=5,
            )
            if response.status_code != 200:
                logger.warning(f"Heartbeat failed: status={response.status_code} body={response.text}")
                return False
            logger.debug(f"Heartbeat sent: entry={self.entry_id} status={status.value}")

            if operation_id is not None:
                response = requests.post(f"{self.base_url}/operations/{operation_id}/heartbeat", timeout=5)
                if response.status_code != 200:
                    logger.warning(
                        f"Operation heartbeat failed: operation={operation_id} status={response.status_code}"
                    )
            return True

        except requests.exceptions.RequestException as e:
            logger.error(f"Heartbeat request error: {e}")
            return False
