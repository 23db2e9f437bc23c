"""
Disk manager health API

Endpoints:
- GET /health: daemon liveness and operation progress summary
- POST /health/sweep: run one sweep now
"""

from typing import Any, Dict

from fastapi import APIRouter, HTTPException
import logging

from diskmgr.models import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# Will be injected by service.py
_health_monitor = None

def set_health_monitor(monitor):
    """Set health monitor reference (called by service.py)"""
    global _health_monitor
    _health_monitor = monitor


@router.get("/")
def get_health_summary() -> Dict[str, Any]:
    if _health_monitor is None:
        return {
            "status": "unknown",
            "timestamp": utcnow().isoformat(),
        }

    return _health_monitor.get_health_summary()


@router.post("/sweep")
def run_sweep() -> Dict[str, Any]:
    if _health_monitor is None:
        raise HTTPException(status_code=503, detail="Health monitor not initialized")

    return _health_monitor.check_once()
