"""
Disk manager service entrypoint

FastAPI application exposing the registry, topology, operations, tickets,
recovery and health routers. Startup validates the bind profile, initializes
the database and starts the health monitor.
"""
from fastapi import FastAPI
import logging

from diskmgr.api import health, operations, recovery, registry, tickets, topology
from diskmgr.config import BIND_HOST, API_PORT, DATABASE_URL, HEALTH_CHECK_INTERVAL_SECONDS
from diskmgr.database import init_db, SessionLocal
from diskmgr.startup_profile import StartupProfile, validate_service_profile
from diskmgr.health_monitor import HealthMonitor

logger = logging.getLogger(__name__)

app = FastAPI(title="Disk Lifecycle Manager")

app.include_router(registry.router)
app.include_router(topology.router)
app.include_router(operations.router)
app.include_router(tickets.router)
app.include_router(recovery.router)
app.include_router(health.router)

# Global health monitor instance
health_monitor = None


@app.on_event("startup")
def startup_init():
    """Initialize database and start health monitor"""
    global health_monitor

    validate_service_profile(StartupProfile(host=BIND_HOST, port=API_PORT, database_url=DATABASE_URL))

    init_db()

    logger.info("Starting health monitor...")
    health_monitor = HealthMonitor(
        session_factory=SessionLocal,
        check_interval_seconds=HEALTH_CHECK_INTERVAL_SECONDS,
    )
    health_monitor.start()

    health.set_health_monitor(health_monitor)

    logger.info("Disk manager service startup complete")


@app.on_event("shutdown")
def shutdown_cleanup():
    global health_monitor

    if health_monitor:
        logger.info("Stopping health monitor...")
        health_monitor.stop()

    logger.info("Disk manager service shutdown complete")


@app.get("/")
def root():
    return {
        "service": "diskmgr",
        "message": "Disk lifecycle manager running",
    }
