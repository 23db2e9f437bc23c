"""
Pytest configuration and shared fixtures for disk manager tests.

Every test gets its own in-memory SQLite database with the reference rows
seeded, plus a small topology: one region, one ceph storage detail and
device D123 on it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from diskmgr.database import init_db
from diskmgr.models import DaemonInstance, Device, OperationKind, OperationStatus, StorageBackend, StorageDetail
from diskmgr.services.device_state import DeviceStateMachine
from diskmgr.services.inventory import HostInventory
from diskmgr.services.operation_log import SubOperationLog
from diskmgr.services.operation_tracker import OperationTracker
from diskmgr.services.process_registry import ProcessRegistry


T0 = datetime(2024, 3, 1, 12, 0, 0)


# ==============================================================================
# Database Fixtures
# ==============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


# ==============================================================================
# Service Fixtures
# ==============================================================================


@pytest.fixture
def registry(db) -> ProcessRegistry:
    return ProcessRegistry(db, liveness_threshold_seconds=90)


@pytest.fixture
def step_log(db) -> SubOperationLog:
    return SubOperationLog(db, DeviceStateMachine())


@pytest.fixture
def tracker(db, step_log) -> OperationTracker:
    return OperationTracker(db, step_log, stall_threshold_seconds=3600)


@pytest.fixture
def inventory(db) -> HostInventory:
    return HostInventory(db)


# ==============================================================================
# Topology Fixtures
# ==============================================================================


@dataclass
class Topology:
    detail: StorageDetail
    device: Device


@pytest.fixture
def topology(inventory) -> Topology:
    """Region us-east-1, ceph detail on storage01 and device D123 in state unknown."""
    region = inventory.ensure_region("us-east-1")
    detail = inventory.ensure_storage_detail(region, StorageBackend.CEPH, "storage01", array_name="ceph-a")
    device = inventory.register_device(detail, "D123", "/dev/sdb", device_uuid="uuid-d123", mount_path="/var/lib/ceph/osd-1")
    return Topology(detail=detail, device=device)


@pytest.fixture
def run_step(step_log):
    """
    Append a step of ``kind`` and walk it to ``final``.

    Returns a function (operation, kind, final=complete, **advance_kwargs) -> step.
    """
    def _run(operation, kind: OperationKind, final: OperationStatus = OperationStatus.COMPLETE, at=None, **kwargs):
        step = step_log.append_step(operation, kind, at=at)
        step_log.advance(step, OperationStatus.IN_PROGRESS, at=at)
        return step_log.advance(step, final, at=at, **kwargs)
    return _run


@pytest.fixture
def healthy_device(topology, registry, tracker, run_step) -> Device:
    """D123 brought to ``healthy`` by a provisioning daemon's diskadd operation."""
    provisioner = registry.register("10.0.0.9", 7)
    operation = tracker.open_operation(topology.device, provisioner, reason="provision")
    run_step(operation, OperationKind.DISK_ADD)
    tracker.close(operation)
    return topology.device


@pytest.fixture
def daemon(registry) -> DaemonInstance:
    """The daemon the scenarios run as."""
    return registry.register("10.0.0.1", 42)


@pytest.fixture
def at():
    """Returns a function giving T0 plus ``seconds``."""
    def _at(seconds: float = 0) -> datetime:
        return T0 + timedelta(seconds=seconds)
    return _at
