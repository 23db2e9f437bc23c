from sqlalchemy import Column, Integer, String, Enum, ForeignKey, Boolean, DateTime, UniqueConstraint, Index, text
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
from typing import Optional
import enum

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(ts: Optional[datetime]) -> datetime:
    """Normalize a caller-supplied timestamp to naive UTC (None means now)."""
    if ts is None:
        return utcnow()
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _str_enum(enum_cls, length: int) -> Enum:
    # Persist the lowercase value ("in_progress"), not the member name
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=length,
        validate_strings=True,
    )

# ============================================================================
# ENUM DEFINITIONS
# ============================================================================

class DaemonStatus(str, enum.Enum):
    """Registry entry status"""
    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    STOPPING = "stopping"
    TERMINATED = "terminated"


class StorageBackend(str, enum.Enum):
    """Storage system kind (seeded into storage_types)"""
    CEPH = "ceph"
    SIO = "sio"
    SOLIDFIRE = "solidfire"
    HITACHI = "hitachi"


class DeviceState(str, enum.Enum):
    """Device lifecycle state"""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    MISSING = "missing"
    REPLACING = "replacing"
    REMOVED = "removed"
    FAILED = "failed"


class OperationKind(str, enum.Enum):
    """Sub-operation type (seeded into operation_types)"""
    DISK_ADD = "diskadd"
    DISK_REPLACE = "diskreplace"
    DISK_REMOVE = "diskremove"
    CLUSTER_ADD = "clusteradd"
    CLUSTER_DELETE = "clusterdelete"
    WAIT_FOR_REPLACEMENT = "waitforreplacement"
    # Evaluation covers file system corruption checks, repair attempts and SMART
    EVALUATION = "evaluation"


class OperationStatus(str, enum.Enum):
    """Sub-operation status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class OperationOutcome(str, enum.Enum):
    """How a top-level operation is closed"""
    COMPLETE = "complete"
    FAILED = "failed"

# ============================================================================
# REGISTRY
# ============================================================================

class DaemonInstance(Base):
    """One daemon process (ip, pid); rows are kept after the process exits"""
    __tablename__ = "process_manager"

    entry_id = Column(Integer, primary_key=True, autoincrement=True)
    pid = Column(Integer, nullable=False)
    ip = Column(String, nullable=False)
    status = Column(_str_enum(DaemonStatus, 20), default=DaemonStatus.STARTING)
    start_time = Column(DateTime, nullable=False, default=utcnow)
    snapshot_time = Column(DateTime)  # last heartbeat

    # Operations outlive the entry; never cascade or null out their entry_id
    operations = relationship("Operation", back_populates="entry", passive_deletes="all")

    __table_args__ = (
        UniqueConstraint("ip", "pid", name="uq_process_manager_ip_pid"),
    )

# ============================================================================
# TOPOLOGY
# ============================================================================

class Region(Base):
    __tablename__ = "regions"

    region_id = Column(Integer, primary_key=True, autoincrement=True)
    region_name = Column(String(256), unique=True, nullable=False)

    details = relationship("StorageDetail", back_populates="region", cascade="all, delete-orphan")


class StorageType(Base):
    __tablename__ = "storage_types"

    storage_id = Column(Integer, primary_key=True, autoincrement=True)
    storage_type = Column(_str_enum(StorageBackend, 256), unique=True, nullable=False)

    details = relationship("StorageDetail", back_populates="storage_type", cascade="all, delete-orphan")


class StorageDetail(Base):
    """One storage cluster/array/pool instance in a region"""
    __tablename__ = "storage_details"

    detail_id = Column(Integer, primary_key=True, autoincrement=True)
    storage_id = Column(Integer, ForeignKey("storage_types.storage_id", ondelete="CASCADE"), nullable=False)
    region_id = Column(Integer, ForeignKey("regions.region_id", ondelete="CASCADE"), nullable=False)
    hostname = Column(String(512), nullable=False)
    name_key1 = Column(String)  # storage array name
    uuid = Column(String)
    name_key2 = Column(String)  # pool, switch etc

    region = relationship("Region", back_populates="details")
    storage_type = relationship("StorageType", back_populates="details")
    devices = relationship("Device", back_populates="detail", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("region_id", "storage_id", "hostname", name="uq_storage_details_region_type_host"),
    )


class Device(Base):
    """Physical or logical disk; state is written only by DeviceStateMachine"""
    __tablename__ = "devices"

    device_id = Column(Integer, primary_key=True, autoincrement=True)
    device_uuid = Column(String)
    detail_id = Column(Integer, ForeignKey("storage_details.detail_id", ondelete="CASCADE"), nullable=False)
    device_name = Column(String, nullable=False)
    device_path = Column(String, nullable=False)
    mount_path = Column(String)  # null while unmounted
    state = Column(_str_enum(DeviceState, 20), default=DeviceState.UNKNOWN)
    smart_passed = Column(Boolean)  # null until first evaluation

    detail = relationship("StorageDetail", back_populates="devices")
    operations = relationship("Operation", back_populates="device", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("device_path", "detail_id", name="uq_devices_path_detail"),
    )

# ============================================================================
# OPERATIONS
# ============================================================================

class OperationType(Base):
    __tablename__ = "operation_types"

    type_id = Column(Integer, primary_key=True, autoincrement=True)
    op_name = Column(_str_enum(OperationKind, 128), unique=True, nullable=False)


class Operation(Base):
    """One top-level unit of work per (device, registry entry)"""
    __tablename__ = "operations"

    operation_id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(Integer, ForeignKey("devices.device_id", ondelete="CASCADE"), nullable=False)
    entry_id = Column(Integer, ForeignKey("process_manager.entry_id"))
    start_time = Column(DateTime, nullable=False, default=utcnow)
    snapshot_time = Column(DateTime, nullable=False, default=utcnow)
    done_time = Column(DateTime)
    behalf_of = Column(String(256))
    reason = Column(String)

    device = relationship("Device", back_populates="operations")
    entry = relationship("DaemonInstance", back_populates="operations")
    details = relationship(
        "OperationDetail",
        back_populates="operation",
        cascade="all, delete-orphan",
        order_by="OperationDetail.operation_detail_id",
    )

    __table_args__ = (
        UniqueConstraint("device_id", "entry_id", name="uq_operations_device_entry"),
        # At most one open operation per device, whichever daemon holds it
        Index(
            "ix_operations_open_device",
            "device_id",
            unique=True,
            sqlite_where=text("done_time IS NULL"),
            postgresql_where=text("done_time IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.done_time is None


class OperationDetail(Base):
    """One typed step within an operation"""
    __tablename__ = "operation_details"

    operation_detail_id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(Integer, ForeignKey("operations.operation_id", ondelete="CASCADE"), nullable=False)
    type_id = Column(Integer, ForeignKey("operation_types.type_id", ondelete="CASCADE"), nullable=False)
    status = Column(_str_enum(OperationStatus, 20), nullable=False, default=OperationStatus.PENDING)
    tracking_id = Column(String)  # external ticket id, stored verbatim
    start_time = Column(DateTime, nullable=False, default=utcnow)
    snapshot_time = Column(DateTime, nullable=False, default=utcnow)
    done_time = Column(DateTime)

    operation = relationship("Operation", back_populates="details")
    op_type = relationship("OperationType", lazy="joined")

    __table_args__ = (
        UniqueConstraint("operation_id", "type_id", name="uq_operation_details_operation_type"),
    )

    @property
    def kind(self) -> OperationKind:
        return OperationKind(self.op_type.op_name)

    @property
    def is_terminal(self) -> bool:
        return self.status in (OperationStatus.COMPLETE, OperationStatus.FAILED)
