"""
Disk manager database initialization.

Owns the engine/session factory, schema creation, additive migrations and
seeding of the fixed enumerations (storage types, operation types).
"""

import logging
import os

from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.orm import sessionmaker, Session

from diskmgr.config import DATABASE_URL
from diskmgr.models import Base, StorageType, OperationType, StorageBackend, OperationKind

logger = logging.getLogger(__name__)


def create_db_engine(url: str = DATABASE_URL, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url.startswith("sqlite:///") and ":memory:" not in url:
            db_dir = os.path.dirname(url[len("sqlite:///"):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_size", 10)
    return create_engine(url, **kwargs)


engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create tables, run additive migrations and seed lookup rows."""
    bind = bind or engine
    logger.info("Initializing disk manager database...")

    Base.metadata.create_all(bind=bind)
    _run_migrations(bind)

    session = Session(bind=bind)
    try:
        seed_reference_data(session)
    finally:
        session.close()

    logger.info("Disk manager database initialization complete")


def _run_migrations(bind):
    """Additive only: adds columns missing from databases created by older schemas."""
    inspector = inspect(bind)

    if "process_manager" in inspector.get_table_names():
        cols = {col["name"] for col in inspector.get_columns("process_manager")}
        if "snapshot_time" not in cols:
            with bind.begin() as conn:
                conn.execute(text("ALTER TABLE process_manager ADD COLUMN snapshot_time TIMESTAMP"))
            logger.info("Added process_manager.snapshot_time")


def seed_reference_data(db: Session):
    """Insert any missing storage_types / operation_types rows. Idempotent."""
    try:
        known_types = set(db.scalars(select(StorageType.storage_type)).all())
        for backend in StorageBackend:
            if backend not in known_types:
                db.add(StorageType(storage_type=backend))
                logger.info(f"Seeded storage type: {backend.value}")

        known_ops = set(db.scalars(select(OperationType.op_name)).all())
        for kind in OperationKind:
            if kind not in known_ops:
                db.add(OperationType(op_name=kind))
                logger.info(f"Seeded operation type: {kind.value}")

        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to seed reference data: {e}")
        raise


def get_db():
    """FastAPI dependency for database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def reset_db(bind=None):
    """
    Drop all tables and recreate (DESTRUCTIVE - dev/test only).
    This deletes the whole fleet maintenance history.
    """
    bind = bind or engine
    logger.warning("Resetting disk manager database - all data will be lost!")
    Base.metadata.drop_all(bind=bind)
    init_db(bind)
