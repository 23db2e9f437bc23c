import json
import logging
import os
from pathlib import Path
from urllib.parse import quote_plus

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


_DEFAULT_DB_PATH = Path(__file__).resolve().parent / "data" / "diskmgr.db"

DATABASE_URL = str(os.getenv("DISKMGR_DB_URL", f"sqlite:///{_DEFAULT_DB_PATH.as_posix()}")).strip()
API_PORT = _int_env("DISKMGR_API_PORT", 8002)
BIND_HOST = str(os.getenv("DISKMGR_BIND_HOST", "0.0.0.0")).strip()
BASE_URL = str(os.getenv("DISKMGR_BASE_URL", f"http://127.0.0.1:{API_PORT}")).strip()

# Registry entry is presumed dead after this long without a heartbeat
LIVENESS_THRESHOLD_SECONDS = _int_env("DISKMGR_LIVENESS_THRESHOLD_SECONDS", 90)
# Open operation is reported as stalled after this long without a snapshot update
STALL_THRESHOLD_SECONDS = _int_env("DISKMGR_STALL_THRESHOLD_SECONDS", 3600)
HEALTH_CHECK_INTERVAL_SECONDS = _int_env("DISKMGR_HEALTH_CHECK_INTERVAL_SECONDS", 30)
HEARTBEAT_INTERVAL_SECONDS = _int_env("DISKMGR_HEARTBEAT_INTERVAL_SECONDS", 10)


def load_db_config(config_dir: str, name: str = "disk-manager.json") -> str:
    """
    Build a database URL from the ``database`` block of a JSON config file.

    Expected shape::

        {"database": {"username": "...", "password": "...", "port": 5432,
                      "endpoint": "db.example", "dbname": "bynar"}}

    Password is optional.
    """
    path = Path(config_dir) / name
    if not path.exists():
        logger.error(f"{path} config file does not exist")
    with open(path, "r") as f:
        settings = json.load(f)

    db = settings.get("database") if isinstance(settings, dict) else None
    if not isinstance(db, dict):
        raise ValueError(f"{path}: missing 'database' section")

    try:
        username = quote_plus(str(db["username"]))
        endpoint = str(db["endpoint"])
        port = int(db["port"])
        dbname = str(db["dbname"])
    except KeyError as exc:
        raise ValueError(f"{path}: database.{exc.args[0]} is required")

    auth = username
    if db.get("password"):
        auth = f"{username}:{quote_plus(str(db['password']))}"
    return f"postgresql://{auth}@{endpoint}:{port}/{dbname}"
