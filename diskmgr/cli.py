"""
Disk manager service launcher

Usage:
    diskmgr-service --host 0.0.0.0 --port 8002
    diskmgr-service --config-dir /etc/bynar

Environment Variables:
    DISKMGR_API_PORT: API port (default: 8002)
    DISKMGR_BIND_HOST: Bind address (default: 0.0.0.0)
    DISKMGR_DB_URL: SQLAlchemy database URL (default: local SQLite file)
"""
import argparse
import importlib
import logging
import os

import uvicorn

from shared.logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the disk lifecycle manager service")
    parser.add_argument("--host", default=os.getenv("DISKMGR_BIND_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("DISKMGR_API_PORT", "8002")))
    parser.add_argument("--config-dir", default=None, help="Directory holding disk-manager.json")
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    logger = setup_logging("diskmgr", level=logging.DEBUG if args.debug else logging.INFO, log_file=args.log_file)

    # diskmgr.config reads these at import time, so set them before the app is loaded
    os.environ["DISKMGR_API_PORT"] = str(args.port)
    os.environ["DISKMGR_BIND_HOST"] = args.host
    if args.config_dir:
        from diskmgr import config
        os.environ["DISKMGR_DB_URL"] = config.load_db_config(args.config_dir)
        importlib.reload(config)

    logger.info(f"API Address: {args.host}:{args.port}")
    uvicorn.run("diskmgr.service:app", host=args.host, port=args.port, reload=False)


if __name__ == "__main__":
    main()
