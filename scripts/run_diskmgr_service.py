"""
Disk manager service launcher for a source checkout.

Usage:
    python scripts/run_diskmgr_service.py --host 0.0.0.0 --port 8002
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from diskmgr.cli import main


if __name__ == "__main__":
    main()
