#!/usr/bin/env python3
# entrypoint_worker.py
"""
Container entry point for a dispatch worker instance.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from main import main


if __name__ == "__main__":
    # several instances can run side by side; the id only shows up in the console
    worker_id = os.getenv("WORKER_INSTANCE_ID", "0")
    print(f"Starting dispatch worker instance #{worker_id}")

    try:
        asyncio.run(main(mode="worker"))
    except KeyboardInterrupt:
        pass
