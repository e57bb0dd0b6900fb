#!/usr/bin/env python3
"""
Standalone session reaper.
Releases quota reservations of relay sessions that went idle without an
explicit close, on the cadence configured by REAPER_INTERVAL.
"""
import os
import signal
import sys

# Add project root to path when run as a plain script
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from config.app_config import get_config
from core.dependency_container import initialize_container, get_service, cleanup_container
from core.logging_config import setup_structured_logging


def main() -> None:
    config = get_config()
    setup_structured_logging(config.monitoring.log_level)
    initialize_container(config)
    reaper = get_service('session_reaper')

    def _shutdown(signum, frame):
        reaper.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        reaper.run_forever()
    finally:
        cleanup_container()


if __name__ == "__main__":
    main()
