#!/usr/bin/env python3
"""
FieldClock Launcher
Provides simple entry points for running and inspecting the sync service.
"""

import signal
import sys

USAGE = """FieldClock Launcher

Usage:
  python launcher.py status                      # Show pending queue backlog
  python launcher.py sync                        # Run one sync pass now
  python launcher.py run                         # Run the sync service until interrupted
  python launcher.py configure URL API_KEY       # Save remote server settings
  python launcher.py clear                       # Discard every pending entry

Add --debug to any command for verbose logging.
"""


def _init(debug: bool = False):
    from fieldclock.shared import db_helpers
    from fieldclock.shared.logging_config import (enable_debug_logging,
                                                  setup_logging)

    setup_logging("SYNC", log_to_file=True)
    db_helpers.init_database()
    if debug:
        enable_debug_logging()


def show_status() -> int:
    from fieldclock.shared import db_helpers

    counts = db_helpers.get_pending_counts()
    print(f"Pending attendance records: {counts['attendance']}")
    print(f"Pending location samples:   {counts['samples']}")
    print(f"Pending follow-up photos:   {counts['follow_ups']}")
    print(f"Total pending:              {sum(counts.values())}")
    return 0


def sync_once() -> int:
    from fieldclock.client.sync_service import get_sync_service

    service = get_sync_service()
    if not service.is_configured():
        print("Server URL or API key not configured (use 'configure')")
        return 1

    # The explicit pass below does the draining; no background pass on the transition
    if not service.check_connection(trigger_sync=False):
        print("Remote not reachable; entries stay queued")
        return 1

    report = service.sync_all(wait=True)
    print(f"Synced {report.succeeded}, failed {report.failed}")
    return 0 if report.ok else 1


def run_service() -> int:
    from PyQt6.QtCore import QCoreApplication

    from fieldclock.client.sync_service import get_sync_service

    app = QCoreApplication(sys.argv)
    service = get_sync_service()
    if not service.start():
        print("Server URL or API key not configured (use 'configure')")
        return 1

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    code = app.exec()
    service.stop()
    return code


def configure(server_url: str, api_key: str) -> int:
    from fieldclock.client.sync_service import get_sync_service
    from fieldclock.shared.models import ServerConfig

    service = get_sync_service()
    current = service.config
    try:
        config = ServerConfig(
            server_url=server_url,
            device_id=current.device_id,
            api_key=api_key,
            photo_bucket=current.photo_bucket,
            sync_interval=current.sync_interval,
            timeout=current.timeout,
            health_interval=current.health_interval,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 1

    service.update_config(config)
    print(f"Configured remote {config.server_url}")
    return 0


def clear_pending() -> int:
    from fieldclock.shared import db_helpers

    total = db_helpers.get_pending_count()
    db_helpers.clear_all_pending()
    print(f"Discarded {total} pending entries")
    return 0


def main():
    """Main launcher with command-line arguments"""

    debug = '--debug' in sys.argv
    args = [arg for arg in sys.argv[1:] if arg != '--debug']

    if not args:
        print(USAGE)
        sys.exit(1)

    command = args[0].lower()
    _init(debug)

    if command == 'status':
        sys.exit(show_status())

    elif command == 'clear':
        sys.exit(clear_pending())

    elif command == 'sync':
        sys.exit(sync_once())

    elif command == 'run':
        sys.exit(run_service())

    elif command == 'configure' and len(args) == 3:
        sys.exit(configure(args[1], args[2]))

    else:
        print(f"Unknown command: {' '.join(args)}")
        print(USAGE)
        sys.exit(1)


if __name__ == '__main__':
    main()
