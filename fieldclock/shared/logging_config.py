"""
Centralized logging configuration for FieldClock.

Every component logs through a child of the ``fieldclock`` logger
(``fieldclock.sync``, ``fieldclock.queue``...). Handlers live on the parent
only, so one console stream and at most one run log file serve all components.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from termcolor import colored

from fieldclock.shared.utils import get_data_path

ROOT_LOGGER = "fieldclock"


class FieldClockFormatter(logging.Formatter):
    """[time] [COMPONENT] [LEVEL] message, coloured by level on a terminal"""

    LEVEL_COLORS = {
        'DEBUG': 'cyan',
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'magenta'
    }

    def __init__(self, use_colors: bool = True):
        try:
            self.use_colors = bool(use_colors and sys.stdout and sys.stdout.isatty())
        except (AttributeError, OSError, ValueError):
            self.use_colors = False

        super().__init__(
            fmt='[%(asctime)s] [%(component)s] [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        # fieldclock.sync -> SYNC
        record.component = record.name.rsplit('.', 1)[-1].upper()
        formatted = super().format(record)
        if self.use_colors:
            return colored(formatted, self.LEVEL_COLORS.get(record.levelname, 'white'))
        return formatted


def _root() -> logging.Logger:
    return logging.getLogger(ROOT_LOGGER)


def _ensure_console(root: logging.Logger) -> None:
    if any(getattr(h, '_fieldclock_console', False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout or sys.stderr)
    handler.setFormatter(FieldClockFormatter(use_colors=True))
    handler._fieldclock_console = True
    root.addHandler(handler)
    root.propagate = False
    if root.level == logging.NOTSET:
        root.setLevel(logging.INFO)


def _attach_run_file(root: logging.Logger) -> Optional[str]:
    if any(isinstance(h, logging.FileHandler) for h in root.handlers):
        return None
    try:
        log_dir = get_data_path('logs')
        log_dir.mkdir(exist_ok=True)
        log_file = log_dir / f"fieldclock_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log"
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
    except OSError as e:
        root.warning(f"Could not setup file logging: {e}")
        return None

    file_handler.setFormatter(FieldClockFormatter(use_colors=False))
    root.addHandler(file_handler)
    return str(log_file)


def setup_logging(component: str, level: str = "INFO", log_to_file: bool = False) -> logging.Logger:
    """Configure FieldClock logging and return the logger for ``component``.

    Args:
        component: Component tag ('CLIENT', 'SYNC', 'QUEUE', 'TRACKING')
        level: Level name applied to every FieldClock logger
        log_to_file: Also write a per-run log file under the data directory's logs/ folder

    Safe to call repeatedly; handlers are only added once.
    """
    root = _root()
    _ensure_console(root)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if log_to_file:
        log_file = _attach_run_file(root)
        if log_file:
            root.debug(f"Logging to {log_file}")

    return get_logger(component)


def get_logger(component: str) -> logging.Logger:
    """Component logger; the console handler is installed on first use"""
    _ensure_console(_root())
    return logging.getLogger(f"{ROOT_LOGGER}.{component.lower()}")


def get_client_logger() -> logging.Logger:
    """Get logger for capture paths"""
    return get_logger("CLIENT")


def get_sync_logger() -> logging.Logger:
    """Get logger for sync operations"""
    return get_logger("SYNC")


def get_queue_logger() -> logging.Logger:
    """Get logger for the local durable queue"""
    return get_logger("QUEUE")


def get_tracking_logger() -> logging.Logger:
    return get_logger("TRACKING")


def set_log_level(level: str):
    """Set the level for every FieldClock component at once"""
    _root().setLevel(getattr(logging, level.upper(), logging.INFO))


def enable_debug_logging():
    """Enable debug logging for troubleshooting"""
    set_log_level("DEBUG")
