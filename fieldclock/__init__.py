"""FieldClock: offline-first attendance capture and reconciliation."""

__version__ = "1.0.0"
