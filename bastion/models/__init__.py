"""SQLAlchemy models package."""

from .base import Base
from .detected_ip import DetectedIP
from .allowlist_entry import AllowlistEntry
from .windows_event import WindowsEventRecord
from .scan_checkpoint import ScanCheckpoint

__all__ = [
    "Base",
    "DetectedIP",
    "AllowlistEntry",
    "WindowsEventRecord",
    "ScanCheckpoint",
]
