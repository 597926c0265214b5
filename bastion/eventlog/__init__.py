"""Security event log access and 4625 parsing."""

from .parser import EventParser, LogonFailureEvent
from .source import (
    CimLogSource,
    FallbackLogSource,
    LogSource,
    RawRecord,
    WevtutilLogSource,
    build_default_source,
)
