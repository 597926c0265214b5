"""Bridge contracts — Pydantic models for every service result and API payload."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import ErrorKind
from ..eventlog.parser import logon_type_name as describe_logon_type


class _RowModel(BaseModel):
    """Built from ORM rows, whose datetimes are naive UTC."""

    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _as_utc(cls, v):
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


# ── Scanning ──
class ScanResult(BaseModel):
    success: bool
    events_seen: int = 0
    events_parsed: int = 0
    events_processed: int = 0
    unparsable: int = 0
    new_ips: list[str] = []
    updated_ips: list[str] = []
    whitelist_filtered_count: int = 0
    timestamp: Optional[datetime] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


# ── Firewall ──
class DirectionResult(BaseModel):
    direction: str
    success: bool
    created: bool = False
    added: list[str] = []
    removed: list[str] = []
    total: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class ReconcileResult(BaseModel):
    success: bool
    newly_blocked: list[str] = []
    total_blocked: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    directions: dict[str, DirectionResult] = {}


class UnblockResult(BaseModel):
    success: bool
    removed: list[str] = []
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    directions: dict[str, DirectionResult] = {}


class FirewallStats(BaseModel):
    inbound_exists: bool = False
    inbound_enabled: bool = False
    outbound_exists: bool = False
    outbound_enabled: bool = False


class FirewallSnapshot(BaseModel):
    inbound: list[str] = []
    outbound: list[str] = []
    union: list[str] = []
    stats: FirewallStats = FirewallStats()
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class ReconcileRequest(BaseModel):
    ips: Optional[list[str]] = None


class UnblockRequest(BaseModel):
    ips: list[str] = Field(min_length=1)


# ── Detections ──
class DetectedIPOut(_RowModel):
    ip: str
    first_detected: datetime
    last_seen: datetime
    attempts: int
    status: str
    threat_level: str
    blocked_at: Optional[datetime] = None
    country: Optional[str] = None
    city: Optional[str] = None
    notes: Optional[str] = None


class DetectionPage(BaseModel):
    items: list[DetectedIPOut] = []
    total: int = 0
    limit: int = 100
    offset: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class DetectionStats(BaseModel):
    total: int = 0
    total_attempts: int = 0
    by_status: dict[str, int] = {}
    by_threat_level: dict[str, int] = {}


class StatusUpdate(BaseModel):
    status: str


class StatusUpdateResult(BaseModel):
    success: bool
    ip: str
    status: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


# ── Allowlist ──
class AllowlistEntryIn(BaseModel):
    ip: str
    description: Optional[str] = None
    added_by: Optional[str] = None
    permanent: bool = False
    expires_at: Optional[datetime] = None
    ttl_hours: Optional[float] = Field(default=None, gt=0)


class AllowlistEntryOut(_RowModel):
    id: int
    ip: str
    description: Optional[str] = None
    added_by: Optional[str] = None
    permanent: bool
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ── Audit events ──
class AuditEventOut(_RowModel):
    id: int
    event_id: int
    event_record_id: Optional[int] = None
    timestamp: datetime
    source_ip: Optional[str] = None
    username: Optional[str] = None
    domain: Optional[str] = None
    workstation: Optional[str] = None
    logon_type: Optional[str] = None
    logon_type_name: Optional[str] = None
    failure_reason: Optional[str] = None

    @model_validator(mode="after")
    def _describe_logon_type(self) -> AuditEventOut:
        if self.logon_type_name is None:
            self.logon_type_name = describe_logon_type(self.logon_type)
        return self


class AuditEventPage(BaseModel):
    items: list[AuditEventOut] = []
    total: int = 0


# ── Geolocation ──
class GeoLocation(BaseModel):
    ip: str
    available: bool = True
    country: Optional[str] = None
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    org: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    timezone: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


# ── Maintenance / health ──
class MaintenanceResult(BaseModel):
    success: bool = True
    events_deleted: int = 0
    allowlist_purged: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class HealthResponse(BaseModel):
    status: str
    app: str
    scan_running: bool = False
    last_scan: Optional[datetime] = None
    modules: dict[str, dict] = {}
