"""Bastion service: composition root and the operations exposed to callers.

Every pipeline operation returns a result model; exceptions raised by the
components are caught here, logged, and turned into ``error`` / ``error_kind``.
Allowlist CRUD raises ``InvalidInput`` for bad requests, which the HTTP layer
maps to a 400.
"""

from datetime import timedelta
from typing import Iterable, Optional, Union

from .bridge.contracts import (
    AllowlistEntryIn,
    AllowlistEntryOut,
    AuditEventOut,
    AuditEventPage,
    DetectedIPOut,
    DetectionPage,
    DetectionStats,
    FirewallSnapshot,
    GeoLocation,
    MaintenanceResult,
    ReconcileResult,
    ScanResult,
    StatusUpdateResult,
    UnblockResult,
)
from .config import BastionConfig
from .detection.allowlist import AllowlistRepository
from .detection.audit import EventAuditLog
from .detection.checkpoint import CheckpointStore
from .detection.scorer import ThreatScorer
from .detection.store import DetectionStore
from .engine.scanner import ScanOrchestrator
from .errors import BastionError, ErrorKind
from .eventlog.parser import EventParser
from .eventlog.source import LogSource, build_default_source
from .firewall.backend import FirewallBackend, PowerShellFirewallBackend
from .firewall.reconciler import FirewallReconciler
from .intel.geolocation import GeoLocationProvider
from .models.detected_ip import STATUS_BLOCKED, STATUS_IGNORED, STATUSES
from .utils.cache import LRUCache
from .utils.commands import CommandRunner
from .utils.input_validators import validate_ip_address, validate_ip_list
from .utils.logging import get_logger
from .utils.rate_limiter import RateLimiter

logger = get_logger("bastion.service")


def _error_kind(exc: Exception) -> ErrorKind:
    return exc.kind if isinstance(exc, BastionError) else ErrorKind.INTERNAL


class BastionService:
    def __init__(
        self,
        config: BastionConfig,
        session_factory,
        source: Optional[LogSource] = None,
        firewall_backend: Optional[FirewallBackend] = None,
        geo: Optional[GeoLocationProvider] = None,
    ):
        self.config = config
        self.store = DetectionStore(session_factory, ThreatScorer.from_config(config))
        self.allowlist = AllowlistRepository(session_factory)
        self.checkpoints = CheckpointStore(session_factory)
        self.audit = EventAuditLog(session_factory)

        source = source or build_default_source(config)
        self.scanner = ScanOrchestrator(
            source=source,
            parser=EventParser(),
            store=self.store,
            allowlist=self.allowlist,
            checkpoints=self.checkpoints,
            audit=self.audit,
            max_events=config.scan_max_events,
            lookback=timedelta(hours=config.scan_lookback_hours),
            batch_size=config.persist_batch_size,
            checkpoint_name=getattr(source, "name", "security"),
        )

        backend = firewall_backend or PowerShellFirewallBackend(
            CommandRunner(),
            timeout=config.firewall_timeout,
            retries=config.command_retries,
            retry_delay=config.command_retry_delay,
        )
        self.firewall = FirewallReconciler(backend, config.firewall_rule_name)

        if geo is None and config.geo_enabled:
            geo = GeoLocationProvider(
                cache=LRUCache(max_entries=config.geo_cache_size),
                rate_limiter=RateLimiter(config.geo_rate_limit, config.geo_rate_window_seconds),
                base_url=config.geo_base_url,
                timeout=config.geo_timeout,
            )
        self.geo = geo

    # --- Scanning ---

    async def run_scan(self) -> ScanResult:
        try:
            return await self.scanner.run()
        except Exception as e:
            logger.error("scan_unhandled_error", error=str(e), exc_info=True)
            return ScanResult(success=False, error=str(e), error_kind=_error_kind(e))

    # --- Firewall ---

    async def pending_block_ips(self) -> list[str]:
        """Detected IPs that still need a firewall rule, minus the allowlist."""
        allowlist = await self.allowlist.load()
        return allowlist.filter(await self.store.pending_block_ips())

    async def reconcile_firewall(self, ips: Optional[Iterable[str]] = None) -> ReconcileResult:
        """Block ``ips``, or every detected and not allow-listed IP when None.

        Rows move to blocked only when both directions succeeded.
        """
        try:
            if ips is None:
                candidates = await self.store.pending_block_ips()
            else:
                candidates = validate_ip_list(ips)
            allowlist = await self.allowlist.load()
            desired = allowlist.filter(candidates)
            skipped = len(candidates) - len(desired)
            if skipped:
                logger.info("reconcile_allowlisted_skipped", count=skipped)

            result = await self.firewall.block_all(desired)
            if result.success and desired:
                await self.store.mark_blocked(desired)
            return result
        except ValueError as e:
            return ReconcileResult(success=False, error=str(e), error_kind=ErrorKind.INVALID_INPUT)
        except Exception as e:
            logger.error("reconcile_failed", error=str(e), error_kind=_error_kind(e).value)
            return ReconcileResult(success=False, error=str(e), error_kind=_error_kind(e))

    async def unblock(self, ips: Union[str, Iterable[str]]) -> UnblockResult:
        """Remove addresses from both rules and mark their rows ignored."""
        if isinstance(ips, str):
            ips = [ips]
        try:
            targets = validate_ip_list(ips)
        except ValueError as e:
            return UnblockResult(success=False, error=str(e), error_kind=ErrorKind.INVALID_INPUT)
        if not targets:
            return UnblockResult(success=False, error="no addresses given", error_kind=ErrorKind.INVALID_INPUT)

        result = await self.firewall.remove_multiple(targets)
        if not result.success:
            return result
        try:
            await self.store.set_status(targets, STATUS_IGNORED)
        except BastionError as e:
            logger.error("unblock_status_update_failed", error=str(e))
            result.success = False
            result.error, result.error_kind = str(e), e.kind
        return result

    async def get_firewall_snapshot(self) -> FirewallSnapshot:
        try:
            blocked = await self.firewall.get_blocked_ips()
            stats = await self.firewall.get_stats()
        except Exception as e:
            logger.error("firewall_snapshot_failed", error=str(e))
            return FirewallSnapshot(error=str(e), error_kind=_error_kind(e))
        return FirewallSnapshot(
            inbound=blocked["inbound"],
            outbound=blocked["outbound"],
            union=blocked["union"],
            stats=stats,
        )

    # --- Detections ---

    async def get_detection_snapshot(
        self,
        status: Optional[str] = None,
        threat_level: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        sort_by: str = "last_seen",
        sort_order: str = "desc",
    ) -> DetectionPage:
        try:
            rows, total = await self.store.list(
                status=status,
                threat_level=threat_level,
                limit=limit,
                offset=offset,
                sort_by=sort_by,
                sort_order=sort_order,
            )
        except Exception as e:
            logger.warning("detection_snapshot_failed", error=str(e))
            return DetectionPage(limit=limit, offset=offset, error=str(e), error_kind=_error_kind(e))
        return DetectionPage(
            items=[DetectedIPOut.model_validate(r) for r in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def get_detection(self, ip: str) -> Optional[DetectedIPOut]:
        row = await self.store.get(ip)
        return DetectedIPOut.model_validate(row) if row else None

    async def get_detection_stats(self) -> DetectionStats:
        return DetectionStats(**await self.store.aggregated_stats())

    async def set_detection_status(self, ip: str, status: str) -> StatusUpdateResult:
        """Operator status change. ``blocked`` is reached only through reconciliation."""
        if status not in STATUSES or status == STATUS_BLOCKED:
            return StatusUpdateResult(
                success=False, ip=ip,
                error=f"status must be one of {[s for s in STATUSES if s != STATUS_BLOCKED]}",
                error_kind=ErrorKind.INVALID_INPUT,
            )
        try:
            ip = validate_ip_address(ip)
            changed = await self.store.set_status([ip], status)
        except ValueError as e:
            return StatusUpdateResult(success=False, ip=ip, error=str(e), error_kind=ErrorKind.INVALID_INPUT)
        except BastionError as e:
            return StatusUpdateResult(success=False, ip=ip, error=str(e), error_kind=e.kind)
        if not changed:
            return StatusUpdateResult(success=False, ip=ip, error="unknown IP", error_kind=ErrorKind.INVALID_INPUT)
        return StatusUpdateResult(success=True, ip=ip, status=status)

    # --- Allowlist ---

    async def list_allowlist(self, include_expired: bool = True) -> list[AllowlistEntryOut]:
        rows = await self.allowlist.list(include_expired=include_expired)
        return [AllowlistEntryOut.model_validate(r) for r in rows]

    async def add_allowlist_entry(self, entry: AllowlistEntryIn) -> AllowlistEntryOut:
        row = await self.allowlist.add(
            entry.ip,
            description=entry.description,
            permanent=entry.permanent,
            expires_at=entry.expires_at,
            ttl=timedelta(hours=entry.ttl_hours) if entry.ttl_hours else None,
            added_by=entry.added_by,
        )
        return AllowlistEntryOut.model_validate(row)

    async def remove_allowlist_entry(self, entry_id: int) -> bool:
        return await self.allowlist.remove(entry_id)

    # --- Audit / enrichment / maintenance ---

    async def recent_events(self, source_ip: Optional[str] = None, limit: int = 100, offset: int = 0) -> AuditEventPage:
        rows, total = await self.audit.recent(source_ip=source_ip, limit=limit, offset=offset)
        return AuditEventPage(items=[AuditEventOut.model_validate(r) for r in rows], total=total)

    async def lookup_location(self, ip: str) -> Optional[GeoLocation]:
        """Geolocate ``ip`` and copy country/city onto its detection row, if any."""
        if self.geo is None:
            return None
        try:
            location = await self.geo.lookup(ip)
            if location is not None and location.available:
                await self.store.set_location(location.ip, location.country, location.city)
            return location
        except Exception as e:
            logger.warning("geolocation_enrichment_failed", ip=ip, error=str(e))
            return None

    async def perform_maintenance(self) -> MaintenanceResult:
        try:
            deleted = await self.audit.cleanup_older_than(self.config.event_retention_days)
            purged = await self.allowlist.purge_expired()
        except Exception as e:
            logger.error("maintenance_failed", error=str(e))
            return MaintenanceResult(success=False, error=str(e), error_kind=_error_kind(e))
        logger.info("maintenance_completed", events_deleted=deleted, allowlist_purged=purged)
        return MaintenanceResult(events_deleted=deleted, allowlist_purged=purged)
