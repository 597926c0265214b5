"""Scan orchestrator: one pass of the fetch -> parse -> aggregate -> persist pipeline.

A scan reads every failed logon newer than the stored checkpoint, drops
records without an actionable source IP, removes allow-listed addresses,
groups the rest by IP and upserts one row per address. The checkpoint moves to
the newest event timestamp only after every upsert in the batch succeeded,
which makes ingestion at-least-once.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..bridge.contracts import ScanResult
from ..detection.allowlist import AllowlistRepository
from ..detection.audit import EventAuditLog
from ..detection.checkpoint import CheckpointStore
from ..detection.store import DetectionStore
from ..errors import BastionError, ErrorKind, PersistenceFailure, ScanInProgress, SourceUnavailable
from ..eventlog.parser import EventParser, LogonFailureEvent
from ..eventlog.source import LogSource
from ..utils.logging import get_logger
from ..utils.timeutil import utcnow

logger = get_logger("engine.scanner")


class ScanState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"


@dataclass
class IPAggregate:
    """Per-IP summary of one batch."""

    ip: str
    count: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    events: list[LogonFailureEvent] = field(default_factory=list)

    def add(self, event: LogonFailureEvent) -> None:
        self.count += 1
        self.events.append(event)
        if self.first_seen is None or event.timestamp < self.first_seen:
            self.first_seen = event.timestamp
        if self.last_seen is None or event.timestamp > self.last_seen:
            self.last_seen = event.timestamp


def aggregate(events: list[LogonFailureEvent]) -> dict[str, IPAggregate]:
    groups: dict[str, IPAggregate] = {}
    for event in events:
        group = groups.get(event.source_ip)
        if group is None:
            group = groups[event.source_ip] = IPAggregate(ip=event.source_ip)
        group.add(event)
    return groups


class ScanOrchestrator:
    """Drives one scan at a time; a concurrent trigger is rejected, not queued."""

    def __init__(
        self,
        source: LogSource,
        parser: EventParser,
        store: DetectionStore,
        allowlist: AllowlistRepository,
        checkpoints: CheckpointStore,
        audit: Optional[EventAuditLog] = None,
        max_events: int = 10_000,
        lookback: timedelta = timedelta(hours=24),
        batch_size: int = 100,
        checkpoint_name: str = "security",
    ):
        self._source = source
        self._parser = parser
        self._store = store
        self._allowlist = allowlist
        self._checkpoints = checkpoints
        self._audit = audit
        self._max_events = max_events
        self._lookback = lookback
        self._batch_size = batch_size
        self._checkpoint_name = checkpoint_name
        self._lock = asyncio.Lock()
        self.state = ScanState.IDLE
        self.last_result: Optional[ScanResult] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> ScanResult:
        """Run one scan. Never raises; failures are reported in the result."""
        if self._lock.locked():
            logger.info("scan_rejected", reason="scan_in_progress")
            error = ScanInProgress("a scan is already running")
            return ScanResult(success=False, error=str(error), error_kind=error.kind)

        async with self._lock:
            result = ScanResult(success=False)
            try:
                await self._scan(result)
                result.success = True
            except SourceUnavailable as e:
                logger.error("scan_source_unavailable", error=str(e))
                result.error, result.error_kind = str(e), e.kind
            except BastionError as e:
                logger.error("scan_failed", error=str(e), error_kind=e.kind.value)
                result.error, result.error_kind = str(e), e.kind
            finally:
                self.state = ScanState.IDLE
                result.timestamp = utcnow()

            if result.success:
                logger.info(
                    "scan_completed",
                    events=result.events_seen,
                    processed=result.events_processed,
                    new_ips=len(result.new_ips),
                    updated_ips=len(result.updated_ips),
                    whitelist_filtered=result.whitelist_filtered_count,
                )
            self.last_result = result
            return result

    async def _scan(self, result: ScanResult) -> None:
        checkpoint = await self._checkpoints.get(self._checkpoint_name)

        self.state = ScanState.FETCHING
        records = await self._source.fetch_since(checkpoint, self._max_events, self._lookback)
        result.events_seen = len(records)
        if not records:
            logger.debug("scan_no_new_events", checkpoint=checkpoint.isoformat() if checkpoint else None)
            return

        self.state = ScanState.PARSING
        events = []
        for record in records:
            event = self._parser.parse(record)
            if event is None:
                result.unparsable += 1
                continue
            events.append(event)
        result.events_parsed = len(events)
        if result.unparsable:
            logger.debug("scan_records_skipped", count=result.unparsable, kind=ErrorKind.PARSE_SKIP.value)

        self.state = ScanState.AGGREGATING
        allowlist = await self._allowlist.load()
        now = utcnow()
        groups = {}
        for ip, group in aggregate(events).items():
            if allowlist.is_allowed(ip, now):
                result.whitelist_filtered_count += group.count
                continue
            groups[ip] = group
        result.events_processed = sum(g.count for g in groups.values())

        self.state = ScanState.PERSISTING
        await self._persist(groups, result)
        if self._audit is not None:
            await self._record_audit(groups)

        newest = max((r.timestamp for r in records if r.timestamp is not None), default=None)
        if newest is None and events:
            newest = max(e.timestamp for e in events)
        if newest is not None:
            await self._checkpoints.advance(self._checkpoint_name, newest)

    async def _persist(self, groups: dict[str, IPAggregate], result: ScanResult) -> None:
        semaphore = asyncio.Semaphore(self._batch_size)

        async def upsert(group: IPAggregate):
            async with semaphore:
                return await self._store.upsert(group.ip, group.count, group.first_seen, group.last_seen)

        outcomes = await asyncio.gather(
            *(upsert(g) for g in groups.values()), return_exceptions=True
        )
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            for failure in failures:
                if not isinstance(failure, Exception):
                    raise failure
            raise PersistenceFailure(
                f"{len(failures)} of {len(outcomes)} upserts failed: {failures[0]}"
            )
        for outcome in outcomes:
            (result.new_ips if outcome.created else result.updated_ips).append(outcome.ip)

    async def _record_audit(self, groups: dict[str, IPAggregate]) -> None:
        events = [e for g in groups.values() for e in g.events]
        try:
            await self._audit.record(events)
        except PersistenceFailure as e:
            logger.warning("scan_audit_write_failed", error=str(e))
