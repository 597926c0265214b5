"""Audit log of ingested failed-logon events (table ``windows_events``).

Rows carry an idempotency key so that re-reading a time range after a crash
does not duplicate them. The audit trail is informational: detection does not
depend on it.
"""

import hashlib
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PersistenceFailure
from ..eventlog.parser import LogonFailureEvent
from ..models.windows_event import WindowsEventRecord
from ..utils.logging import get_logger
from ..utils.timeutil import to_db, utcnow

logger = get_logger("detection.audit")

# Rows per INSERT statement; keeps bound parameters under SQLite limits
_INSERT_CHUNK = 500


def dedup_key(event: LogonFailureEvent) -> str:
    """Stable key from (timestamp, source_ip, record id or username)."""
    discriminator = (
        str(event.event_record_id) if event.event_record_id is not None else f"user:{event.username}"
    )
    material = f"{to_db(event.timestamp).isoformat()}|{event.source_ip}|{discriminator}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class EventAuditLog:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def record(self, events: Iterable[LogonFailureEvent]) -> int:
        """Insert audit rows, ignoring ones already present. Returns rows inserted."""
        rows = {}
        for event in events:
            key = dedup_key(event)
            rows[key] = {
                "event_id": event.event_id,
                "event_record_id": event.event_record_id,
                "dedup_key": key,
                "timestamp": to_db(event.timestamp),
                "source_ip": event.source_ip,
                "username": event.username,
                "domain": event.domain,
                "workstation": event.workstation,
                "logon_type": event.logon_type,
                "failure_reason": event.failure_reason,
                "raw_data": event.raw or None,
            }
        if not rows:
            return 0

        values = list(rows.values())
        inserted = 0
        try:
            async with self._session_factory() as session:
                for start in range(0, len(values), _INSERT_CHUNK):
                    stmt = sqlite_insert(WindowsEventRecord).values(values[start:start + _INSERT_CHUNK])
                    stmt = stmt.on_conflict_do_nothing(index_elements=["dedup_key"])
                    result = await session.execute(stmt)
                    inserted += max(result.rowcount or 0, 0)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"audit write failed: {e}") from e
        logger.debug("audit_events_recorded", submitted=len(rows), inserted=inserted)
        return inserted

    async def recent(
        self,
        source_ip: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[WindowsEventRecord], int]:
        conditions = []
        if source_ip:
            conditions.append(WindowsEventRecord.source_ip == source_ip)
        if since is not None:
            conditions.append(WindowsEventRecord.timestamp >= to_db(since))

        async with self._session_factory() as session:
            rows = (await session.execute(
                select(WindowsEventRecord)
                .where(*conditions)
                .order_by(WindowsEventRecord.timestamp.desc(), WindowsEventRecord.id.desc())
                .limit(limit)
                .offset(offset)
            )).scalars().all()
            total = (await session.execute(
                select(func.count(WindowsEventRecord.id)).where(*conditions)
            )).scalar_one()
        return list(rows), total

    async def cleanup_older_than(self, days: int) -> int:
        cutoff = to_db(utcnow() - timedelta(days=days))
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WindowsEventRecord).where(WindowsEventRecord.timestamp < cutoff)
            )
            await session.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info("audit_events_purged", deleted=deleted, retention_days=days)
        return deleted
