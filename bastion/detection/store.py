"""Detection store: durable table of attacker IPs, keyed by address.

``upsert`` adds a batch's attempt count to an IP in one UPDATE statement that
also recomputes ``threat_level`` from the new total, so attempts and threat
level can never be observed out of step. Writers for the same IP are
serialized by a per-IP lock; different IPs proceed concurrently.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import InvalidInput, PersistenceFailure
from ..models.detected_ip import STATUS_BLOCKED, STATUS_DETECTED, STATUSES, DetectedIP
from ..utils.logging import get_logger
from ..utils.timeutil import to_db, utcnow
from .scorer import ThreatLevel, ThreatScorer

logger = get_logger("detection.store")

SORTABLE_COLUMNS = {
    "ip": DetectedIP.ip,
    "first_detected": DetectedIP.first_detected,
    "last_seen": DetectedIP.last_seen,
    "attempts": DetectedIP.attempts,
    "threat_level": DetectedIP.threat_level,
    "status": DetectedIP.status,
}


@dataclass
class UpsertOutcome:
    ip: str
    created: bool
    attempts: int
    threat_level: str


class DetectionStore:
    """Upsert-by-IP and bulk status transitions over ``detected_ips``."""

    def __init__(self, session_factory, scorer: ThreatScorer | None = None):
        self._session_factory = session_factory
        self._scorer = scorer or ThreatScorer()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, ip: str) -> asyncio.Lock:
        lock = self._locks.get(ip)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ip] = lock
        return lock

    def _threat_level_expr(self, attempts_expr):
        """SQL expression mirroring ``ThreatScorer.score`` for an attempts expression."""
        s = self._scorer
        return case(
            (attempts_expr >= s.critical, ThreatLevel.CRITICAL.value),
            (attempts_expr >= s.high, ThreatLevel.HIGH.value),
            (attempts_expr >= s.medium, ThreatLevel.MEDIUM.value),
            else_=ThreatLevel.LOW.value,
        )

    async def upsert(
        self,
        ip: str,
        count: int,
        first_seen: Optional[datetime] = None,
        last_seen: Optional[datetime] = None,
    ) -> UpsertOutcome:
        """Add ``count`` attempts to ``ip``, inserting it with status=detected if unknown.

        Additive per call: two calls with counts n and m leave attempts += n + m.
        Raises PersistenceFailure on any storage error.
        """
        if count < 1:
            raise InvalidInput(f"attempt count must be positive, got {count}")
        now = utcnow()
        first_seen = to_db(first_seen or now)
        last_seen = to_db(last_seen or first_seen)

        async with self._lock_for(ip):
            try:
                return await self._upsert_locked(ip, count, first_seen, last_seen)
            except SQLAlchemyError as e:
                logger.error("detection_upsert_failed", ip=ip, error=str(e))
                raise PersistenceFailure(f"upsert {ip} failed: {e}") from e

    async def _upsert_locked(self, ip: str, count: int, first_seen: datetime, last_seen: datetime) -> UpsertOutcome:
        for _ in range(2):
            async with self._session_factory() as session:
                new_attempts = DetectedIP.attempts + count
                result = await session.execute(
                    update(DetectedIP)
                    .where(DetectedIP.ip == ip)
                    .values(
                        attempts=new_attempts,
                        threat_level=self._threat_level_expr(new_attempts),
                        last_seen=case(
                            (DetectedIP.last_seen < last_seen, last_seen),
                            else_=DetectedIP.last_seen,
                        ),
                    )
                )
                if result.rowcount:
                    await session.commit()
                    row = (await session.execute(
                        select(DetectedIP.attempts, DetectedIP.threat_level).where(DetectedIP.ip == ip)
                    )).one()
                    return UpsertOutcome(ip=ip, created=False, attempts=row.attempts, threat_level=row.threat_level)

                level = self._scorer.score(count).value
                session.add(DetectedIP(
                    ip=ip,
                    first_detected=first_seen,
                    last_seen=last_seen,
                    attempts=count,
                    status=STATUS_DETECTED,
                    threat_level=level,
                ))
                try:
                    await session.commit()
                except IntegrityError:
                    # Another writer inserted the row first; fold into it.
                    await session.rollback()
                    continue
                logger.info("ip_detected", ip=ip, attempts=count, threat_level=level)
                return UpsertOutcome(ip=ip, created=True, attempts=count, threat_level=level)
        raise PersistenceFailure(f"upsert {ip} lost the insert race twice")

    async def get(self, ip: str) -> Optional[DetectedIP]:
        async with self._session_factory() as session:
            return (await session.execute(
                select(DetectedIP).where(DetectedIP.ip == ip)
            )).scalar_one_or_none()

    async def list(
        self,
        status: Optional[str] = None,
        threat_level: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        sort_by: str = "last_seen",
        sort_order: str = "desc",
    ) -> tuple[list[DetectedIP], int]:
        """Filtered, paginated rows plus the total row count matching the filters."""
        column = SORTABLE_COLUMNS.get(sort_by)
        if column is None:
            raise InvalidInput(f"cannot sort by {sort_by!r}")
        conditions = []
        if status:
            conditions.append(DetectedIP.status == status)
        if threat_level:
            conditions.append(DetectedIP.threat_level == threat_level)

        order = column.asc() if sort_order.lower() == "asc" else column.desc()
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(DetectedIP).where(*conditions).order_by(order, DetectedIP.id).limit(limit).offset(offset)
            )).scalars().all()
            total = (await session.execute(
                select(func.count(DetectedIP.id)).where(*conditions)
            )).scalar_one()
        return list(rows), total

    async def pending_block_ips(self) -> list[str]:
        """Addresses still in status=detected, oldest detection first."""
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(DetectedIP.ip)
                .where(DetectedIP.status == STATUS_DETECTED)
                .order_by(DetectedIP.first_detected, DetectedIP.id)
            )).scalars().all()
        return list(rows)

    async def mark_blocked(self, ips: Iterable[str]) -> int:
        """Transition rows to blocked; ``blocked_at`` is written only the first time."""
        ips = list(ips)
        if not ips:
            return 0
        now = to_db(utcnow())
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(DetectedIP)
                    .where(DetectedIP.ip.in_(ips), DetectedIP.status != STATUS_BLOCKED)
                    .values(
                        status=STATUS_BLOCKED,
                        blocked_at=func.coalesce(DetectedIP.blocked_at, now),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"mark_blocked failed: {e}") from e
        logger.info("ips_marked_blocked", requested=len(ips), affected=result.rowcount)
        return result.rowcount or 0

    async def set_status(self, ips: Iterable[str], status: str) -> int:
        """Bulk status transition for operator actions (ignore, unblock)."""
        if status not in STATUSES:
            raise InvalidInput(f"status must be one of {STATUSES}")
        if status == STATUS_BLOCKED:
            return await self.mark_blocked(ips)
        ips = list(ips)
        if not ips:
            return 0
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(DetectedIP).where(DetectedIP.ip.in_(ips)).values(status=status)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"set_status failed: {e}") from e
        logger.info("ip_status_updated", status=status, affected=result.rowcount)
        return result.rowcount or 0

    async def set_location(self, ip: str, country: Optional[str], city: Optional[str]) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(DetectedIP).where(DetectedIP.ip == ip).values(country=country, city=city)
            )
            await session.commit()

    async def aggregated_stats(self) -> dict:
        """Counts by status and by threat level, plus the attempts total."""
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(
                    DetectedIP.status,
                    DetectedIP.threat_level,
                    func.count(DetectedIP.id),
                    func.coalesce(func.sum(DetectedIP.attempts), 0),
                ).group_by(DetectedIP.status, DetectedIP.threat_level)
            )).all()

        stats = {"by_status": {}, "by_threat_level": {}, "total": 0, "total_attempts": 0}
        for status, level, count, attempts in rows:
            stats["by_status"][status] = stats["by_status"].get(status, 0) + count
            stats["by_threat_level"][level] = stats["by_threat_level"].get(level, 0) + count
            stats["total"] += count
            stats["total_attempts"] += int(attempts)
        return stats
