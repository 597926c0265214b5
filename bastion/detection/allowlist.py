"""Allowlist: addresses and CIDR blocks exempt from detection and blocking.

``Allowlist`` is an immutable snapshot evaluated at query time (expired
entries are ignored, not purged). ``AllowlistRepository`` owns the rows.
"""

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import InvalidInput, PersistenceFailure
from ..models.allowlist_entry import AllowlistEntry
from ..utils import ip_validator
from ..utils.input_validators import validate_ip_or_cidr
from ..utils.logging import get_logger
from ..utils.timeutil import from_db, to_db, utcnow

logger = get_logger("detection.allowlist")


@dataclass(frozen=True)
class AllowlistRule:
    address: str
    permanent: bool = False
    expires_at: Optional[datetime] = None
    description: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return self.permanent or (self.expires_at is not None and self.expires_at > now)


class Allowlist:
    """Snapshot of allowlist rules with exact-IP and CIDR matching."""

    def __init__(self, rules: Iterable[AllowlistRule] = ()):
        self._rules = list(rules)

    @classmethod
    def of(cls, *addresses: str) -> "Allowlist":
        """Permanent allowlist of the given addresses."""
        return cls(AllowlistRule(address=a, permanent=True) for a in addresses)

    def __len__(self) -> int:
        return len(self._rules)

    def is_allowed(self, ip: str, now: Optional[datetime] = None) -> bool:
        """True iff any active entry matches ``ip`` (exact address or CIDR containment)."""
        if not ip_validator.is_valid(ip):
            return False
        now = now or utcnow()
        normalized = ip_validator.normalize(ip)
        addr = ipaddress.IPv4Address(normalized)
        for rule in self._rules:
            if not rule.is_active(now):
                continue
            if "/" in rule.address:
                try:
                    if addr in ipaddress.IPv4Network(rule.address, strict=False):
                        return True
                except ValueError:
                    continue
            elif ip_validator.is_valid(rule.address) and ip_validator.normalize(rule.address) == normalized:
                return True
        return False

    def filter(self, ips: Iterable[str]) -> list[str]:
        """Drop allow-listed addresses from ``ips``."""
        now = utcnow()
        return [ip for ip in ips if not self.is_allowed(ip, now)]


class AllowlistRepository:
    """CRUD over ``allowlist_entries``."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def load(self) -> Allowlist:
        """Snapshot of the entries active right now."""
        now = to_db(utcnow())
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(
                    select(AllowlistEntry).where(
                        or_(AllowlistEntry.permanent.is_(True), AllowlistEntry.expires_at > now)
                    )
                )).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"allowlist load failed: {e}") from e
        return Allowlist(
            AllowlistRule(
                address=row.ip,
                permanent=row.permanent,
                expires_at=from_db(row.expires_at),
                description=row.description,
            )
            for row in rows
        )

    async def list(self, include_expired: bool = True) -> list[AllowlistEntry]:
        async with self._session_factory() as session:
            stmt = select(AllowlistEntry).order_by(AllowlistEntry.created_at.desc(), AllowlistEntry.id.desc())
            if not include_expired:
                stmt = stmt.where(
                    or_(AllowlistEntry.permanent.is_(True), AllowlistEntry.expires_at > to_db(utcnow()))
                )
            return list((await session.execute(stmt)).scalars().all())

    async def add(
        self,
        ip: str,
        description: Optional[str] = None,
        permanent: bool = False,
        expires_at: Optional[datetime] = None,
        ttl: Optional[timedelta] = None,
        added_by: Optional[str] = None,
    ) -> AllowlistEntry:
        """Add an entry. A non-permanent entry needs ``expires_at`` or ``ttl``."""
        try:
            address = validate_ip_or_cidr(ip)
        except ValueError as e:
            raise InvalidInput(str(e)) from e
        if ttl is not None and expires_at is None:
            expires_at = utcnow() + ttl
        if not permanent and expires_at is None:
            raise InvalidInput("non-permanent allowlist entries need an expiry")

        entry = AllowlistEntry(
            ip=address,
            description=description,
            added_by=added_by,
            permanent=permanent,
            expires_at=None if permanent else to_db(expires_at),
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
                await session.refresh(entry)
        except IntegrityError as e:
            raise InvalidInput(f"{address} is already allow-listed") from e
        logger.info("allowlist_entry_added", ip=address, permanent=permanent)
        return entry

    async def add_bulk(self, ips: Iterable[str], description: str = "Added in bulk") -> int:
        """Add permanent entries, skipping invalid and duplicate addresses."""
        added = 0
        for ip in ips:
            try:
                await self.add(ip, description=description, permanent=True)
                added += 1
            except InvalidInput as e:
                logger.debug("allowlist_bulk_skip", ip=ip, error=str(e))
        logger.info("allowlist_bulk_added", count=added)
        return added

    async def remove(self, entry_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(AllowlistEntry).where(AllowlistEntry.id == entry_id))
            await session.commit()
        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info("allowlist_entry_removed", entry_id=entry_id)
        return removed

    async def purge_expired(self) -> int:
        """Delete non-permanent entries whose expiry has passed."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AllowlistEntry).where(
                    AllowlistEntry.permanent.is_(False),
                    AllowlistEntry.expires_at <= to_db(utcnow()),
                )
            )
            await session.commit()
        return result.rowcount or 0
