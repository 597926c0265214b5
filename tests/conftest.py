"""Shared test fixtures: in-memory database, fake log source, fake firewall."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bastion.config import BastionConfig
from bastion.errors import SourceUnavailable
from bastion.eventlog.source import LogSource, RawRecord
from bastion.firewall.backend import FirewallBackend, FirewallRuleState
from bastion.models.base import Base
from bastion.utils.timeutil import ensure_utc, utcnow

EVENT_XML = (
    "<Event xmlns='http://schemas.microsoft.com/win/2004/08/events/event'>"
    "<System><Provider Name='Microsoft-Windows-Security-Auditing'/>"
    "<EventID>4625</EventID>"
    "<TimeCreated SystemTime='{timestamp}'/>"
    "<EventRecordID>{record_id}</EventRecordID>"
    "<Computer>SRV01</Computer></System>"
    "<EventData>"
    "<Data Name='SubjectUserName'>-</Data>"
    "<Data Name='TargetUserName'>{username}</Data>"
    "<Data Name='TargetDomainName'>WORKGROUP</Data>"
    "<Data Name='Status'>0xc000006d</Data>"
    "<Data Name='FailureReason'>%%2313</Data>"
    "<Data Name='SubStatus'>0xc000006a</Data>"
    "<Data Name='LogonType'>3</Data>"
    "<Data Name='WorkstationName'>KALI</Data>"
    "<Data Name='IpAddress'>{ip}</Data>"
    "<Data Name='IpPort'>51234</Data>"
    "</EventData></Event>"
)


def event_xml(ip: str, timestamp: datetime, record_id: int = 1, username: str = "administrator") -> str:
    ts = ensure_utc(timestamp).strftime("%Y-%m-%dT%H:%M:%S.%f") + "0Z"
    return EVENT_XML.format(ip=ip, timestamp=ts, record_id=record_id, username=username)


class FakeLogSource(LogSource):
    """In-memory Security log; honours the checkpoint like the real sources."""

    name = "security"

    def __init__(self):
        self.records: list[RawRecord] = []
        self.fail = False
        self.calls = 0
        self._next_id = 1

    def add(self, ip: str, count: int = 1, timestamp: datetime | None = None, username: str = "administrator"):
        base = timestamp or utcnow() - timedelta(minutes=5)
        for i in range(count):
            ts = base + timedelta(seconds=i)
            self.records.append(RawRecord(
                data=event_xml(ip, ts, self._next_id, username),
                fmt="xml",
                timestamp=ensure_utc(ts),
                record_id=self._next_id,
                source=self.name,
            ))
            self._next_id += 1

    def add_raw(self, data: str, fmt: str = "text", timestamp: datetime | None = None):
        self.records.append(RawRecord(data=data, fmt=fmt, timestamp=timestamp or utcnow(), source=self.name))

    async def fetch_since(self, checkpoint, max_count, lookback):
        self.calls += 1
        if self.fail:
            raise SourceUnavailable("wevtutil: access denied; cim: access denied")
        records = [r for r in self.records if checkpoint is None or r.timestamp > checkpoint]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:max_count]


class FakeFirewallBackend(FirewallBackend):
    """Rule table in a dict; counts writes and can fail per rule name."""

    def __init__(self):
        self.rules: dict[str, FirewallRuleState] = {}
        self.directions: dict[str, str] = {}
        self.writes = 0
        self.reads = 0
        self.failures: dict[str, Exception] = {}

    def _check(self, name):
        if name in self.failures:
            raise self.failures[name]

    async def get_rule(self, name):
        self.reads += 1
        self._check(name)
        rule = self.rules.get(name)
        if rule is None:
            return None
        return FirewallRuleState(name=rule.name, enabled=rule.enabled, action=rule.action, addresses=list(rule.addresses))

    async def create_rule(self, name, direction, addresses):
        self._check(name)
        self.writes += 1
        self.rules[name] = FirewallRuleState(name=name, addresses=list(addresses))
        self.directions[name] = direction

    async def set_addresses(self, name, addresses):
        self._check(name)
        self.writes += 1
        self.rules[name].addresses = list(addresses)

    async def delete_rule(self, name):
        self._check(name)
        self.writes += 1
        self.rules.pop(name, None)


@pytest.fixture
def config():
    return BastionConfig(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        geo_enabled=False,
        command_retry_delay=0.0,
    )


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test (shared connection via StaticPool)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def log_source():
    return FakeLogSource()


@pytest.fixture
def firewall_backend():
    return FakeFirewallBackend()


@pytest.fixture
def make_event_xml():
    return event_xml
