"""Log sources: read failed-logon records (Event ID 4625) from the Security log.

Two strategies, tried in order by ``FallbackLogSource``; the first one that
succeeds supplies the whole batch:

1. ``WevtutilLogSource``: an XPath query filtered by event ID and
   TimeCreated, capped, newest first, rendered as XML.
2. ``CimLogSource``: a ``Win32_NTLogEvent`` enumeration filtered by event
   code only; time filtering and the cap are applied client-side.

All command construction lives here. Callers only see ``RawRecord`` lists.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..errors import CommandError, SourceUnavailable
from ..utils.commands import CommandRunner
from ..utils.logging import get_logger
from ..utils.timeutil import ensure_utc, parse_timestamp, utcnow

logger = get_logger("eventlog.source")

EVENT_ID_FAILED_LOGON = 4625
SECURITY_LOG = "Security"

_EVENT_XML_RE = re.compile(r"<Event[\s>].*?</Event>", re.DOTALL)
_SYSTEM_TIME_RE = re.compile(r"SystemTime=['\"]([^'\"]+)['\"]")
_RECORD_ID_RE = re.compile(r"<EventRecordID>(\d+)</EventRecordID>")


@dataclass
class RawRecord:
    """One undecoded log record.

    ``fmt`` is ``"xml"`` for rendered event XML and ``"text"`` for the
    human-readable message rendering. ``timestamp`` is filled when the source
    can read it without a full parse.
    """

    data: str
    fmt: str = "xml"
    timestamp: datetime | None = None
    record_id: int | None = None
    source: str = field(default="", compare=False)


def effective_since(checkpoint: datetime | None, lookback: timedelta) -> datetime:
    """Lower time bound for a query: the checkpoint, but never older than the lookback window."""
    floor = utcnow() - lookback
    if checkpoint is None:
        return floor
    return max(ensure_utc(checkpoint), floor)


def newer_than(records: list[RawRecord], since: datetime) -> list[RawRecord]:
    """Keep records strictly newer than ``since``; records without a timestamp are kept."""
    return [r for r in records if r.timestamp is None or r.timestamp > since]


class LogSource(ABC):
    """A strategy for reading failed-logon records newer than a checkpoint."""

    name: str = "base"

    @abstractmethod
    async def fetch_since(
        self,
        checkpoint: datetime | None,
        max_count: int,
        lookback: timedelta,
    ) -> list[RawRecord]:
        """Return records newer than ``checkpoint`` (and inside ``lookback``), newest first.

        Raises on any failure; the caller decides whether to fall through.
        """
        ...


class WevtutilLogSource(LogSource):
    """Structured query through ``wevtutil qe`` with an XPath time filter."""

    name = "wevtutil"

    def __init__(self, runner: CommandRunner | None = None, timeout: float = 45,
                 retries: int = 3, retry_delay: float = 1.0):
        self._runner = runner or CommandRunner()
        self._timeout = timeout
        self._retries = retries
        self._retry_delay = retry_delay

    def build_command(self, since: datetime, max_count: int) -> list[str]:
        since_str = ensure_utc(since).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        query = (
            f"*[System[(EventID={EVENT_ID_FAILED_LOGON}) and "
            f"TimeCreated[@SystemTime>'{since_str}']]]"
        )
        return [
            "wevtutil", "qe", SECURITY_LOG,
            f"/q:{query}",
            f"/c:{int(max_count)}",
            "/rd:true",
            "/f:xml",
        ]

    async def fetch_since(self, checkpoint, max_count, lookback):
        since = effective_since(checkpoint, lookback)
        output = await self._runner.run_with_retry(
            self.build_command(since, max_count),
            timeout=self._timeout,
            retries=self._retries,
            delay=self._retry_delay,
        )
        records = self.split_events(output)
        return newer_than(records, since)[:max_count]

    @staticmethod
    def split_events(output: str) -> list[RawRecord]:
        """Split concatenated ``<Event>`` documents into records."""
        records = []
        for match in _EVENT_XML_RE.finditer(output or ""):
            xml = match.group(0)
            ts_match = _SYSTEM_TIME_RE.search(xml)
            rid_match = _RECORD_ID_RE.search(xml)
            records.append(RawRecord(
                data=xml,
                fmt="xml",
                timestamp=parse_timestamp(ts_match.group(1)) if ts_match else None,
                record_id=int(rid_match.group(1)) if rid_match else None,
                source=WevtutilLogSource.name,
            ))
        return records


class CimLogSource(LogSource):
    """Line-oriented fallback over ``Win32_NTLogEvent`` via PowerShell.

    The class only filters by event code, so the full result is filtered by
    time and capped here.
    """

    name = "cim"

    _SCRIPT = (
        "Get-CimInstance -ClassName Win32_NTLogEvent "
        f"-Filter \"Logfile='{SECURITY_LOG}' AND EventCode={EVENT_ID_FAILED_LOGON}\" "
        "-ErrorAction Stop | "
        "Select-Object RecordNumber,"
        "@{n='TimeGenerated';e={$_.TimeGenerated.ToUniversalTime().ToString('o')}},"
        "Message | ConvertTo-Json -Compress"
    )

    def __init__(self, runner: CommandRunner | None = None, timeout: float = 45,
                 retries: int = 3, retry_delay: float = 1.0):
        self._runner = runner or CommandRunner()
        self._timeout = timeout
        self._retries = retries
        self._retry_delay = retry_delay

    def build_command(self) -> list[str]:
        return ["powershell", "-NoProfile", "-NonInteractive", "-Command", self._SCRIPT]

    async def fetch_since(self, checkpoint, max_count, lookback):
        since = effective_since(checkpoint, lookback)
        output = await self._runner.run_with_retry(
            self.build_command(),
            timeout=self._timeout,
            retries=self._retries,
            delay=self._retry_delay,
        )
        records = newer_than(self.parse_output(output), since)
        records.sort(key=lambda r: r.timestamp or since, reverse=True)
        return records[:max_count]

    @staticmethod
    def parse_output(output: str) -> list[RawRecord]:
        output = (output or "").strip()
        if not output:
            return []
        data = json.loads(output)
        if isinstance(data, dict):
            data = [data]

        records = []
        for entry in data:
            timestamp = parse_timestamp(entry.get("TimeGenerated"))
            message = entry.get("Message") or ""
            header = f"Date and Time: {entry.get('TimeGenerated', '')}\n"
            record_id = entry.get("RecordNumber")
            records.append(RawRecord(
                data=header + message,
                fmt="text",
                timestamp=timestamp,
                record_id=int(record_id) if record_id is not None else None,
                source=CimLogSource.name,
            ))
        return records


class FallbackLogSource(LogSource):
    """Tries each strategy in order; the first success wins the whole batch."""

    name = "security"

    def __init__(self, strategies: list[LogSource]):
        self._strategies = strategies
        self.last_strategy: str | None = None

    async def fetch_since(self, checkpoint, max_count, lookback):
        errors = []
        for strategy in self._strategies:
            try:
                records = await strategy.fetch_since(checkpoint, max_count, lookback)
            except (CommandError, ValueError) as e:
                logger.warning("log_source_strategy_failed", strategy=strategy.name, error=str(e))
                errors.append(f"{strategy.name}: {e}")
                continue
            self.last_strategy = strategy.name
            logger.debug("log_source_fetched", strategy=strategy.name, records=len(records))
            return records

        self.last_strategy = None
        raise SourceUnavailable("; ".join(errors) or "no log source strategies configured")


def build_default_source(config) -> FallbackLogSource:
    """Structured query first, CIM enumeration as fallback."""
    runner = CommandRunner()
    kwargs = {
        "runner": runner,
        "timeout": config.log_query_timeout,
        "retries": config.command_retries,
        "retry_delay": config.command_retry_delay,
    }
    return FallbackLogSource([WevtutilLogSource(**kwargs), CimLogSource(**kwargs)])
