"""Tests for the Security log strategies and their fallback chain."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from bastion.errors import CommandError, PermissionDenied, SourceUnavailable
from bastion.eventlog.source import (
    CimLogSource,
    FallbackLogSource,
    RawRecord,
    WevtutilLogSource,
    effective_since,
)
from bastion.utils.timeutil import utcnow


def _runner(output=None, error=None):
    runner = MagicMock()
    runner.run_with_retry = AsyncMock(return_value=output, side_effect=error)
    return runner


class TestEffectiveSince:
    def test_no_checkpoint_uses_lookback(self):
        since = effective_since(None, timedelta(hours=24))
        assert abs((utcnow() - timedelta(hours=24) - since).total_seconds()) < 5

    def test_recent_checkpoint_wins(self):
        checkpoint = utcnow() - timedelta(minutes=10)
        assert effective_since(checkpoint, timedelta(hours=24)) == checkpoint

    def test_stale_checkpoint_is_clamped(self):
        checkpoint = utcnow() - timedelta(days=10)
        assert effective_since(checkpoint, timedelta(hours=24)) > checkpoint


class TestWevtutilLogSource:
    def test_build_command(self):
        since = datetime(2024, 5, 1, 10, 0, 0, 250000, tzinfo=timezone.utc)
        args = WevtutilLogSource().build_command(since, 500)
        assert args[:3] == ["wevtutil", "qe", "Security"]
        assert "/q:*[System[(EventID=4625) and TimeCreated[@SystemTime>'2024-05-01T10:00:00.250Z']]]" in args
        assert "/c:500" in args
        assert "/rd:true" in args
        assert "/f:xml" in args

    def test_split_events(self, make_event_xml):
        ts = utcnow()
        output = make_event_xml("203.0.113.1", ts, 7) + "\r\n" + make_event_xml("203.0.113.2", ts, 8)
        records = WevtutilLogSource.split_events(output)
        assert [r.record_id for r in records] == [7, 8]
        assert all(r.fmt == "xml" for r in records)
        assert records[0].timestamp == ts

    @pytest.mark.asyncio
    async def test_fetch_filters_records_not_after_checkpoint(self, make_event_xml):
        checkpoint = utcnow() - timedelta(minutes=30)
        output = make_event_xml("203.0.113.1", checkpoint, 1) + make_event_xml(
            "203.0.113.2", checkpoint + timedelta(seconds=1), 2
        )
        source = WevtutilLogSource(runner=_runner(output))
        records = await source.fetch_since(checkpoint, 100, timedelta(hours=24))
        assert [r.record_id for r in records] == [2]


class TestCimLogSource:
    def test_parse_output_list(self):
        output = json.dumps([
            {"RecordNumber": 11, "TimeGenerated": "2024-05-01T10:00:00.0000000Z",
             "Message": "An account failed to log on.\r\n\r\nSource Network Address:\t203.0.113.4"},
            {"RecordNumber": 12, "TimeGenerated": "2024-05-01T10:01:00.0000000Z", "Message": None},
        ])
        records = CimLogSource.parse_output(output)
        assert [r.record_id for r in records] == [11, 12]
        assert records[0].fmt == "text"
        assert records[0].data.startswith("Date and Time: 2024-05-01T10:00:00.0000000Z")
        assert "203.0.113.4" in records[0].data

    def test_parse_output_single_object_and_empty(self):
        single = json.dumps({"RecordNumber": 1, "TimeGenerated": "2024-05-01T10:00:00Z", "Message": "x"})
        assert len(CimLogSource.parse_output(single)) == 1
        assert CimLogSource.parse_output("") == []

    @pytest.mark.asyncio
    async def test_fetch_filters_sorts_and_caps(self):
        now = utcnow()
        entries = [
            {"RecordNumber": i, "TimeGenerated": (now - timedelta(minutes=i)).isoformat(), "Message": "m"}
            for i in range(1, 6)
        ]
        source = CimLogSource(runner=_runner(json.dumps(entries)))
        checkpoint = now - timedelta(minutes=4, seconds=30)
        records = await source.fetch_since(checkpoint, 2, timedelta(hours=24))
        assert [r.record_id for r in records] == [1, 2]


class TestFallbackLogSource:
    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        first = MagicMock(name="first")
        first.name = "wevtutil"
        first.fetch_since = AsyncMock(return_value=[RawRecord(data="a")])
        second = MagicMock()
        second.name = "cim"
        second.fetch_since = AsyncMock(return_value=[])

        source = FallbackLogSource([first, second])
        records = await source.fetch_since(None, 10, timedelta(hours=1))
        assert len(records) == 1
        assert source.last_strategy == "wevtutil"
        second.fetch_since.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_through_on_failure(self):
        first = MagicMock()
        first.name = "wevtutil"
        first.fetch_since = AsyncMock(side_effect=PermissionDenied("access denied"))
        second = MagicMock()
        second.name = "cim"
        second.fetch_since = AsyncMock(return_value=[RawRecord(data="b", fmt="text")])

        source = FallbackLogSource([first, second])
        records = await source.fetch_since(None, 10, timedelta(hours=1))
        assert records[0].data == "b"
        assert source.last_strategy == "cim"

    @pytest.mark.asyncio
    async def test_all_fail_raises_source_unavailable(self):
        first = MagicMock()
        first.name = "wevtutil"
        first.fetch_since = AsyncMock(side_effect=CommandError("exit 1"))
        second = MagicMock()
        second.name = "cim"
        second.fetch_since = AsyncMock(side_effect=ValueError("bad json"))

        with pytest.raises(SourceUnavailable) as exc_info:
            await FallbackLogSource([first, second]).fetch_since(None, 10, timedelta(hours=1))
        assert "wevtutil" in str(exc_info.value)
        assert "cim" in str(exc_info.value)
