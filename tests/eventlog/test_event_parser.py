"""Tests for EventParser over XML and text renderings of Event 4625."""

from datetime import datetime, timezone

import pytest

from bastion.eventlog.parser import EventParser, UNKNOWN, describe_status, logon_type_name
from bastion.eventlog.source import RawRecord

TEXT_EVENT = """Date and Time: 2024-05-01T10:15:30.0000000Z
An account failed to log on.

Subject:
\tSecurity ID:\t\tNULL SID
\tAccount Name:\t\t-
\tAccount Domain:\t\t-
\tLogon ID:\t\t0x0

Logon Type:\t\t\t10

Account For Which Logon Failed:
\tSecurity ID:\t\tNULL SID
\tAccount Name:\t\tadmin
\tAccount Domain:\t\tCORP

Failure Information:
\tFailure Reason:\t\tUnknown user name or bad password.
\tStatus:\t\t\t0xC000006D
\tSub Status:\t\t0xC000006A

Network Information:
\tWorkstation Name:\tKALI
\tSource Network Address:\t198.51.100.23
\tSource Port:\t\t50123
"""


@pytest.fixture
def parser():
    return EventParser()


class TestXmlParsing:
    def test_full_event(self, parser, make_event_xml):
        ts = datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
        record = RawRecord(data=make_event_xml("203.0.113.10", ts, record_id=42), fmt="xml")
        event = parser.parse(record)

        assert event is not None
        assert event.source_ip == "203.0.113.10"
        assert event.timestamp == ts
        assert event.username == "administrator"
        assert event.domain == "WORKGROUP"
        assert event.workstation == "KALI"
        assert event.logon_type == "3"
        assert event.failure_reason == "Unknown user name or bad password."
        assert event.event_record_id == 42

    def test_private_source_is_rejected(self, parser, make_event_xml):
        record = RawRecord(data=make_event_xml("192.168.1.50", datetime.now(timezone.utc)), fmt="xml")
        assert parser.parse(record) is None

    def test_missing_ip_is_rejected(self, parser, make_event_xml):
        record = RawRecord(data=make_event_xml("-", datetime.now(timezone.utc)), fmt="xml")
        assert parser.parse(record) is None

    def test_other_event_ids_are_rejected(self, parser, make_event_xml):
        data = make_event_xml("203.0.113.10", datetime.now(timezone.utc)).replace(
            "<EventID>4625</EventID>", "<EventID>4624</EventID>"
        )
        assert parser.parse(RawRecord(data=data, fmt="xml")) is None

    def test_status_code_used_when_failure_reason_missing(self, parser):
        data = (
            "<Event xmlns=\"http://schemas.microsoft.com/win/2004/08/events/event\"><System>"
            "<EventID>4625</EventID><TimeCreated SystemTime=\"2024-05-01T10:00:00Z\"/></System>"
            "<EventData><Data Name=\"IpAddress\">203.0.113.99</Data>"
            "<Data Name=\"SubStatus\">0xC0000234</Data></EventData></Event>"
        )
        event = parser.parse(RawRecord(data=data, fmt="xml"))
        assert event.failure_reason == "Account is currently locked out."
        assert event.username == UNKNOWN
        assert event.workstation == UNKNOWN

    def test_malformed_xml_falls_back_to_text_scan(self, parser):
        record = RawRecord(data="<Event><broken Source IP: 203.0.113.5", fmt="xml")
        event = parser.parse(record)
        assert event is not None
        assert event.source_ip == "203.0.113.5"


class TestTextParsing:
    def test_target_account_wins_over_subject(self, parser):
        event = parser.parse(RawRecord(data=TEXT_EVENT, fmt="text"))

        assert event.source_ip == "198.51.100.23"
        assert event.username == "admin"
        assert event.domain == "CORP"
        assert event.logon_type == "10"
        assert event.workstation == "KALI"
        assert event.failure_reason == "Unknown user name or bad password."
        assert event.timestamp == datetime(2024, 5, 1, 10, 15, 30, tzinfo=timezone.utc)

    def test_named_field_order(self, parser):
        data = "Client Address: 203.0.113.1\nSource IP: 203.0.113.2\n"
        assert parser.parse(RawRecord(data=data, fmt="text")).source_ip == "203.0.113.2"

    def test_bare_regex_fallback(self, parser):
        data = "Something happened from 203.0.113.77 at night"
        assert parser.parse(RawRecord(data=data, fmt="text")).source_ip == "203.0.113.77"

    def test_timestamp_defaults_to_record_then_now(self, parser):
        record_ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        event = parser.parse(RawRecord(data="Source IP: 203.0.113.8", fmt="text", timestamp=record_ts))
        assert event.timestamp == record_ts

        before = datetime.now(timezone.utc)
        event = parser.parse(RawRecord(data="Source IP: 203.0.113.8", fmt="text"))
        assert event.timestamp >= before

    def test_every_secondary_field_defaults_to_unknown(self, parser):
        event = parser.parse(RawRecord(data="Source Network Address: 203.0.113.9", fmt="text"))
        for name in ("username", "domain", "workstation", "logon_type", "failure_reason"):
            assert getattr(event, name) == UNKNOWN

    def test_no_ip_anywhere(self, parser):
        assert parser.parse(RawRecord(data="Source Network Address: -", fmt="text")) is None


def test_logon_type_name():
    assert logon_type_name("10") == "RemoteInteractive (RDP)"
    assert logon_type_name("3") == "Network (SMB/RDP-NLA)"
    assert logon_type_name("99") == "Type 99"
    assert logon_type_name("Unknown") is None
    assert logon_type_name(None) is None


def test_describe_status():
    assert describe_status("0xC000006A") == "User name is correct but the password is wrong."
    assert describe_status("0x0") is None
    assert describe_status("-") is None
    assert describe_status("0xDEADBEEF") == "0xDEADBEEF"
