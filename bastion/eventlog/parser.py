"""Event parser: one raw Security log record -> ``LogonFailureEvent``.

The 4625 rendering is not contractually stable (it varies by OS build and
locale), so every secondary field is looked up independently and defaults to
``"Unknown"``. Only a missing or non-actionable source IP rejects a record.
"""

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..utils import ip_validator
from ..utils.logging import get_logger
from ..utils.timeutil import parse_timestamp, utcnow
from .source import EVENT_ID_FAILED_LOGON, RawRecord

logger = get_logger("eventlog.parser")

UNKNOWN = "Unknown"

# Default namespace declaration; wevtutil quotes it with single quotes
_XMLNS_RE = re.compile(r"""\sxmlns=(['"]).*?\1""")

# Text-rendering labels, in lookup order
_TIMESTAMP_LABELS = ("Date and Time", "TimeCreated", "TimeGenerated", "Date")
_IP_FIELD_LABELS = ("IpAddress", "Ip Address")
_NAMED_IP_LABELS = ("Source Network Address", "Source IP", "Network Address", "Client Address")
_USERNAME_LABELS = ("Account Name",)
_DOMAIN_LABELS = ("Account Domain",)
_WORKSTATION_LABELS = ("Workstation Name", "Workstation")
_LOGON_TYPE_LABELS = ("Logon Type",)
_FAILURE_REASON_LABELS = ("Failure Reason",)
_STATUS_LABELS = ("Sub Status", "Status")

# The section naming the account that failed to log on; "Subject" names the
# caller, which is usually NULL SID for network logons.
_TARGET_ACCOUNT_SECTION = "Account For Which Logon Failed"

_MISSING_VALUES = {"", "-", "null", "n/a", "none"}

# %%-style message references used in the FailureReason data field
FAILURE_REASON_MESSAGES = {
    "%%2304": "An Error occured during Logon.",
    "%%2305": "The specified user account has expired.",
    "%%2306": "The NetLogon component is not active.",
    "%%2307": "Account locked out.",
    "%%2308": "The user has not been granted the requested logon type at this machine.",
    "%%2309": "The specified account's password has expired.",
    "%%2310": "Account currently disabled.",
    "%%2311": "Account logon time restriction violation.",
    "%%2312": "User not allowed to logon at this computer.",
    "%%2313": "Unknown user name or bad password.",
}

# NTSTATUS codes in Status / SubStatus
NTSTATUS_MESSAGES = {
    "0xc0000064": "User name does not exist.",
    "0xc000006a": "User name is correct but the password is wrong.",
    "0xc000006d": "Bad user name or authentication information.",
    "0xc000006e": "Account restriction.",
    "0xc000006f": "User tried to logon outside authorized hours.",
    "0xc0000070": "Workstation restriction.",
    "0xc0000071": "Password has expired.",
    "0xc0000072": "Account is currently disabled.",
    "0xc000005e": "No logon servers available.",
    "0xc0000133": "Clocks between DC and other computer too far out of sync.",
    "0xc000015b": "The user has not been granted the requested logon type.",
    "0xc0000192": "NetLogon service was not started.",
    "0xc0000193": "Account has expired.",
    "0xc0000224": "User is required to change password at next logon.",
    "0xc0000234": "Account is currently locked out.",
    "0xc0000413": "Authentication firewall: machine not allowed.",
}

LOGON_TYPE_NAMES = {
    "2": "Interactive (Console)",
    "3": "Network (SMB/RDP-NLA)",
    "4": "Batch",
    "5": "Service",
    "7": "Unlock",
    "8": "NetworkCleartext",
    "9": "NewCredentials",
    "10": "RemoteInteractive (RDP)",
    "11": "CachedInteractive",
}


@dataclass
class LogonFailureEvent:
    timestamp: datetime
    source_ip: Optional[str]
    username: str = UNKNOWN
    domain: str = UNKNOWN
    workstation: str = UNKNOWN
    logon_type: str = UNKNOWN
    failure_reason: str = UNKNOWN
    event_id: int = EVENT_ID_FAILED_LOGON
    event_record_id: Optional[int] = None
    raw: str = ""


def logon_type_name(logon_type: Optional[str]) -> Optional[str]:
    """Map a Windows logon type number to a readable name; None for a missing or non-numeric type."""
    if not logon_type or not str(logon_type).isdigit():
        return None
    return LOGON_TYPE_NAMES.get(str(logon_type), f"Type {logon_type}")


def _present(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return None if value.lower() in _MISSING_VALUES else value


def describe_status(code: Optional[str]) -> Optional[str]:
    code = _present(code)
    if not code or code.lower() == "0x0":
        return None
    return NTSTATUS_MESSAGES.get(code.lower(), code)


class EventParser:
    """Converts raw 4625 records into ``LogonFailureEvent`` objects."""

    def __init__(self, raw_limit: int = 4000):
        self._raw_limit = raw_limit

    def parse(self, record: RawRecord) -> Optional[LogonFailureEvent]:
        """Parse one record. Returns None when it carries no actionable source IP."""
        data = record.data or ""
        is_xml = record.fmt == "xml" or data.lstrip().startswith("<")
        try:
            fields = self._xml_fields(data) if is_xml else self._text_fields(data)
        except ET.ParseError as e:
            logger.debug("event_xml_parse_error", error=str(e))
            fields = self._text_fields(data)
        if fields is None:
            return None

        source_ip = self._extract_ip(fields, data)
        if source_ip is None or not ip_validator.is_valid(source_ip):
            return None
        source_ip = ip_validator.normalize(source_ip)
        if not ip_validator.is_routable(source_ip):
            return None

        timestamp = parse_timestamp(fields.get("timestamp")) or record.timestamp or utcnow()

        return LogonFailureEvent(
            timestamp=timestamp,
            source_ip=source_ip,
            username=fields.get("username") or UNKNOWN,
            domain=fields.get("domain") or UNKNOWN,
            workstation=fields.get("workstation") or UNKNOWN,
            logon_type=fields.get("logon_type") or UNKNOWN,
            failure_reason=fields.get("failure_reason") or UNKNOWN,
            event_record_id=fields.get("record_id") or record.record_id,
            raw=data[: self._raw_limit],
        )

    # --- IP extraction ---

    @staticmethod
    def _extract_ip(fields: dict, data: str) -> Optional[str]:
        """Explicit IP field, then named address fields, then the first IPv4 token anywhere."""
        explicit = fields.get("ip_field")
        if explicit and ip_validator.is_valid(explicit):
            return explicit
        for candidate in fields.get("named_ips", []):
            if candidate and ip_validator.is_valid(candidate):
                return candidate
        return ip_validator.find_first(data)

    # --- XML rendering ---

    def _xml_fields(self, data: str) -> Optional[dict]:
        root = ET.fromstring(_XMLNS_RE.sub("", data, count=1))
        system = root.find("System")
        event_data: dict[str, str] = {}
        for container in ("EventData", "UserData"):
            node = root.find(container)
            if node is None:
                continue
            for elem in node.iter("Data"):
                name = elem.get("Name", "")
                if name:
                    event_data[name] = elem.text or ""

        fields: dict = {"named_ips": []}
        if system is not None:
            event_id = system.findtext("EventID")
            if event_id and event_id.strip().isdigit() and int(event_id) != EVENT_ID_FAILED_LOGON:
                return None
            time_elem = system.find("TimeCreated")
            if time_elem is not None:
                fields["timestamp"] = time_elem.get("SystemTime")
            record_id = system.findtext("EventRecordID")
            if record_id and record_id.strip().isdigit():
                fields["record_id"] = int(record_id)

        fields["ip_field"] = _present(event_data.get("IpAddress"))
        for name in ("SourceNetworkAddress", "SourceIP", "NetworkAddress", "ClientAddress"):
            value = _present(event_data.get(name))
            if value:
                fields["named_ips"].append(value)

        fields["username"] = _present(event_data.get("TargetUserName"))
        fields["domain"] = _present(event_data.get("TargetDomainName"))
        fields["workstation"] = _present(event_data.get("WorkstationName"))
        fields["logon_type"] = _present(event_data.get("LogonType"))

        reason = _present(event_data.get("FailureReason"))
        if reason:
            reason = FAILURE_REASON_MESSAGES.get(reason, reason)
        fields["failure_reason"] = (
            reason
            or describe_status(event_data.get("SubStatus"))
            or describe_status(event_data.get("Status"))
        )
        return fields

    # --- Text rendering ---

    def _text_fields(self, data: str) -> dict:
        lines = [line.strip() for line in data.splitlines()]
        target_lines = self._section(lines, _TARGET_ACCOUNT_SECTION)

        fields: dict = {"named_ips": []}
        fields["timestamp"] = self._field(lines, _TIMESTAMP_LABELS)
        fields["ip_field"] = self._field(lines, _IP_FIELD_LABELS)
        for label in _NAMED_IP_LABELS:
            value = self._field(lines, (label,))
            if value:
                fields["named_ips"].append(value)

        fields["username"] = self._field(target_lines, _USERNAME_LABELS) or self._field(lines, _USERNAME_LABELS)
        fields["domain"] = self._field(target_lines, _DOMAIN_LABELS) or self._field(lines, _DOMAIN_LABELS)
        fields["workstation"] = self._field(lines, _WORKSTATION_LABELS)
        fields["logon_type"] = self._field(lines, _LOGON_TYPE_LABELS)
        fields["failure_reason"] = (
            self._field(lines, _FAILURE_REASON_LABELS)
            or describe_status(self._field(lines, _STATUS_LABELS))
        )

        record_id = self._field(lines, ("Record Number", "EventRecordID"))
        if record_id and record_id.isdigit():
            fields["record_id"] = int(record_id)
        return fields

    @staticmethod
    def _field(lines: list[str], labels: tuple[str, ...]) -> Optional[str]:
        """Value of the first ``Label: value`` line for any of ``labels``."""
        for label in labels:
            prefix = f"{label}:"
            for line in lines:
                if line.startswith(prefix):
                    value = _present(line[len(prefix):])
                    if value:
                        return value
        return None

    @staticmethod
    def _section(lines: list[str], header: str) -> list[str]:
        """Lines after ``header:`` up to the next blank line."""
        try:
            start = lines.index(f"{header}:") + 1
        except ValueError:
            return []
        section = []
        for line in lines[start:]:
            if not line:
                break
            section.append(line)
        return section
