"""Remote-address entries as Windows Firewall reports and accepts them.

A rule's RemoteAddress list can hold single hosts, subnets in prefix or mask
form (``203.0.113.0/255.255.255.0``), ``first-last`` ranges, IPv6 forms and
keywords such as ``LocalSubnet``. Only IPv4 forms take part in coverage
checks; every other valid entry is written back unchanged.
"""

import ipaddress
from typing import Iterable, Optional

# Values Get-NetFirewallAddressFilter reports for "no address restriction"
_ANY_ADDRESS = {"any", "*", ""}
_HOST_SUFFIXES = ("/32", "/255.255.255.255")

KEYWORDS = frozenset({
    "localsubnet", "dns", "dhcp", "wins", "defaultgateway",
    "internet", "intranet", "intranetremoteaccess", "playtodevice",
})


def normalize_entry(value: str) -> Optional[str]:
    """Strip a host suffix (``/32``); None for the Any wildcard."""
    value = (value or "").strip()
    if value.lower() in _ANY_ADDRESS:
        return None
    for suffix in _HOST_SUFFIXES:
        if value.endswith(suffix):
            return value[: -len(suffix)]
    return value


def ipv4_span(entry: str) -> Optional[tuple[int, int]]:
    """Inclusive integer bounds of an IPv4 host, subnet or range; None otherwise."""
    entry = (entry or "").strip()
    try:
        if "-" in entry:
            first, last = (int(ipaddress.IPv4Address(p.strip())) for p in entry.split("-", 1))
            return (first, last) if first <= last else None
        if "/" in entry:
            network = ipaddress.IPv4Network(entry, strict=False)
            return int(network.network_address), int(network.broadcast_address)
        address = int(ipaddress.IPv4Address(entry))
    except ValueError:
        return None
    return address, address


def validate_entry(entry: str) -> str:
    """Accept any address form Windows Firewall takes; raise ValueError otherwise.

    The accepted grammar contains no quotes or shell metacharacters, so a valid
    entry is safe to place inside a single-quoted PowerShell string.
    """
    value = (entry or "").strip() if isinstance(entry, str) else ""
    if value.lower() in KEYWORDS or ipv4_span(value) is not None:
        return value
    try:
        ipaddress.ip_network(value, strict=False)
        return value
    except ValueError:
        pass
    if "-" in value:
        try:
            for part in value.split("-", 1):
                ipaddress.ip_address(part.strip())
            return value
        except ValueError:
            pass
    raise ValueError(f"Invalid remote address entry: {entry!r}")


def covers(entries: Iterable[str], ip: str) -> bool:
    """True if any entry (host, subnet or range) contains ``ip``."""
    value = int(ipaddress.IPv4Address(ip))
    for entry in entries:
        span = ipv4_span(entry)
        if span is not None and span[0] <= value <= span[1]:
            return True
    return False


def _format_span(first: int, last: int) -> str:
    if first == last:
        return str(ipaddress.IPv4Address(first))
    return f"{ipaddress.IPv4Address(first)}-{ipaddress.IPv4Address(last)}"


def subtract(entries: Iterable[str], ips: Iterable[str]) -> tuple[list[str], list[str]]:
    """Remove ``ips`` from ``entries``.

    An entry that does not contain any target is kept verbatim. A subnet or
    range that contains one is split into the ranges left on either side.

    Returns ``(remaining, removed)``.
    """
    targets = sorted({int(ipaddress.IPv4Address(ip)) for ip in ips})
    remaining: list[str] = []
    removed: list[str] = []
    for entry in entries:
        span = ipv4_span(entry)
        hits = [t for t in targets if span is not None and span[0] <= t <= span[1]]
        if not hits:
            remaining.append(entry)
            continue
        start = span[0]
        for target in hits:
            removed.append(str(ipaddress.IPv4Address(target)))
            if start < target:
                remaining.append(_format_span(start, target - 1))
            start = target + 1
        if start <= span[1]:
            remaining.append(_format_span(start, span[1]))
    return remaining, list(dict.fromkeys(removed))
