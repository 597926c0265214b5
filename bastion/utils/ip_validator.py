"""IPv4 predicates used to accept detections and drop private traffic noise."""

import ipaddress
import re

_OCTET = r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"

IPV4_RE = re.compile(rf"^(?:{_OCTET}\.){{3}}{_OCTET}$")

# Unanchored form for scanning free text; the lookarounds stop a match from
# starting or ending in the middle of a longer digit run.
IPV4_TOKEN_RE = re.compile(rf"(?<!\d)(?<!\d\.)(?:{_OCTET}\.){{3}}{_OCTET}(?!\d|\.\d)")

NON_ROUTABLE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("169.254.0.0/16"),
)


def normalize(candidate: str) -> str:
    """Strip whitespace and leading zeros from each octet: ``010.1.1.1`` -> ``10.1.1.1``."""
    return ".".join(str(int(part)) for part in candidate.strip().split("."))


def is_valid(candidate) -> bool:
    """True iff ``candidate`` is a dotted-quad IPv4 address with octets in 0..255."""
    if not isinstance(candidate, str):
        return False
    return bool(IPV4_RE.match(candidate.strip()))


def is_routable(candidate) -> bool:
    """Valid, not private/loopback/link-local, and not exactly 0.0.0.0."""
    if not is_valid(candidate):
        return False
    addr = ipaddress.IPv4Address(normalize(candidate))
    if addr == ipaddress.IPv4Address("0.0.0.0"):
        return False
    return not any(addr in net for net in NON_ROUTABLE_NETWORKS)


def find_first(text: str) -> str | None:
    """Return the first IPv4-looking token in ``text``, if any."""
    match = IPV4_TOKEN_RE.search(text or "")
    return match.group(0) if match else None
