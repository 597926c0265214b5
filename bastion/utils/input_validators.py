"""The Checkpoint: validates every value before it reaches a command line.

Prevents command injection by rejecting shell metacharacters and enforcing
strict formats for addresses and rule names.
"""

import ipaddress
import re

from . import ip_validator

# Shell metacharacters that must never reach subprocess
_SHELL_META = re.compile(r'[;|&`$<>{}()\n\r"\']')

# Firewall display names: letters, digits, spaces, dots, underscores, hyphens
_RULE_NAME_RE = re.compile(r"^[a-zA-Z0-9 ._-]{1,200}$")


def validate_ip_address(value: str) -> str:
    """Validate and return a normalized IPv4 address string.

    Raises ValueError if the input is not a dotted-quad IPv4 address.
    """
    if not isinstance(value, str) or not ip_validator.is_valid(value):
        raise ValueError(f"Invalid IP address: {value!r}")
    return ip_validator.normalize(value)


def validate_ip_or_cidr(value: str) -> str:
    """Validate an allowlist address: a plain IPv4 address or an IPv4 CIDR block."""
    value = (value or "").strip()
    if "/" not in value:
        return validate_ip_address(value)
    try:
        network = ipaddress.IPv4Network(value, strict=False)
    except ValueError:
        raise ValueError(f"Invalid CIDR block: {value!r}")
    return str(network)


def validate_ip_list(values) -> list[str]:
    """Validate a batch of addresses, preserving first-seen order and dropping duplicates."""
    seen: dict[str, None] = {}
    for value in values:
        seen[validate_ip_address(value)] = None
    return list(seen)


def validate_rule_name(value: str) -> str:
    """Validate a firewall rule display name (no shell metacharacters, max 200)."""
    if _SHELL_META.search(value) or not _RULE_NAME_RE.match(value):
        raise ValueError(f"Invalid firewall rule name: {value!r}")
    return value
