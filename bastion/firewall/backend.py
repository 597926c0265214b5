"""Firewall backends: read and write one named block rule's remote-address list.

``PowerShellFirewallBackend`` drives the Windows NetSecurity cmdlets. Every
address and rule name is validated before it is interpolated into the
PowerShell script. Scripts are written to PowerShell's stdin (``-Command -``)
rather than the command line, whose 32,767-character limit a large block rule
would exceed.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from ..utils.commands import CommandRunner
from ..utils.input_validators import validate_ip_list, validate_rule_name
from ..utils.logging import get_logger
from .addresses import normalize_entry, validate_entry

logger = get_logger("firewall.backend")

POWERSHELL_ARGS = ("powershell", "-NoProfile", "-NonInteractive", "-Command", "-")

INBOUND = "Inbound"
OUTBOUND = "Outbound"
DIRECTIONS = (INBOUND, OUTBOUND)


@dataclass
class FirewallRuleState:
    name: str
    enabled: bool = True
    action: str = "Block"
    addresses: list[str] = field(default_factory=list)


class FirewallBackend(ABC):
    """Minimal rule API the reconciler needs. Implementations raise ``CommandError``."""

    @abstractmethod
    async def get_rule(self, name: str) -> Optional[FirewallRuleState]:
        """Current state of the rule, or None if it does not exist."""
        ...

    @abstractmethod
    async def create_rule(self, name: str, direction: str, addresses: list[str]) -> None:
        ...

    @abstractmethod
    async def set_addresses(self, name: str, addresses: list[str]) -> None:
        """Replace the rule's remote-address list.

        ``addresses`` is never empty and may carry subnet, range or keyword
        entries read back from the rule.
        """
        ...

    @abstractmethod
    async def delete_rule(self, name: str) -> None:
        ...


def wrap_script(script: str) -> str:
    """Make any error terminating and turn it into a non-zero exit with the message on stderr.

    In ``-Command -`` mode PowerShell reads one statement per line, so the
    wrapped script is kept on a single line.
    """
    return (
        "$ErrorActionPreference = 'Stop'; "
        f"try {{ {script} }} "
        "catch { [Console]::Error.WriteLine($_.Exception.Message); exit 1 }\n"
    )


def _quote(value: str) -> str:
    return "'" + value + "'"


def _address_array(addresses: list[str]) -> str:
    return "@(" + ",".join(_quote(a) for a in addresses) + ")"


class PowerShellFirewallBackend(FirewallBackend):
    """Windows Defender Firewall via ``Get/New/Set/Remove-NetFirewallRule``."""

    def __init__(self, runner: CommandRunner | None = None, timeout: float = 15,
                 retries: int = 3, retry_delay: float = 1.0):
        self._runner = runner or CommandRunner()
        self._timeout = timeout
        self._retries = retries
        self._retry_delay = retry_delay

    async def _powershell(self, script: str) -> str:
        return await self._runner.run_with_retry(
            list(POWERSHELL_ARGS),
            timeout=self._timeout,
            retries=self._retries,
            delay=self._retry_delay,
            input=wrap_script(script),
        )

    @staticmethod
    def get_rule_script(name: str) -> str:
        name = validate_rule_name(name)
        return (
            f"$r = Get-NetFirewallRule -DisplayName {_quote(name)} -ErrorAction SilentlyContinue "
            "| Select-Object -First 1; "
            "if (-not $r) { 'null' } else { "
            "$f = $r | Get-NetFirewallAddressFilter; "
            "[pscustomobject]@{Enabled=[string]$r.Enabled; Action=[string]$r.Action; "
            "RemoteAddress=@($f.RemoteAddress)} | ConvertTo-Json -Compress }"
        )

    @staticmethod
    def parse_rule(name: str, output: str) -> Optional[FirewallRuleState]:
        output = (output or "").strip()
        if not output or output == "null":
            return None
        data = json.loads(output)
        remote = data.get("RemoteAddress") or []
        if isinstance(remote, str):
            remote = [remote]
        addresses = []
        for value in remote:
            for part in str(value).split(","):
                normalized = normalize_entry(part)
                if normalized and normalized not in addresses:
                    addresses.append(normalized)
        return FirewallRuleState(
            name=name,
            enabled=str(data.get("Enabled", "")).lower() in ("true", "1"),
            action=str(data.get("Action") or ""),
            addresses=addresses,
        )

    async def get_rule(self, name):
        output = await self._powershell(self.get_rule_script(name))
        return self.parse_rule(name, output)

    async def create_rule(self, name, direction, addresses):
        name = validate_rule_name(name)
        if direction not in DIRECTIONS:
            raise ValueError(f"Invalid direction: {direction!r}")
        addresses = validate_ip_list(addresses)
        if not addresses:
            raise ValueError("refusing to create a block rule without addresses")
        await self._powershell(
            f"New-NetFirewallRule -DisplayName {_quote(name)} -Direction {direction} "
            f"-Action Block -Enabled True -RemoteAddress {_address_array(addresses)} | Out-Null"
        )
        logger.info("firewall_rule_created", rule=name, direction=direction, addresses=len(addresses))

    async def set_addresses(self, name, addresses):
        name = validate_rule_name(name)
        addresses = list(dict.fromkeys(validate_entry(a) for a in addresses))
        if not addresses:
            # An empty RemoteAddress means Any, which would block all traffic
            raise ValueError("refusing to set an empty remote address list")
        await self._powershell(
            f"Set-NetFirewallRule -DisplayName {_quote(name)} "
            f"-RemoteAddress {_address_array(addresses)} -Enabled True"
        )
        logger.info("firewall_rule_updated", rule=name, addresses=len(addresses))

    async def delete_rule(self, name):
        name = validate_rule_name(name)
        await self._powershell(
            f"Remove-NetFirewallRule -DisplayName {_quote(name)} -ErrorAction SilentlyContinue"
        )
        logger.info("firewall_rule_deleted", rule=name)
