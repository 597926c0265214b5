"""Firewall reconciler: keep the Inbound/Outbound block rules a superset of the desired set.

Blocking is additive only. Each direction is reconciled independently under
its own lock: the current address list is read immediately before the write,
and nothing is written when the rule already covers every requested address.
Coverage is by containment: a subnet or range entry Windows reports back covers
the hosts inside it. Addresses leave a rule only through ``remove_ip`` /
``remove_multiple``, which split a subnet or range around a removed host.
"""

import asyncio
from typing import Iterable

from ..bridge.contracts import DirectionResult, FirewallStats, ReconcileResult, UnblockResult
from ..errors import CommandError, ErrorKind, PermissionDenied
from ..utils.input_validators import validate_ip_list, validate_rule_name
from ..utils.logging import get_logger
from .addresses import covers, subtract
from .backend import DIRECTIONS, INBOUND, OUTBOUND, FirewallBackend

logger = get_logger("firewall.reconciler")

DEFAULT_RULE_NAME = "Bastion Blocked IPs"


def _failure(direction: str, error: Exception) -> DirectionResult:
    kind = error.kind if isinstance(error, CommandError) else ErrorKind.FIREWALL_FAILURE
    if isinstance(error, PermissionDenied):
        logger.error("firewall_permission_denied", direction=direction, error=str(error))
    else:
        logger.warning("firewall_direction_failed", direction=direction, error=str(error), error_kind=kind.value)
    return DirectionResult(direction=direction, success=False, error=str(error), error_kind=kind)


def _first_error(results: dict[str, DirectionResult]) -> tuple[str | None, ErrorKind | None]:
    for result in results.values():
        if not result.success:
            return f"{result.direction}: {result.error}", result.error_kind
    return None, None


class FirewallReconciler:
    def __init__(self, backend: FirewallBackend, rule_name: str = DEFAULT_RULE_NAME):
        self._backend = backend
        self._rule_name = validate_rule_name(rule_name)
        self._locks = {direction: asyncio.Lock() for direction in DIRECTIONS}

    def rule_name(self, direction: str) -> str:
        return f"{self._rule_name} {direction}"

    async def _current(self, direction: str) -> list[str]:
        rule = await self._backend.get_rule(self.rule_name(direction))
        return list(rule.addresses) if rule else []

    async def get_blocked_ips(self) -> dict[str, list[str]]:
        """Address lists of both rules plus their ordered union. Raises ``CommandError``."""
        inbound = await self._current(INBOUND)
        outbound = await self._current(OUTBOUND)
        union = list(dict.fromkeys(inbound + outbound))
        return {"inbound": inbound, "outbound": outbound, "union": union}

    async def get_stats(self) -> FirewallStats:
        inbound = await self._backend.get_rule(self.rule_name(INBOUND))
        outbound = await self._backend.get_rule(self.rule_name(OUTBOUND))
        return FirewallStats(
            inbound_exists=inbound is not None,
            inbound_enabled=bool(inbound and inbound.enabled),
            outbound_exists=outbound is not None,
            outbound_enabled=bool(outbound and outbound.enabled),
        )

    # --- Blocking ---

    async def block_all(self, ips: Iterable[str]) -> ReconcileResult:
        """Merge ``ips`` into both rules. Never removes an address."""
        try:
            desired = validate_ip_list(ips)
        except ValueError as e:
            return ReconcileResult(success=False, error=str(e), error_kind=ErrorKind.INVALID_INPUT)

        results: dict[str, DirectionResult] = {}
        final: dict[str, list[str]] = {}
        for direction in DIRECTIONS:
            results[direction], final[direction] = await self._block_direction(direction, desired)

        newly_blocked = list(dict.fromkeys(
            ip for r in results.values() for ip in r.added
        ))
        # A failed direction's address list is unknown, so it does not count
        total = len(set().union(*(final[d] for d in DIRECTIONS if results[d].success)))
        error, error_kind = _first_error(results)
        success = error is None
        logger.info(
            "firewall_reconciled",
            success=success,
            requested=len(desired),
            newly_blocked=len(newly_blocked),
            total_blocked=total,
        )
        return ReconcileResult(
            success=success,
            newly_blocked=newly_blocked,
            total_blocked=total,
            error=error,
            error_kind=error_kind,
            directions=results,
        )

    async def _block_direction(self, direction: str, desired: list[str]) -> tuple[DirectionResult, list[str]]:
        name = self.rule_name(direction)
        current: list[str] = []
        async with self._locks[direction]:
            try:
                rule = await self._backend.get_rule(name)
                if rule is None:
                    if not desired:
                        return DirectionResult(direction=direction, success=True), []
                    await self._backend.create_rule(name, direction, desired)
                    return DirectionResult(
                        direction=direction, success=True, created=True, added=list(desired), total=len(desired)
                    ), list(desired)

                current = list(rule.addresses)
                to_add = [ip for ip in desired if not covers(current, ip)]
                if not to_add:
                    return DirectionResult(direction=direction, success=True, total=len(current)), current
                merged = current + to_add
                await self._backend.set_addresses(name, merged)
                return DirectionResult(
                    direction=direction, success=True, added=to_add, total=len(merged)
                ), merged
            except (CommandError, ValueError) as e:
                return _failure(direction, e), current

    # --- Unblocking ---

    async def remove_ip(self, ip: str) -> UnblockResult:
        return await self.remove_multiple([ip])

    async def remove_multiple(self, ips: Iterable[str]) -> UnblockResult:
        """Drop ``ips`` from both rules. Removing an absent address succeeds."""
        try:
            targets = validate_ip_list(ips)
        except ValueError as e:
            return UnblockResult(success=False, error=str(e), error_kind=ErrorKind.INVALID_INPUT)

        results = {}
        for direction in DIRECTIONS:
            results[direction] = await self._remove_direction(direction, targets)

        removed = list(dict.fromkeys(ip for r in results.values() for ip in r.removed))
        error, error_kind = _first_error(results)
        logger.info("firewall_ips_removed", success=error is None, requested=len(targets), removed=len(removed))
        return UnblockResult(
            success=error is None,
            removed=removed,
            error=error,
            error_kind=error_kind,
            directions=results,
        )

    async def _remove_direction(self, direction: str, targets: list[str]) -> DirectionResult:
        name = self.rule_name(direction)
        async with self._locks[direction]:
            try:
                rule = await self._backend.get_rule(name)
                if rule is None:
                    return DirectionResult(direction=direction, success=True)
                remaining, removed = subtract(rule.addresses, targets)
                if remaining:
                    await self._backend.set_addresses(name, remaining)
                else:
                    await self._backend.delete_rule(name)
                return DirectionResult(direction=direction, success=True, removed=removed, total=len(remaining))
            except (CommandError, ValueError) as e:
                return _failure(direction, e)
