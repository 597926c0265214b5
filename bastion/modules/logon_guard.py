"""Logon Guard — periodic failed-logon scanning with optional auto-blocking.

Every ``interval`` seconds the guard runs one scan through the service. When
auto-blocking is on and the scan touched any IP, it chains a firewall
reconciliation over the pending set. Errors in one cycle are logged and the
loop carries on.
"""

import asyncio
from typing import Optional

from ..bridge.contracts import ReconcileResult, ScanResult
from .base_module import BaseModule


class LogonGuard(BaseModule):
    def __init__(self, service, interval: float = 300, auto_block: bool = False):
        super().__init__(name="logon_guard")
        self._service = service
        self._interval = interval
        self._auto_block = auto_block
        self.cycles = 0
        self.failures = 0
        self.last_scan: Optional[ScanResult] = None
        self.last_reconcile: Optional[ReconcileResult] = None

    @classmethod
    def from_config(cls, service, config) -> "LogonGuard":
        return cls(service, interval=config.scan_interval_seconds, auto_block=config.scan_auto_block)

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.health_status = "running"
        self._spawn(self._loop())
        self.heartbeat()
        self.logger.info("logon_guard_started", interval=self._interval, auto_block=self._auto_block)

    async def stop(self) -> None:
        self.running = False
        await self._cancel()
        self.health_status = "stopped"
        self.logger.info("logon_guard_stopped", cycles=self.cycles)

    async def health_check(self) -> dict:
        return {
            "status": self.health_status,
            "details": {
                "cycles": self.cycles,
                "failures": self.failures,
                "interval_seconds": self._interval,
                "auto_block": self._auto_block,
                "last_scan_success": self.last_scan.success if self.last_scan else None,
                "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            },
        }

    async def _loop(self) -> None:
        while self.running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                self.health_status = "degraded"
                self.logger.error("logon_guard_cycle_error", error=str(e))
            await asyncio.sleep(self._interval)

    async def run_cycle(self) -> ScanResult:
        """One scan, plus a reconciliation when auto-blocking and detections still await a rule.

        Pending rows are checked every cycle so an IP whose earlier block failed
        is retried even when the scan found nothing new.
        """
        self.cycles += 1
        result = await self._service.run_scan()
        self.last_scan = result
        self.heartbeat()
        if not result.success:
            self.failures += 1
            self.health_status = "degraded"
            self.logger.warning("logon_guard_scan_failed", error=result.error, error_kind=result.error_kind)
            return result

        self.health_status = "running"
        if self._auto_block and await self._service.pending_block_ips():
            self.last_reconcile = await self._service.reconcile_firewall()
            if not self.last_reconcile.success:
                self.failures += 1
                self.logger.warning(
                    "logon_guard_auto_block_failed",
                    error=self.last_reconcile.error,
                    error_kind=self.last_reconcile.error_kind,
                )
            else:
                self.logger.info(
                    "logon_guard_auto_blocked",
                    newly_blocked=len(self.last_reconcile.newly_blocked),
                    total_blocked=self.last_reconcile.total_blocked,
                )
        return result
