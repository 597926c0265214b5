"""Tests for the periodic Logon Guard module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from bastion.bridge.contracts import ReconcileResult, ScanResult
from bastion.errors import ErrorKind
from bastion.modules.logon_guard import LogonGuard


@pytest.fixture
def service():
    svc = MagicMock()
    svc.run_scan = AsyncMock(return_value=ScanResult(success=True))
    svc.pending_block_ips = AsyncMock(return_value=[])
    svc.reconcile_firewall = AsyncMock(return_value=ReconcileResult(success=True, newly_blocked=["203.0.113.1"]))
    return svc


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_scan_only_when_auto_block_off(self, service):
        service.run_scan.return_value = ScanResult(success=True, new_ips=["203.0.113.1"])
        guard = LogonGuard(service, auto_block=False)
        await guard.run_cycle()
        service.reconcile_firewall.assert_not_awaited()
        assert guard.cycles == 1
        assert guard.last_heartbeat is not None

    @pytest.mark.asyncio
    async def test_auto_block_chains_reconcile(self, service):
        service.run_scan.return_value = ScanResult(success=True, updated_ips=["203.0.113.1"])
        service.pending_block_ips.return_value = ["203.0.113.1"]
        guard = LogonGuard(service, auto_block=True)
        await guard.run_cycle()
        service.reconcile_firewall.assert_awaited_once_with()
        assert guard.last_reconcile.newly_blocked == ["203.0.113.1"]

    @pytest.mark.asyncio
    async def test_auto_block_skipped_without_pending_rows(self, service):
        service.run_scan.return_value = ScanResult(success=True, updated_ips=["203.0.113.1"])
        guard = LogonGuard(service, auto_block=True)
        await guard.run_cycle()
        service.reconcile_firewall.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_rows_reconciled_without_new_activity(self, service):
        # an earlier block failed; this scan saw nothing new
        service.pending_block_ips.return_value = ["203.0.113.1"]
        guard = LogonGuard(service, auto_block=True)
        await guard.run_cycle()
        service.reconcile_firewall.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_failed_scan_degrades(self, service):
        service.run_scan.return_value = ScanResult(
            success=False, error="access denied", error_kind=ErrorKind.SOURCE_UNAVAILABLE
        )
        guard = LogonGuard(service, auto_block=True)
        await guard.run_cycle()
        assert guard.failures == 1
        assert guard.health_status == "degraded"
        service.reconcile_firewall.assert_not_awaited()

        service.run_scan.return_value = ScanResult(success=True)
        await guard.run_cycle()
        assert guard.health_status == "running"

    @pytest.mark.asyncio
    async def test_failed_reconcile_counted(self, service):
        service.run_scan.return_value = ScanResult(success=True, new_ips=["203.0.113.1"])
        service.pending_block_ips.return_value = ["203.0.113.1"]
        service.reconcile_firewall.return_value = ReconcileResult(
            success=False, error="Inbound: access denied", error_kind=ErrorKind.FIREWALL_PERMISSION_DENIED
        )
        guard = LogonGuard(service, auto_block=True)
        await guard.run_cycle()
        assert guard.failures == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, service):
        guard = LogonGuard(service, interval=3600)
        await guard.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert guard.running
        assert service.run_scan.await_count == 1

        await guard.stop()
        assert not guard.running
        assert guard.health_status == "stopped"
        health = await guard.health_check()
        assert health["details"]["cycles"] == 1

    @pytest.mark.asyncio
    async def test_loop_survives_exceptions(self, service):
        calls = []

        async def scan():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return ScanResult(success=True)

        service.run_scan.side_effect = scan
        guard = LogonGuard(service, interval=0)
        await guard.start()
        for _ in range(10):
            await asyncio.sleep(0)
            if service.run_scan.await_count >= 2:
                break
        await guard.stop()
        assert service.run_scan.await_count >= 2
        assert guard.failures == 1

    def test_from_config(self, service, config):
        guard = LogonGuard.from_config(service, config)
        assert guard.name == "logon_guard"
        assert guard.get_status()["running"] is False
