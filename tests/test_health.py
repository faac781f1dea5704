"""
Tests for the Phoenix Health Monitor.

Tests cover:
- Redundancy classification
- Per-tick snapshots and alive counts
- One-way redundancy requests through the event channel
- The periodic loop
"""

from __future__ import annotations

import pytest

from phoenix.core.config import HealthConfig, SupervisorConfig
from phoenix.systems.process import (
    HealthMonitor,
    RedundancyLevel,
    WorkerStatus,
    WorkerSupervisor,
    classify_redundancy,
)


class TestClassification:
    """Test the redundancy classification function."""

    @pytest.mark.parametrize(
        "alive_count,expected",
        [
            (0, RedundancyLevel.CRITICAL),
            (1, RedundancyLevel.LOW),
            (2, RedundancyLevel.MEDIUM),
            (3, RedundancyLevel.HIGH),
            (8, RedundancyLevel.HIGH),
        ],
    )
    def test_classify_redundancy(self, alive_count, expected):
        assert classify_redundancy(alive_count) == expected

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            classify_redundancy(-1)


class TestHealthCheck:
    """Test single health ticks."""

    @pytest.mark.asyncio
    async def test_all_alive(self, supervisor, event_bus, health_config):
        monitor = HealthMonitor(health_config, supervisor, event_bus)
        await supervisor.start()

        report = await monitor.check_once()

        assert report.alive_count == 3
        assert report.level == RedundancyLevel.HIGH
        assert len(report.snapshots) == 3
        assert all(s.status == WorkerStatus.ALIVE for s in report.snapshots)
        assert event_bus.get_history("health.redundancy_low") == []
        assert monitor.last_report is report

    @pytest.mark.asyncio
    async def test_dead_worker_snapshot(self, supervisor, event_bus, health_config):
        monitor = HealthMonitor(health_config, supervisor, event_bus)
        await supervisor.start()

        # Exited, but the supervisor has not observed it yet
        supervisor.get_workers_by_id("w2")[0].process.exit(1)
        report = await monitor.check_once()

        statuses = {s.worker_id: s.status for s in report.snapshots}
        assert statuses["w2"] == WorkerStatus.DEAD
        assert report.alive_count == 2
        assert report.level == RedundancyLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_snapshot_carries_restart_count(self, supervisor, event_bus, health_config, wait_until):
        monitor = HealthMonitor(health_config, supervisor, event_bus)
        await supervisor.start()

        supervisor.get_workers_by_id("w0")[0].process.exit(1)
        await wait_until(lambda: any(r.restart_count == 1 for r in supervisor.workers))

        report = await monitor.check_once()
        restarts = {s.worker_id: s.restarts for s in report.snapshots}
        assert restarts["w0"] == 1

    @pytest.mark.asyncio
    async def test_low_redundancy_requests_standby(self, event_bus, launcher, health_config, wait_until):
        """aliveCount 1 -> LOW, and the supervisor adds a standby worker."""
        sup = WorkerSupervisor(
            SupervisorConfig(max_workers=4, initial_workers=["w0"]),
            event_bus,
            launcher,
        )
        monitor = HealthMonitor(health_config, sup, event_bus)
        await sup.start()

        report = await monitor.check_once()

        assert report.level == RedundancyLevel.LOW
        await wait_until(lambda: sup.pool_size == 2)
        assert any(r.id.startswith("backup-") for r in sup.workers)
        await sup.shutdown()

    @pytest.mark.asyncio
    async def test_one_request_per_tick_while_low(self, event_bus, launcher, health_config, wait_until):
        """While the pool cannot grow, every tick issues exactly one request."""
        sup = WorkerSupervisor(
            SupervisorConfig(max_workers=1, initial_workers=["w0"]),
            event_bus,
            launcher,
        )
        monitor = HealthMonitor(health_config, sup, event_bus)
        await sup.start()

        for _ in range(3):
            await monitor.check_once()

        assert len(event_bus.get_history("health.redundancy_low")) == 3
        await wait_until(lambda: sup.get_stats()["redundancy_requests"] == 3)
        assert sup.pool_size == 1
        await sup.shutdown()

    @pytest.mark.asyncio
    async def test_empty_pool_is_critical(self, supervisor, event_bus):
        monitor = HealthMonitor(HealthConfig(min_alive=0), supervisor, event_bus)

        report = await monitor.check_once()

        assert report.alive_count == 0
        assert report.level == RedundancyLevel.CRITICAL
        # min_alive=0 never asks for more workers
        assert event_bus.get_history("health.redundancy_low") == []


class TestMonitorLoop:
    """Test the periodic loop."""

    @pytest.mark.asyncio
    async def test_loop_ticks_until_stopped(self, supervisor, event_bus, health_config, wait_until):
        monitor = HealthMonitor(health_config, supervisor, event_bus)
        await supervisor.start()

        await monitor.start()
        await wait_until(lambda: monitor.ticks >= 2)
        await monitor.stop()

        ticks = monitor.ticks
        assert len(event_bus.get_history("health.checked")) == ticks
