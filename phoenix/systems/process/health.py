"""
Phoenix Health Monitor

Periodically probes every active worker, classifies the pool's redundancy
level and, when too few workers are alive, asks the supervisor for another
standby worker through the event channel.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

import psutil
import structlog

from phoenix.core.config import HealthConfig
from phoenix.systems.process.event_bus import EventBus
from phoenix.systems.process.models import (
    Event,
    HealthReport,
    HealthSnapshot,
    WorkerRecord,
    WorkerStatus,
    classify_redundancy,
)
from phoenix.systems.process.supervisor import WorkerSupervisor

logger = structlog.get_logger(__name__)


class HealthMonitor:
    """
    Timer-driven health aggregation for the worker pool.

    The redundancy request is one-way: the monitor publishes
    ``health.redundancy_low`` and never waits for, or checks, what the
    supervisor does with it.
    """

    def __init__(
        self,
        config: HealthConfig,
        supervisor: WorkerSupervisor,
        event_bus: EventBus,
    ):
        self.config = config
        self.supervisor = supervisor
        self.event_bus = event_bus

        self._last_report: Optional[HealthReport] = None
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._ticks = 0

    def probe(self, record: WorkerRecord, now: Optional[datetime] = None) -> HealthSnapshot:
        """Liveness probe against one worker's process handle."""
        now = now or datetime.now()
        alive = record.process.returncode is None

        memory_mb = None
        if alive:
            try:
                memory_mb = psutil.Process(record.handle).memory_info().rss / (1024 * 1024)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        return HealthSnapshot(
            worker_id=record.id,
            pid=record.handle,
            uptime_seconds=record.uptime_seconds(now),
            restarts=record.restart_count,
            status=WorkerStatus.ALIVE if alive else WorkerStatus.DEAD,
            observed_at=now,
            memory_mb=memory_mb,
        )

    async def check_once(self) -> HealthReport:
        """Run one health tick."""
        now = datetime.now()
        snapshots = tuple(self.probe(record, now) for record in self.supervisor.workers)
        alive_count = sum(1 for s in snapshots if s.alive)
        level = classify_redundancy(alive_count)

        report = HealthReport(
            snapshots=snapshots,
            alive_count=alive_count,
            level=level,
            observed_at=now,
        )
        self._last_report = report
        self._ticks += 1

        logger.debug(
            "Health check",
            alive_count=alive_count,
            total=len(snapshots),
            level=level.value,
        )
        self.event_bus.publish(Event.create(
            "health.checked",
            "health_monitor",
            alive_count=alive_count,
            total=len(snapshots),
            level=level.value,
        ))

        if alive_count < self.config.min_alive:
            logger.warning(
                "Low redundancy",
                alive_count=alive_count,
                level=level.value,
            )
            self.event_bus.publish(Event.create(
                "health.redundancy_low",
                "health_monitor",
                alive_count=alive_count,
                level=level.value,
            ))

        return report

    async def start(self) -> None:
        """Start the periodic health loop."""
        if self._task is not None:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Health Monitor started", interval=self.config.interval)

    async def stop(self) -> None:
        """Stop the periodic health loop."""
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _monitor_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.interval)

                if self._shutdown_event.is_set():
                    break

                await self.check_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health monitor error", error=str(e))

    @property
    def last_report(self) -> Optional[HealthReport]:
        return self._last_report

    @property
    def ticks(self) -> int:
        return self._ticks
