"""
Phoenix Kernel

Owns every in-process component of the main service:
- Event bus, worker supervisor and health monitor
- Replication service and checksum registry timers
- Pid file and standalone recovery scripts for the watchdog
- The status query surface
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import structlog

from phoenix.core.config import PhoenixConfig
from phoenix.systems.process import (
    EventBus,
    HealthMonitor,
    WorkerLauncher,
    WorkerSupervisor,
    classify_redundancy,
)
from phoenix.systems.replication import ChecksumRegistryBuilder, ReplicationService
from phoenix.systems.watchdog import deploy_scripts, remove_pid_file, write_pid_file

logger = structlog.get_logger(__name__)


class ServiceStatus(str, Enum):
    """Status of the Phoenix service."""
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"
    SHUTDOWN = "shutdown"


class PhoenixKernel:
    """
    Phoenix Kernel - wiring and lifecycle of the main service.

    Components receive their own config section; nothing reads global state.
    """

    def __init__(
        self,
        config: Optional[PhoenixConfig] = None,
        launcher: Optional[WorkerLauncher] = None,
        write_pid: bool = True,
    ):
        self.config = config or PhoenixConfig()
        self.instance_id = self.config.instance_id
        self.write_pid = write_pid

        self._event_bus = EventBus()
        self._supervisor = WorkerSupervisor(self.config.supervisor, self._event_bus, launcher)
        self._health = HealthMonitor(self.config.health, self._supervisor, self._event_bus)
        self._replication = ReplicationService(
            self.config.layout, self.config.replication, self._event_bus
        )
        self._checksums = ChecksumRegistryBuilder(
            self.config.layout, self.config.checksum, self._event_bus
        )

        self._status = ServiceStatus.INITIALIZING
        self._start_time: Optional[datetime] = None
        self._init_lock = asyncio.Lock()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    async def initialize(self) -> None:
        """Prepare sites, start timers and spawn the initial workers."""
        async with self._init_lock:
            if self._status == ServiceStatus.READY:
                return

            logger.info("Initializing Phoenix Kernel", instance_id=self.instance_id)
            self._start_time = datetime.now()

            try:
                unavailable = self.config.ensure_directories()
                if unavailable:
                    logger.warning("Sites unavailable", sites=[str(s) for s in unavailable])

                if self.write_pid:
                    try:
                        write_pid_file(self.config.layout.pid_file)
                    except OSError as e:
                        logger.warning("Could not write pid file", error=str(e))

                if self.config.watchdog.deploy_scripts:
                    await deploy_scripts(self.config.layout, self.config.watchdog)

                if self.config.replication.enabled:
                    await self._replication.replicate_once()
                    await self._replication.start(run_immediately=False)

                if self.config.checksum.enabled:
                    await self._checksums.build_registry()
                    await self._checksums.start()

                await self._supervisor.start()
                await self._health.start()

                self._status = ServiceStatus.READY
                logger.info(
                    "Phoenix Kernel initialized successfully",
                    instance_id=self.instance_id,
                    workers=self._supervisor.pool_size,
                )

            except Exception as e:
                self._status = ServiceStatus.ERROR
                logger.error("Failed to initialize Phoenix Kernel", error=str(e))
                raise

    async def shutdown(self) -> None:
        """Stop timers, terminate every worker and remove the pid file."""
        logger.info("Shutting down Phoenix Kernel", instance_id=self.instance_id)
        self._status = ServiceStatus.SHUTDOWN

        await self._health.stop()
        await self._checksums.stop()
        await self._replication.stop()
        await self._supervisor.shutdown()
        await self._event_bus.shutdown()

        if self.write_pid:
            remove_pid_file(self.config.layout.pid_file)

        logger.info("Phoenix Kernel shutdown complete")

    # ==================== System Information ====================

    def get_status(self) -> dict[str, Any]:
        """Status of the worker pool and sites, observed now."""
        now = datetime.now()
        snapshots = [self._health.probe(record, now) for record in self._supervisor.workers]
        alive = [s for s in snapshots if s.alive]
        average_uptime = (
            sum(s.uptime_seconds for s in alive) / len(alive) if alive else 0.0
        )

        return {
            "instance_id": self.instance_id,
            "status": self._status.value,
            "uptime_seconds": (
                (now - self._start_time).total_seconds() if self._start_time else 0.0
            ),
            "total_workers": len(snapshots),
            "alive_workers": len(alive),
            "failed_workers": len(self._supervisor.failover_queue),
            "average_uptime_seconds": average_uptime,
            "site_count": len(self.config.layout.sites),
            "redundancy_level": classify_redundancy(len(alive)).value,
        }

    def is_ready(self) -> bool:
        return self._status == ServiceStatus.READY

    # ==================== Subsystem Access ====================

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def supervisor(self) -> WorkerSupervisor:
        return self._supervisor

    @property
    def health(self) -> HealthMonitor:
        return self._health

    @property
    def replication(self) -> ReplicationService:
        return self._replication

    @property
    def checksums(self) -> ChecksumRegistryBuilder:
        return self._checksums
