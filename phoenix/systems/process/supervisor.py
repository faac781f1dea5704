"""
Phoenix Worker Pool Supervisor

Owns the worker processes of the main service:
- Spawns workers by role and tracks them in a pid-keyed record table
- Reacts to process exits with a delayed restart
- Retires workers whose restart budget is spent into the failover queue
- Adds standby workers on request, never exceeding max_workers
- Terminates every owned process on shutdown
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

import structlog

from phoenix.core.config import SupervisorConfig
from phoenix.core.exceptions import PoolCapacityError, WorkerSpawnError
from phoenix.systems.process.event_bus import EventBus
from phoenix.systems.process.launcher import SubprocessLauncher, WorkerLauncher
from phoenix.systems.process.models import (
    Event,
    ExitInfo,
    SupervisorStats,
    WorkerRecord,
)

logger = structlog.get_logger(__name__)

WORKER_ID_ENV = "PHOENIX_WORKER_ID"
RESTART_COUNT_ENV = "PHOENIX_RESTART_COUNT"


class WorkerSupervisor:
    """
    Supervisor for the worker pool.

    All methods run on the event loop of the main service. Process exits are
    observed by one watcher task per worker, which calls ``on_exit``.

    Capacity accounting counts pending restarts as occupied slots, so a
    worker waiting out its restart delay cannot lose its slot to a standby.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        event_bus: EventBus,
        launcher: Optional[WorkerLauncher] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.launcher = launcher or SubprocessLauncher()

        # Handle (pid) -> record. The only place records live.
        self._workers: Dict[int, WorkerRecord] = {}
        self._watch_tasks: Dict[int, asyncio.Task] = {}
        self._pending_restarts: Set[asyncio.Task] = set()

        # Terminal, append-only
        self._failover_queue: List[str] = []

        self._spawn_lock = asyncio.Lock()
        self._subscription_id: Optional[str] = None
        self._shutting_down = False
        self._started_at: Optional[datetime] = None
        self._stats = SupervisorStats()

    async def start(self) -> None:
        """Subscribe to redundancy requests and spawn the initial workers."""
        self._started_at = datetime.now()
        self._subscription_id = self.event_bus.subscribe(
            "health.redundancy_low",
            self._on_redundancy_low,
            subscriber_id="supervisor",
        )

        for role_id in self.config.initial_workers[: self.config.max_workers]:
            try:
                await self.spawn_worker(role_id)
            except WorkerSpawnError:
                # A failed first start is treated like a crash of a fresh worker
                self._retire_or_restart(role_id, 0)
            except PoolCapacityError as e:
                logger.warning("Skipping initial worker", worker_id=role_id, reason=str(e))

        logger.info(
            "Worker Supervisor started",
            pool_size=self.pool_size,
            max_workers=self.config.max_workers,
            max_restart_attempts=self.config.max_restart_attempts,
        )

    async def shutdown(self) -> None:
        """Cancel pending restarts and terminate every owned worker process."""
        logger.info("Shutting down Worker Supervisor", pool_size=self.pool_size)
        self._shutting_down = True

        if self._subscription_id:
            self.event_bus.unsubscribe_by_id(self._subscription_id)
            self._subscription_id = None

        # An in-flight launch registers before the stop set is taken
        async with self._spawn_lock:
            pending = list(self._pending_restarts)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            records = list(self._workers.values())
            if records:
                await asyncio.gather(
                    *(self._stop_process(record) for record in records),
                    return_exceptions=True,
                )

        watchers = list(self._watch_tasks.values())
        if watchers:
            _, still_running = await asyncio.wait(watchers, timeout=1.0)
            for task in still_running:
                task.cancel()
        self._watch_tasks.clear()
        self._workers.clear()

        logger.info(
            "Worker Supervisor shutdown complete",
            workers_stopped=len(records),
            failover_queue=list(self._failover_queue),
        )

    async def spawn_worker(self, role_id: str) -> WorkerRecord:
        """
        Launch one worker process for ``role_id`` and register its record.

        Raises:
            PoolCapacityError: If the pool (including pending restarts) is full
            WorkerSpawnError: If the OS refuses to start the process, or the
                supervisor is shutting down
        """
        async with self._spawn_lock:
            if self._shutting_down:
                raise WorkerSpawnError(role_id, "supervisor is shutting down")
            occupied = self.pool_size + len(self._pending_restarts)
            if occupied >= self.config.max_workers:
                raise PoolCapacityError(occupied, self.config.max_workers)
            return await self._launch(role_id, restart_count=0)

    async def _launch(self, role_id: str, restart_count: int) -> WorkerRecord:
        env = {
            WORKER_ID_ENV: role_id,
            RESTART_COUNT_ENV: str(restart_count),
        }

        try:
            process = await self.launcher.launch(self.config.command_for(role_id), env)
        except OSError as e:
            self._stats.spawn_failures += 1
            logger.error("Failed to spawn worker", worker_id=role_id, error=str(e))
            raise WorkerSpawnError(role_id, str(e)) from e

        record = WorkerRecord(
            id=role_id,
            handle=process.pid,
            process=process,
            restart_count=restart_count,
            start_time=datetime.now(),
        )
        self._workers[record.handle] = record
        self._watch_tasks[record.handle] = asyncio.create_task(self._watch(record))
        self._stats.workers_spawned += 1

        logger.info(
            "Worker spawned",
            worker_id=role_id,
            pid=record.handle,
            restart_count=restart_count,
        )
        self._publish("worker.spawned", record.to_dict())
        return record

    async def _watch(self, record: WorkerRecord) -> None:
        returncode = await record.process.wait()
        self.on_exit(record.handle, ExitInfo.from_returncode(returncode))

    def on_exit(self, handle: int, exit_info: ExitInfo) -> Optional[asyncio.Task]:
        """
        Handle termination of the worker process identified by ``handle``.

        Removes the record, then either schedules a restart (returning its
        task) or retires the worker into the failover queue (returning None).
        Exits of unknown handles are ignored.
        """
        record = self._workers.pop(handle, None)
        self._watch_tasks.pop(handle, None)
        if record is None:
            logger.debug("Exit for unknown worker handle", pid=handle)
            return None

        self._stats.worker_exits += 1
        logger.warning(
            "Worker exited",
            worker_id=record.id,
            pid=handle,
            reason=exit_info.describe(),
            restart_count=record.restart_count,
            uptime_seconds=round(record.uptime_seconds(), 1),
        )
        self._publish("worker.exited", {
            **record.to_dict(),
            "returncode": exit_info.returncode,
            "signal": exit_info.signal,
        })

        if self._shutting_down:
            return None

        return self._retire_or_restart(record.id, record.restart_count)

    def _retire_or_restart(self, role_id: str, restart_count: int) -> Optional[asyncio.Task]:
        if self._shutting_down:
            return None
        if restart_count >= self.config.max_restart_attempts:
            self._failover_queue.append(role_id)
            self._stats.workers_retired += 1
            logger.error(
                "Worker exceeded restart limit",
                worker_id=role_id,
                restart_count=restart_count,
                max_restart_attempts=self.config.max_restart_attempts,
            )
            self._publish("worker.retired", {"id": role_id, "restart_count": restart_count})
            return None

        task = asyncio.create_task(self._restart_after_delay(role_id, restart_count + 1))
        self._pending_restarts.add(task)
        task.add_done_callback(self._pending_restarts.discard)
        self._stats.restarts_scheduled += 1

        logger.info(
            "Scheduling restart",
            worker_id=role_id,
            delay=self.config.restart_delay,
            restart_count=restart_count + 1,
        )
        self._publish("worker.restart_scheduled", {
            "id": role_id,
            "restart_count": restart_count + 1,
            "delay": self.config.restart_delay,
        })
        return task

    async def _restart_after_delay(self, role_id: str, restart_count: int) -> Optional[WorkerRecord]:
        await asyncio.sleep(self.config.restart_delay)

        async with self._spawn_lock:
            if self._shutting_down:
                return None

            logger.info("Restarting worker", worker_id=role_id, restart_count=restart_count)
            try:
                record = await self._launch(role_id, restart_count)
            except WorkerSpawnError:
                # The failed attempt consumes budget like a crash would
                self._retire_or_restart(role_id, restart_count)
                return None

        self._stats.restarts_performed += 1
        return record

    async def increase_redundancy(self) -> Optional[WorkerRecord]:
        """Spawn one standby worker if the pool has room; otherwise do nothing."""
        self._stats.redundancy_requests += 1
        if self._shutting_down:
            return None

        role_id = self._new_standby_id()
        try:
            record = await self.spawn_worker(role_id)
        except PoolCapacityError as e:
            logger.debug("Pool at capacity, standby not added", reason=str(e))
            return None
        except WorkerSpawnError:
            return None

        self._stats.redundancy_spawns += 1
        logger.info("Increased redundancy", worker_id=role_id, pool_size=self.pool_size)
        return record

    def _new_standby_id(self) -> str:
        active = {r.id for r in self._workers.values()}
        stamp = int(time.time() * 1000)
        while f"{self.config.standby_prefix}-{stamp}" in active:
            stamp += 1
        return f"{self.config.standby_prefix}-{stamp}"

    async def _on_redundancy_low(self, event: Event) -> None:
        logger.info(
            "Redundancy request received",
            alive_count=event.payload.get("alive_count"),
            level=event.payload.get("level"),
        )
        await self.increase_redundancy()

    async def _stop_process(self, record: WorkerRecord) -> None:
        process = record.process
        if process.returncode is not None:
            return

        logger.info("Stopping worker", worker_id=record.id, pid=record.handle)
        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Worker ignored SIGTERM, killing",
                worker_id=record.id,
                pid=record.handle,
                timeout=self.config.stop_timeout,
            )
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self.event_bus.publish(Event.create(event_type, "supervisor", **payload))

    # === Query Methods ===

    @property
    def pool_size(self) -> int:
        return len(self._workers)

    @property
    def pending_restarts(self) -> int:
        return len(self._pending_restarts)

    @property
    def workers(self) -> List[WorkerRecord]:
        return list(self._workers.values())

    @property
    def failover_queue(self) -> tuple[str, ...]:
        return tuple(self._failover_queue)

    def get_worker(self, handle: int) -> Optional[WorkerRecord]:
        return self._workers.get(handle)

    def get_workers_by_id(self, role_id: str) -> List[WorkerRecord]:
        return [r for r in self._workers.values() if r.id == role_id]

    async def wait_for_pending_restarts(self) -> None:
        """Wait until every scheduled restart (including reschedules) has run."""
        while self._pending_restarts:
            await asyncio.gather(*list(self._pending_restarts), return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        """Get supervisor statistics."""
        uptime = (datetime.now() - self._started_at).total_seconds() if self._started_at else 0.0
        return {
            **self._stats.to_dict(),
            "pool_size": self.pool_size,
            "pending_restarts": self.pending_restarts,
            "max_workers": self.config.max_workers,
            "failover_queue": list(self._failover_queue),
            "uptime_seconds": uptime,
        }
