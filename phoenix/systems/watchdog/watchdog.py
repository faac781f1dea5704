"""
Phoenix Watchdog

Two-state loop, meant to run in its own process:

    WATCHING --(max_failures consecutive misses)--> RECOVERING
    RECOVERING --(one recovery attempt, any outcome)--> WATCHING

failure_count is reset to 0 by a successful probe and after every
recovery attempt.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import structlog

from phoenix.core.config import WatchdogConfig
from phoenix.systems.watchdog.probe import LivenessProbe
from phoenix.systems.watchdog.recovery import RecoveryOutcome, RecoveryProcedure, RecoveryResult

logger = structlog.get_logger(__name__)


class WatchdogState(str, Enum):
    WATCHING = "watching"
    RECOVERING = "recovering"


class Watchdog:
    def __init__(
        self,
        config: WatchdogConfig,
        probe: LivenessProbe,
        recovery: RecoveryProcedure,
    ):
        self.config = config
        self.probe = probe
        self.recovery = recovery

        self.state = WatchdogState.WATCHING
        self.failure_count = 0
        self.recoveries = 0
        self.last_result: Optional[RecoveryResult] = None
        self._shutdown_event = asyncio.Event()

    async def tick(self) -> Optional[RecoveryResult]:
        """One observation. Returns the recovery result if this tick recovered."""
        try:
            alive = await asyncio.to_thread(self.probe.is_alive)
        except Exception as e:
            logger.warning("Liveness probe failed", error=str(e))
            alive = False

        if alive:
            if self.failure_count:
                logger.info("Service is running again", after_failures=self.failure_count)
            self.failure_count = 0
            return None

        self.failure_count += 1
        logger.warning(
            "Service not running",
            failure_count=self.failure_count,
            max_failures=self.config.max_failures,
        )
        if self.failure_count < self.config.max_failures:
            return None

        return await self._recover()

    async def _recover(self) -> RecoveryResult:
        self.state = WatchdogState.RECOVERING
        try:
            result = await self.recovery.run()
        except Exception as e:
            logger.error("Recovery attempt crashed", error=str(e))
            result = RecoveryResult(outcome=RecoveryOutcome.FAILED, error=str(e))
        finally:
            self.failure_count = 0
            self.state = WatchdogState.WATCHING

        self.recoveries += 1
        self.last_result = result
        return result

    async def run(self) -> None:
        """Watch until stop() is called."""
        logger.info(
            "Watchdog started",
            interval=self.config.interval,
            max_failures=self.config.max_failures,
        )
        self._shutdown_event.clear()
        while not self._shutdown_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Watchdog tick error", error=str(e))

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.config.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Watchdog stopped", recoveries=self.recoveries)

    def stop(self) -> None:
        self._shutdown_event.set()
