"""
Phoenix Recovery Procedure

Rebuilds the primary site from the first site that still holds a bootable
copy, then reinstalls and relaunches the service. One invocation makes one
attempt; retrying is the watchdog's business.
"""

from __future__ import annotations

import asyncio
import shutil
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog

from phoenix.core.config import LayoutConfig, WatchdogConfig
from phoenix.core.exceptions import RecoveryError
from phoenix.systems.replication.fanout import fan_out
from phoenix.systems.watchdog.os_integration import OSIntegration, build_os_integration

logger = structlog.get_logger(__name__)

EXECUTABLE_MODE = 0o755


class RecoveryOutcome(str, Enum):
    RESTORED = "restored"
    NO_BOOTABLE_SITE = "no_bootable_site"
    FAILED = "failed"


@dataclass
class RecoveryResult:
    """Outcome of one recovery attempt."""
    outcome: RecoveryOutcome
    source_site: Optional[Path] = None
    pid: Optional[int] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.outcome == RecoveryOutcome.RESTORED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "source_site": str(self.source_site) if self.source_site else None,
            "pid": self.pid,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ServiceLauncher(Protocol):
    async def launch(self, command: list[str], cwd: Path) -> int: ...


class DetachedLauncher:
    """Starts the service in its own session so it outlives the caller."""

    async def launch(self, command: list[str], cwd: Path) -> int:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
        return process.pid


class RecoveryProcedure:
    """Scan-and-restore of the primary site."""

    def __init__(
        self,
        layout: LayoutConfig,
        config: WatchdogConfig,
        os_integration: Optional[OSIntegration] = None,
        launcher: Optional[ServiceLauncher] = None,
    ):
        self.layout = layout
        self.config = config
        self.os_integration = os_integration or build_os_integration(config)
        self.launcher = launcher or DetachedLauncher()

    def is_bootable(self, site: Path) -> bool:
        return (site / self.layout.boot_entry).is_file()

    async def find_bootable_site(self) -> Optional[Path]:
        """First site, in configured order, holding the boot entry."""
        scan = await fan_out(
            self.layout.sites,
            lambda site: asyncio.to_thread(self.is_bootable, site),
            label="recovery_scan",
            stop_on_success=True,
        )
        found = scan.first_success
        return found.target if found else None

    def launch_command(self) -> list[str]:
        if self.config.launch_command:
            return list(self.config.launch_command)
        return [sys.executable, str(self.layout.primary / self.layout.boot_entry)]

    async def run(self) -> RecoveryResult:
        """Run one recovery attempt. Never raises for I/O or install failures."""
        result = RecoveryResult(outcome=RecoveryOutcome.FAILED)
        logger.warning("Starting recovery", sites=[str(s) for s in self.layout.sites])

        source = await self.find_bootable_site()
        if source is None:
            result.outcome = RecoveryOutcome.NO_BOOTABLE_SITE
            result.finished_at = datetime.now()
            logger.error(
                "No bootable site found",
                boot_entry=self.layout.boot_entry,
                sites=[str(s) for s in self.layout.sites],
            )
            return result

        result.source_site = source
        primary = self.layout.primary
        try:
            await self._restore(source, primary)
            await self.os_integration.install(primary)
            result.pid = await self.launcher.launch(self.launch_command(), primary)
        except (OSError, RecoveryError) as e:
            result.error = str(e)
            result.finished_at = datetime.now()
            logger.error("Recovery failed", source=str(source), error=str(e))
            return result

        result.outcome = RecoveryOutcome.RESTORED
        result.finished_at = datetime.now()
        logger.info("Recovery complete", source=str(source), pid=result.pid)
        return result

    async def _restore(self, source: Path, primary: Path) -> None:
        if source.resolve() != primary.resolve():
            logger.info("Restoring primary", source=str(source), primary=str(primary))
            await asyncio.to_thread(shutil.copytree, source, primary, dirs_exist_ok=True)

        for script in self.layout.entry_scripts:
            path = primary / script
            if path.exists():
                path.chmod(EXECUTABLE_MODE)
