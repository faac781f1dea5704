"""
Phoenix Replication Service

Mirrors the artifact manifest from the primary site to every backup site.
The mirror is best-effort and non-transactional: a reader of a backup site
may see a partially updated set of artifacts while a pass is running.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import structlog

from phoenix.core.config import LayoutConfig, ReplicationConfig
from phoenix.systems.process.event_bus import EventBus
from phoenix.systems.process.models import Event
from phoenix.systems.replication.fanout import Skipped, fan_out

logger = structlog.get_logger(__name__)


@dataclass
class SiteReplication:
    """Result of one site's pass."""
    site: Path
    reachable: bool = True
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.reachable and not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "site": str(self.site),
            "reachable": self.reachable,
            "success": self.success,
            "copied": list(self.copied),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "error": self.error,
        }


@dataclass
class ReplicationReport:
    """Result of one replication pass over every backup site."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    sites: list[SiteReplication] = field(default_factory=list)
    primary_available: bool = True

    @property
    def success(self) -> bool:
        return self.primary_available and all(s.success for s in self.sites)

    @property
    def failed_sites(self) -> list[Path]:
        return [s.site for s in self.sites if not s.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
            "primary_available": self.primary_available,
            "sites": [s.to_dict() for s in self.sites],
        }


class ReplicationService:
    """
    Timer-driven replication of critical artifacts.

    Sites are visited in configured order and, within a site, artifacts in
    manifest order. Nothing raised by a single artifact or site escapes a
    pass.
    """

    def __init__(
        self,
        layout: LayoutConfig,
        config: ReplicationConfig,
        event_bus: Optional[EventBus] = None,
    ):
        self.layout = layout
        self.config = config
        self.event_bus = event_bus

        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._last_report: Optional[ReplicationReport] = None
        self._passes = 0

    async def replicate_once(self) -> ReplicationReport:
        """Run one pass over every backup site."""
        report = ReplicationReport(started_at=datetime.now())

        primary = self.layout.primary
        if not await asyncio.to_thread(primary.is_dir):
            report.primary_available = False
            logger.warning("Primary site unavailable, replication skipped", site=str(primary))
            outcomes = []
        else:
            outcomes = (await fan_out(
                self.layout.backups,
                self._replicate_site,
                label="replication",
            )).outcomes

        for result in outcomes:
            if result.ok:
                report.sites.append(result.value)
                continue
            # The site pass itself blew up before it could log its summary
            logger.warning(
                "Replication failed for site",
                site=str(result.target),
                error=result.error,
            )
            report.sites.append(SiteReplication(
                site=result.target,
                reachable=False,
                error=result.error,
            ))

        report.finished_at = datetime.now()
        self._last_report = report
        self._passes += 1

        if self.event_bus is not None:
            self.event_bus.publish(Event.create(
                "replication.completed",
                "replication",
                success=report.success,
                primary_available=report.primary_available,
                failed_sites=[str(s) for s in report.failed_sites],
            ))
        return report

    async def _replicate_site(self, site: Path) -> SiteReplication:
        result = SiteReplication(site=site)

        try:
            await asyncio.to_thread(site.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            result.reachable = False
            result.error = str(e)
            logger.warning("Replication failed for site", site=str(site), error=str(e))
            return result

        artifacts = await fan_out(
            self.layout.manifest,
            lambda artifact: self._copy_artifact(artifact, site),
            label=f"replication:{site}",
        )
        result.copied = list(artifacts.succeeded)
        result.skipped = list(artifacts.skipped)
        result.failed = {o.target: o.error or "" for o in artifacts.failed}

        if result.failed:
            logger.warning(
                "Replication failed for site",
                site=str(site),
                copied=len(result.copied),
                failed=sorted(result.failed),
            )
        else:
            logger.info(
                "Replicated to site",
                site=str(site),
                copied=len(result.copied),
                skipped=len(result.skipped),
            )
        return result

    async def _copy_artifact(self, artifact: str, site: Path) -> str:
        source = self.layout.primary / artifact
        if not source.is_file():
            logger.debug("Artifact absent at primary", artifact=artifact)
            raise Skipped("absent at primary")

        await asyncio.to_thread(_copy_file, source, site / artifact)
        return artifact

    async def start(self, run_immediately: bool = True) -> None:
        """Start the periodic replication loop."""
        if self._task is not None:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._replication_loop(run_immediately))
        logger.info(
            "Replication Service started",
            interval=self.config.interval,
            backups=[str(s) for s in self.layout.backups],
        )

    async def stop(self) -> None:
        """Stop the periodic replication loop."""
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _replication_loop(self, run_immediately: bool) -> None:
        first = run_immediately
        while not self._shutdown_event.is_set():
            try:
                if not first:
                    await asyncio.sleep(self.config.interval)
                first = False

                if self._shutdown_event.is_set():
                    break

                await self.replicate_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Replication loop error", error=str(e))

    @property
    def last_report(self) -> Optional[ReplicationReport]:
        return self._last_report

    @property
    def passes(self) -> int:
        return self._passes


def _copy_file(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)
