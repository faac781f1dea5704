"""
Phoenix Checksum Registry

Content hashes of every manifest artifact at every site, persisted as one
document per site. The registry records what was observed at build time and
does not compare sites itself; ``divergent_artifacts`` is for consumers that
read the document afterwards.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import structlog

from phoenix.core.config import ChecksumConfig, LayoutConfig
from phoenix.systems.process.event_bus import EventBus
from phoenix.systems.process.models import Event
from phoenix.systems.replication.fanout import fan_out

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class ChecksumRegistry:
    """artifact name -> site root -> sha256 hex digest, plus metadata."""
    created_at: datetime
    version: str
    sites: list[str]
    artifacts: dict[str, dict[str, str]] = field(default_factory=dict)

    def record(self, artifact: str, site: str, digest: str) -> None:
        self.artifacts.setdefault(artifact, {})[site] = digest

    def sites_for(self, artifact: str) -> dict[str, str]:
        return dict(self.artifacts.get(artifact, {}))

    def divergent_artifacts(self) -> dict[str, dict[str, str]]:
        """Artifacts whose content differs between the sites holding them."""
        return {
            name: dict(by_site)
            for name, by_site in self.artifacts.items()
            if len(set(by_site.values())) > 1
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "createdAt": self.created_at.isoformat(),
            "version": self.version,
            "sites": list(self.sites),
            "artifacts": {name: dict(by_site) for name, by_site in self.artifacts.items()},
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "ChecksumRegistry":
        return cls(
            created_at=datetime.fromisoformat(data["createdAt"]),
            version=data["version"],
            sites=list(data.get("sites", [])),
            artifacts={
                name: dict(by_site)
                for name, by_site in data.get("artifacts", {}).items()
            },
        )


def load_registry(site: Path, filename: str = "checksum-registry.json") -> Optional[ChecksumRegistry]:
    """Read the registry document stored at ``site``, or None if missing or unreadable."""
    path = site / filename
    try:
        with open(path) as f:
            return ChecksumRegistry.from_document(json.load(f))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError) as e:
        logger.warning("Unreadable checksum registry", path=str(path), error=str(e))
        return None


class ChecksumRegistryBuilder:
    """
    Builds the checksum registry across the artifact x site cross product.

    Each build starts from scratch; nothing is carried over from the
    previous registry.
    """

    def __init__(
        self,
        layout: LayoutConfig,
        config: ChecksumConfig,
        event_bus: Optional[EventBus] = None,
    ):
        self.layout = layout
        self.config = config
        self.event_bus = event_bus

        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._last_registry: Optional[ChecksumRegistry] = None

    def compute_checksum(self, site: Path, artifact: str) -> Optional[str]:
        """sha256 of ``site/artifact``, or None if it cannot be read. Never raises."""
        digest = hashlib.sha256()
        try:
            with open(site / artifact, "rb") as f:
                for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                    digest.update(chunk)
        except OSError:
            return None
        return digest.hexdigest()

    async def build_registry(self) -> ChecksumRegistry:
        """Hash every artifact at every site and write the document to each writable site."""
        registry = ChecksumRegistry(
            created_at=datetime.now(),
            version=self.config.version,
            sites=[str(s) for s in self.layout.sites],
        )

        for artifact in self.layout.manifest:
            for site in self.layout.sites:
                digest = await asyncio.to_thread(self.compute_checksum, site, artifact)
                if digest is not None:
                    registry.record(artifact, str(site), digest)

        document = json.dumps(registry.to_document(), indent=2)
        written = await fan_out(
            self.layout.sites,
            lambda site: asyncio.to_thread(self._write_document, site, document),
            label="checksum_registry",
        )
        for outcome in written.failed:
            logger.warning(
                "Checksum registry not written",
                site=str(outcome.target),
                error=outcome.error,
            )

        self._last_registry = registry
        logger.info(
            "Checksum registry built",
            artifacts=len(registry.artifacts),
            written=len(written.succeeded),
            sites=len(self.layout.sites),
        )

        if self.event_bus is not None:
            self.event_bus.publish(Event.create(
                "checksum.registry_built",
                "checksum_registry",
                artifacts=len(registry.artifacts),
                written_sites=[str(s) for s in written.succeeded],
            ))
        return registry

    def _write_document(self, site: Path, document: str) -> Path:
        path = site / self.layout.registry_filename
        path.write_text(document)
        return path

    async def start(self) -> None:
        """Start the periodic registry rebuild."""
        if self._task is not None:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._registry_loop())
        logger.info("Checksum Registry started", interval=self.config.interval)

    async def stop(self) -> None:
        """Stop the periodic registry rebuild."""
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _registry_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.interval)

                if self._shutdown_event.is_set():
                    break

                await self.build_registry()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Checksum registry loop error", error=str(e))

    @property
    def last_registry(self) -> Optional[ChecksumRegistry]:
        return self._last_registry
