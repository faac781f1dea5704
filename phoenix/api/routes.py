"""
Phoenix API Routes

Read-only status surface over the kernel.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI
from pydantic import BaseModel

import structlog

logger = structlog.get_logger(__name__)


# ==================== Response Models ====================

class StatusResponse(BaseModel):
    """Pool and site status, observed at request time."""
    instance_id: str
    status: str
    uptime_seconds: float
    total_workers: int
    alive_workers: int
    failed_workers: int
    average_uptime_seconds: float
    site_count: int
    redundancy_level: str


class WorkerResponse(BaseModel):
    """One active worker."""
    worker_id: str
    pid: int
    uptime_seconds: float
    restarts: int
    status: str
    memory_mb: Optional[float] = None


class FailoverResponse(BaseModel):
    """Workers retired after exhausting their restart budget."""
    failover_queue: list[str]
    pending_restarts: int


def setup_routes(app: FastAPI, kernel) -> None:
    """Setup the status routes."""

    @app.get("/")
    async def root():
        """API root - returns service information."""
        return {
            "name": "Phoenix",
            "version": "1.0.0",
            "description": "Self-healing service supervisor",
            "ready": kernel.is_ready(),
        }

    @app.get("/status", response_model=StatusResponse)
    async def status():
        """Worker pool and site status."""
        return kernel.get_status()

    @app.get("/workers", response_model=list[WorkerResponse])
    async def workers():
        """Liveness of every active worker."""
        return [
            kernel.health.probe(record).to_dict()
            for record in kernel.supervisor.workers
        ]

    @app.get("/failover", response_model=FailoverResponse)
    async def failover():
        """Failover queue."""
        return {
            "failover_queue": list(kernel.supervisor.failover_queue),
            "pending_restarts": kernel.supervisor.pending_restarts,
        }

    @app.get("/stats")
    async def stats() -> dict[str, Any]:
        """Supervisor and event channel counters."""
        return {
            "supervisor": kernel.supervisor.get_stats(),
            "events": kernel.event_bus.get_stats(),
        }

    @app.get("/events")
    async def events(channel: Optional[str] = None, limit: int = 50) -> list[dict[str, Any]]:
        """Recent events on the notification channel, oldest first."""
        return [e.to_dict() for e in kernel.event_bus.get_history(channel, limit=limit)]
