"""
Phoenix Process Supervision - Core Data Models

Data structures shared by the supervisor, the health monitor and the
event channel:
- Immutable worker records (a restart produces a new record)
- Exit information decoded from OS return codes
- Per-tick health snapshots and the redundancy classification
- Events for the one-way notification channel
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol


class WorkerProcess(Protocol):
    """The slice of an OS process handle the supervisor relies on.

    ``asyncio.subprocess.Process`` satisfies it.
    """

    @property
    def pid(self) -> int: ...

    @property
    def returncode(self) -> Optional[int]: ...

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class WorkerStatus(str, Enum):
    """Liveness of a worker as observed by a health probe."""
    ALIVE = "alive"
    DEAD = "dead"


class RedundancyLevel(str, Enum):
    """Coarse classification of how many workers are currently alive."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    CRITICAL = "CRITICAL"


def classify_redundancy(alive_count: int) -> RedundancyLevel:
    """Map an alive-worker count to a redundancy level.

    0 -> CRITICAL, 1 -> LOW, 2 -> MEDIUM, 3 or more -> HIGH.
    """
    if alive_count < 0:
        raise ValueError(f"alive_count must be non-negative, got {alive_count}")
    if alive_count >= 3:
        return RedundancyLevel.HIGH
    if alive_count == 2:
        return RedundancyLevel.MEDIUM
    if alive_count == 1:
        return RedundancyLevel.LOW
    return RedundancyLevel.CRITICAL


@dataclass(frozen=True)
class ExitInfo:
    """How a worker process terminated."""
    returncode: Optional[int]
    signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: Optional[int]) -> "ExitInfo":
        # asyncio reports death-by-signal as a negative return code
        if returncode is not None and returncode < 0:
            return cls(returncode=returncode, signal=-returncode)
        return cls(returncode=returncode)

    @property
    def clean(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        if self.signal is not None:
            return f"signal {self.signal}"
        return f"exit code {self.returncode}"


@dataclass(frozen=True)
class WorkerRecord:
    """
    One incarnation of a logical worker.

    Records are never mutated: every respawn inserts a fresh record with a new
    handle and ``restart_count`` one higher than the record it replaces.
    """
    id: str
    handle: int
    process: WorkerProcess = field(repr=False, compare=False)
    restart_count: int = 0
    start_time: datetime = field(default_factory=datetime.now)

    def uptime_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or datetime.now()) - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pid": self.handle,
            "restart_count": self.restart_count,
            "start_time": self.start_time.isoformat(),
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Liveness of one worker at one health tick. Never persisted."""
    worker_id: str
    pid: int
    uptime_seconds: float
    restarts: int
    status: WorkerStatus
    observed_at: datetime = field(default_factory=datetime.now)
    memory_mb: Optional[float] = None

    @property
    def alive(self) -> bool:
        return self.status == WorkerStatus.ALIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "pid": self.pid,
            "uptime_seconds": self.uptime_seconds,
            "restarts": self.restarts,
            "status": self.status.value,
            "observed_at": self.observed_at.isoformat(),
            "memory_mb": self.memory_mb,
        }


@dataclass(frozen=True)
class HealthReport:
    """Aggregate of one health tick."""
    snapshots: tuple[HealthSnapshot, ...]
    alive_count: int
    level: RedundancyLevel
    observed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alive_count": self.alive_count,
            "level": self.level.value,
            "observed_at": self.observed_at.isoformat(),
            "snapshots": [s.to_dict() for s in self.snapshots],
        }


@dataclass
class Event:
    """
    An event on the notification channel.
    """
    id: str
    type: str  # Event type/channel (e.g., "worker.spawned", "health.redundancy_low")
    source: str  # Component that emitted the event
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(cls, event_type: str, source: str, **payload: Any) -> "Event":
        return cls(id=str(uuid.uuid4()), type=event_type, source=source, payload=payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "payload": self.payload.copy(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SupervisorStats:
    """Counters for the worker supervisor."""
    workers_spawned: int = 0
    worker_exits: int = 0
    restarts_scheduled: int = 0
    restarts_performed: int = 0
    spawn_failures: int = 0
    workers_retired: int = 0
    redundancy_requests: int = 0
    redundancy_spawns: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "workers_spawned": self.workers_spawned,
            "worker_exits": self.worker_exits,
            "restarts_scheduled": self.restarts_scheduled,
            "restarts_performed": self.restarts_performed,
            "spawn_failures": self.spawn_failures,
            "workers_retired": self.workers_retired,
            "redundancy_requests": self.redundancy_requests,
            "redundancy_spawns": self.redundancy_spawns,
        }
