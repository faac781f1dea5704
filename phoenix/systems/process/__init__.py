"""
Phoenix Process Supervision

Worker pool supervision and health aggregation for the main service:
- WorkerSupervisor: spawn, restart with a bounded budget, retire, shut down
- HealthMonitor: per-tick liveness snapshots and redundancy classification
- EventBus: one-way notification channel between the two timers

Example usage:
    ```python
    from phoenix.systems.process import EventBus, HealthMonitor, WorkerSupervisor

    bus = EventBus()
    supervisor = WorkerSupervisor(config.supervisor, bus)
    monitor = HealthMonitor(config.health, supervisor, bus)

    await supervisor.start()
    await monitor.start()
    ```
"""

from phoenix.systems.process.event_bus import EventBus, Subscription, channel_matches
from phoenix.systems.process.health import HealthMonitor
from phoenix.systems.process.launcher import SubprocessLauncher, WorkerLauncher
from phoenix.systems.process.models import (
    Event,
    ExitInfo,
    HealthReport,
    HealthSnapshot,
    RedundancyLevel,
    SupervisorStats,
    WorkerProcess,
    WorkerRecord,
    WorkerStatus,
    classify_redundancy,
)
from phoenix.systems.process.supervisor import WorkerSupervisor

__all__ = [
    # Core components
    "WorkerSupervisor",
    "HealthMonitor",
    "EventBus",
    "Subscription",
    "channel_matches",
    # Launching
    "WorkerLauncher",
    "SubprocessLauncher",
    # Models
    "Event",
    "ExitInfo",
    "HealthReport",
    "HealthSnapshot",
    "RedundancyLevel",
    "SupervisorStats",
    "WorkerProcess",
    "WorkerRecord",
    "WorkerStatus",
    "classify_redundancy",
]
