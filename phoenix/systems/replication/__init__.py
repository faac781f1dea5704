"""
Phoenix Replicated Persistence

Best-effort mirroring of the artifact manifest across sites and the
checksum registry used to audit the mirrors afterwards.
"""

from phoenix.systems.replication.checksums import (
    ChecksumRegistry,
    ChecksumRegistryBuilder,
    load_registry,
)
from phoenix.systems.replication.fanout import (
    FanOutReport,
    Outcome,
    OutcomeStatus,
    Skipped,
    fan_out,
)
from phoenix.systems.replication.replication import (
    ReplicationReport,
    ReplicationService,
    SiteReplication,
)

__all__ = [
    "ReplicationService",
    "ReplicationReport",
    "SiteReplication",
    "ChecksumRegistry",
    "ChecksumRegistryBuilder",
    "load_registry",
    "fan_out",
    "FanOutReport",
    "Outcome",
    "OutcomeStatus",
    "Skipped",
]
