"""
Phoenix Core Module

Configuration, exceptions and the kernel that wires the subsystems together.
"""

from phoenix.core.config import PhoenixConfig, load_config
from phoenix.core.exceptions import (
    ConfigurationError,
    PhoenixError,
    PoolCapacityError,
    RecoveryError,
    WorkerSpawnError,
)
from phoenix.core.kernel import PhoenixKernel, ServiceStatus

__all__ = [
    "PhoenixConfig",
    "load_config",
    "PhoenixKernel",
    "ServiceStatus",
    "PhoenixError",
    "ConfigurationError",
    "WorkerSpawnError",
    "PoolCapacityError",
    "RecoveryError",
]
