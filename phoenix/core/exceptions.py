"""Phoenix exception hierarchy."""

from __future__ import annotations


class PhoenixError(Exception):
    """Base class for all Phoenix errors."""
    pass


class ConfigurationError(PhoenixError):
    """Raised when the configuration cannot be loaded or is inconsistent."""
    pass


class WorkerSpawnError(PhoenixError):
    """Raised when the OS refuses to start a worker process."""

    def __init__(self, role_id: str, reason: str):
        super().__init__(f"Failed to spawn worker {role_id}: {reason}")
        self.role_id = role_id
        self.reason = reason


class PoolCapacityError(PhoenixError):
    """Raised when a spawn would push the pool above max_workers."""

    def __init__(self, pool_size: int, max_workers: int):
        super().__init__(f"Worker pool is full: {pool_size}/{max_workers}")
        self.pool_size = pool_size
        self.max_workers = max_workers


class RecoveryError(PhoenixError):
    """Raised by a recovery step that cannot complete."""
    pass
