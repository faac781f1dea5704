"""
Phoenix - Self-Healing Service Supervisor

Keeps a fleet of worker processes alive and the service able to resurrect
itself:
- Worker pool supervision with bounded restart budgets
- Health-derived redundancy classification
- Best-effort multi-site replication of critical artifacts
- Content-hash integrity registry per site
- Independent watchdog with scan-and-restore recovery
"""

__version__ = "1.0.0"
__author__ = "Phoenix Team"

from phoenix.core.config import PhoenixConfig
from phoenix.core.kernel import PhoenixKernel

__all__ = ["PhoenixKernel", "PhoenixConfig", "__version__"]
