"""
Phoenix Watchdog & Recovery

Runs apart from the main service and talks to it only through the
filesystem (pid file, site copies) and the OS process table.

Example usage:
    ```python
    from phoenix.systems.watchdog import RecoveryProcedure, ServiceProbe, Watchdog

    probe = ServiceProbe(config.layout.pid_file, config.watchdog.process_pattern)
    recovery = RecoveryProcedure(config.layout, config.watchdog)
    await Watchdog(config.watchdog, probe, recovery).run()
    ```
"""

from phoenix.systems.watchdog.os_integration import (
    CommandOSIntegration,
    NullOSIntegration,
    OSIntegration,
    build_os_integration,
)
from phoenix.systems.watchdog.probe import (
    LivenessProbe,
    ServiceProbe,
    remove_pid_file,
    write_pid_file,
)
from phoenix.systems.watchdog.recovery import (
    DetachedLauncher,
    RecoveryOutcome,
    RecoveryProcedure,
    RecoveryResult,
)
from phoenix.systems.watchdog.scripts import (
    RECOVERY_SCRIPT_NAME,
    WATCHDOG_SCRIPT_NAME,
    deploy_scripts,
    render_recovery_script,
    render_watchdog_script,
)
from phoenix.systems.watchdog.watchdog import Watchdog, WatchdogState

__all__ = [
    "Watchdog",
    "WatchdogState",
    "LivenessProbe",
    "ServiceProbe",
    "write_pid_file",
    "remove_pid_file",
    "RecoveryProcedure",
    "RecoveryResult",
    "RecoveryOutcome",
    "DetachedLauncher",
    "OSIntegration",
    "NullOSIntegration",
    "CommandOSIntegration",
    "build_os_integration",
    "deploy_scripts",
    "render_recovery_script",
    "render_watchdog_script",
    "RECOVERY_SCRIPT_NAME",
    "WATCHDOG_SCRIPT_NAME",
]
