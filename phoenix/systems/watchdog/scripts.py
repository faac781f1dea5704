"""
Standalone recovery and watchdog scripts.

The scripts are rendered with the site list and settings baked in and use
only the Python standard library, so they keep working when the phoenix
package itself is gone from the primary site.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from string import Template

import structlog

from phoenix.core.config import LayoutConfig, WatchdogConfig
from phoenix.systems.replication.fanout import fan_out

logger = structlog.get_logger(__name__)

RECOVERY_SCRIPT_NAME = "phoenix-recovery.py"
WATCHDOG_SCRIPT_NAME = "phoenix-watchdog.py"
SCRIPT_MODE = 0o755

_RECOVERY_TEMPLATE = Template('''\
#!/usr/bin/env python3
"""Phoenix recovery procedure (generated).

Restores the primary site from the first site holding a bootable copy and
relaunches the service. Exit status: 0 restored, 1 no bootable site,
2 restore failed.
"""

import os
import shutil
import subprocess
import sys

SITES = $sites
BOOT_ENTRY = $boot_entry
ENTRY_SCRIPTS = $entry_scripts
LAUNCH_COMMAND = $launch_command
INSTALL_COMMAND = $install_command


def find_bootable_site():
    for site in SITES:
        if os.path.isfile(os.path.join(site, BOOT_ENTRY)):
            return site
    return None


def main():
    primary = SITES[0]
    source = find_bootable_site()
    if source is None:
        print("phoenix-recovery: no bootable site found", file=sys.stderr)
        return 1

    try:
        if os.path.realpath(source) != os.path.realpath(primary):
            shutil.copytree(source, primary, dirs_exist_ok=True)
        for script in ENTRY_SCRIPTS:
            path = os.path.join(primary, script)
            if os.path.exists(path):
                os.chmod(path, 0o755)
        if INSTALL_COMMAND:
            subprocess.run(
                [part.replace("{primary}", primary) for part in INSTALL_COMMAND],
                check=True,
            )
        command = LAUNCH_COMMAND or [sys.executable, os.path.join(primary, BOOT_ENTRY)]
        subprocess.Popen(
            command,
            cwd=primary,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        print(f"phoenix-recovery: restore from {source} failed: {e}", file=sys.stderr)
        return 2

    print(f"phoenix-recovery: restored from {source}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
''')

_WATCHDOG_TEMPLATE = Template('''\
#!/usr/bin/env python3
"""Phoenix watchdog (generated).

Probes the main service every INTERVAL seconds and runs the recovery
script after MAX_FAILURES consecutive misses.
"""

import os
import subprocess
import sys
import time

SITES = $sites
PID_FILE = $pid_file
PROCESS_PATTERN = $process_pattern
INTERVAL = $interval
MAX_FAILURES = $max_failures
RECOVERY_SCRIPT = $recovery_script


def pid_alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    if PROCESS_PATTERN:
        # A reused pid belongs to some other command
        try:
            with open("/proc/%d/cmdline" % pid, "rb") as f:
                cmdline = f.read().replace(b"\\0", b" ").decode(errors="replace")
        except OSError:
            return True
        return PROCESS_PATTERN in cmdline
    return True


def service_alive():
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
    except (OSError, ValueError):
        pid = None
    if pid is not None and pid_alive(pid):
        return True

    if not PROCESS_PATTERN:
        return False
    try:
        out = subprocess.run(
            ["pgrep", "-f", PROCESS_PATTERN],
            capture_output=True,
            text=True,
        ).stdout
    except OSError:
        return False
    own = os.getpid()
    return any(int(p) != own for p in out.split())


def run_recovery():
    for site in SITES:
        script = os.path.join(site, RECOVERY_SCRIPT)
        if os.path.isfile(script):
            return subprocess.run([sys.executable, script]).returncode
    print("phoenix-watchdog: no recovery script found", file=sys.stderr)
    return 1


def main():
    failure_count = 0
    while True:
        if service_alive():
            failure_count = 0
        else:
            failure_count += 1
            print(f"phoenix-watchdog: service not running ({failure_count}/{MAX_FAILURES})")
            if failure_count >= MAX_FAILURES:
                try:
                    run_recovery()
                except Exception as e:
                    print(f"phoenix-watchdog: recovery error: {e}", file=sys.stderr)
                failure_count = 0
        time.sleep(INTERVAL)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
''')


def render_recovery_script(layout: LayoutConfig, config: WatchdogConfig) -> str:
    return _RECOVERY_TEMPLATE.substitute(
        sites=repr([str(s) for s in layout.sites]),
        boot_entry=repr(layout.boot_entry),
        entry_scripts=repr(list(layout.entry_scripts)),
        launch_command=repr(list(config.launch_command)),
        install_command=repr(list(config.install_command)),
    )


def render_watchdog_script(layout: LayoutConfig, config: WatchdogConfig) -> str:
    return _WATCHDOG_TEMPLATE.substitute(
        sites=repr([str(s) for s in layout.sites]),
        pid_file=repr(str(layout.pid_file)),
        process_pattern=repr(config.process_pattern),
        interval=repr(float(config.interval)),
        max_failures=repr(int(config.max_failures)),
        recovery_script=repr(RECOVERY_SCRIPT_NAME),
    )


async def deploy_scripts(layout: LayoutConfig, config: WatchdogConfig) -> list[Path]:
    """Write both scripts to every writable site. Returns the sites written to."""
    scripts = {
        RECOVERY_SCRIPT_NAME: render_recovery_script(layout, config),
        WATCHDOG_SCRIPT_NAME: render_watchdog_script(layout, config),
    }

    report = await fan_out(
        layout.sites,
        lambda site: asyncio.to_thread(_write_scripts, site, scripts),
        label="deploy_scripts",
    )
    for outcome in report.failed:
        logger.warning("Scripts not deployed", site=str(outcome.target), error=outcome.error)

    logger.info("Deployed recovery scripts", sites=[str(s) for s in report.succeeded])
    return list(report.succeeded)


def _write_scripts(site: Path, scripts: dict[str, str]) -> Path:
    site.mkdir(parents=True, exist_ok=True)
    for name, source in scripts.items():
        path = site / name
        path.write_text(source)
        path.chmod(SCRIPT_MODE)
    return site
