"""
Tests for the standalone recovery and watchdog scripts.
"""

from __future__ import annotations

import stat
import subprocess
import sys

import pytest

from phoenix.core.config import LayoutConfig, WatchdogConfig
from phoenix.systems.watchdog import (
    RECOVERY_SCRIPT_NAME,
    WATCHDOG_SCRIPT_NAME,
    deploy_scripts,
    render_recovery_script,
    render_watchdog_script,
)


class TestRendering:
    """Test script rendering."""

    def test_recovery_script_is_valid_python(self, layout, watchdog_config):
        source = render_recovery_script(layout, watchdog_config)

        compile(source, RECOVERY_SCRIPT_NAME, "exec")
        assert source.startswith("#!/usr/bin/env python3")
        for site in layout.sites:
            assert repr(str(site)) in source

    def test_watchdog_script_is_valid_python(self, layout):
        config = WatchdogConfig(interval=12.5, max_failures=4, process_pattern="phoenix serve")
        source = render_watchdog_script(layout, config)

        compile(source, WATCHDOG_SCRIPT_NAME, "exec")
        assert "INTERVAL = 12.5" in source
        assert "MAX_FAILURES = 4" in source
        assert "PROCESS_PATTERN = 'phoenix serve'" in source
        assert repr(str(layout.pid_file)) in source

    def test_scripts_are_standalone(self, layout, watchdog_config):
        for source in (
            render_recovery_script(layout, watchdog_config),
            render_watchdog_script(layout, watchdog_config),
        ):
            assert "import phoenix" not in source
            assert "from phoenix" not in source


class TestDeploy:
    """Test deploying scripts to sites."""

    @pytest.mark.asyncio
    async def test_deploys_to_every_site(self, layout, watchdog_config):
        written = await deploy_scripts(layout, watchdog_config)

        assert written == layout.sites
        for site in layout.sites:
            for name in (RECOVERY_SCRIPT_NAME, WATCHDOG_SCRIPT_NAME):
                path = site / name
                assert path.exists()
                assert stat.S_IMODE(path.stat().st_mode) == 0o755

    @pytest.mark.asyncio
    async def test_unwritable_site_skipped(self, tmp_path, watchdog_config):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        layout = LayoutConfig(sites=[tmp_path / "primary", blocker / "gone"])

        written = await deploy_scripts(layout, watchdog_config)

        assert written == [tmp_path / "primary"]


class TestGeneratedRecovery:
    """Run the generated recovery script end to end."""

    def test_restores_primary_from_backup(self, layout, populate):
        config = WatchdogConfig(launch_command=[sys.executable, "-c", "pass"])
        populate(layout.sites[1], {"boot.py": "print('boot')", "phoenix.json": "{}"})
        script = layout.sites[1] / RECOVERY_SCRIPT_NAME
        script.write_text(render_recovery_script(layout, config))

        completed = subprocess.run(
            [sys.executable, str(script)],
            capture_output=True,
            text=True,
            timeout=30,
        )

        assert completed.returncode == 0, completed.stderr
        assert (layout.primary / "boot.py").read_text() == "print('boot')"
        assert stat.S_IMODE((layout.primary / "boot.py").stat().st_mode) == 0o755

    def test_no_bootable_site_exit_status(self, tmp_path, layout, watchdog_config):
        script = tmp_path / RECOVERY_SCRIPT_NAME
        script.write_text(render_recovery_script(layout, watchdog_config))

        completed = subprocess.run(
            [sys.executable, str(script)],
            capture_output=True,
            text=True,
            timeout=30,
        )

        assert completed.returncode == 1
        assert "no bootable site" in completed.stderr
