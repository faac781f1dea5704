"""
Tests for Phoenix configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from phoenix.core.config import (
    LayoutConfig,
    PhoenixConfig,
    SupervisorConfig,
    load_config,
)
from phoenix.core.exceptions import ConfigurationError


class TestDefaults:
    """Test default values."""

    def test_supervisor_defaults(self):
        config = SupervisorConfig()

        assert config.max_workers == min(os.cpu_count() or 1, 8)
        assert config.max_restart_attempts == 5
        assert config.restart_delay == 2.0
        assert config.initial_workers == ["worker-0", "worker-1", "worker-2"]

    def test_section_defaults(self):
        config = PhoenixConfig()

        assert config.health.interval == 5.0
        assert config.health.min_alive == 2
        assert config.replication.interval == 60.0
        assert config.watchdog.interval == 30.0
        assert config.watchdog.max_failures == 3
        assert config.layout.registry_filename == "checksum-registry.json"

    def test_site_paths_expanded(self):
        layout = LayoutConfig(sites=["~/phoenix-site", "/srv/backup"])

        assert layout.primary == Path("~/phoenix-site").expanduser()
        assert layout.backups == [Path("/srv/backup")]
        assert layout.pid_file == layout.primary / "phoenix.pid"


class TestValidation:
    """Test configuration validation."""

    def test_sites_required(self):
        with pytest.raises(ValidationError):
            LayoutConfig(sites=[])

    def test_boot_entry_must_be_in_manifest(self):
        with pytest.raises(ValidationError):
            LayoutConfig(manifest=["phoenix.json"], boot_entry="boot.py")

    def test_sections_are_immutable(self):
        config = SupervisorConfig()
        with pytest.raises(ValidationError):
            config.max_workers = 100

    def test_command_for_role(self):
        config = SupervisorConfig(roles={"api": ["serve-api"]}, standby_command=["idle"])

        assert config.command_for("api") == ["serve-api"]
        assert config.command_for("backup-1") == ["idle"]


class TestSources:
    """Test environment and file loading."""

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PHOENIX_SUPERVISOR__MAX_WORKERS", "3")
        monkeypatch.setenv("PHOENIX_WATCHDOG__MAX_FAILURES", "7")

        config = PhoenixConfig()

        assert config.supervisor.max_workers == 3
        assert config.watchdog.max_failures == 7

    def test_file_round_trip(self, tmp_path, sites):
        original = PhoenixConfig(
            instance_id="edge-1",
            layout=LayoutConfig(sites=sites),
            supervisor=SupervisorConfig(max_workers=2, initial_workers=["a"]),
        )
        path = tmp_path / "conf" / "phoenix.json"

        original.to_file(path)
        loaded = load_config(path)

        assert loaded.instance_id == "edge-1"
        assert loaded.layout.sites == sites
        assert loaded.supervisor.max_workers == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            PhoenixConfig.from_file(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError):
            PhoenixConfig.from_file(path)

    def test_ensure_directories(self, tmp_path, sites):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = PhoenixConfig(layout=LayoutConfig(sites=sites + [blocker / "x"]))

        unavailable = config.ensure_directories()

        assert unavailable == [blocker / "x"]
        assert all(site.is_dir() for site in sites)
