"""
Tests for the Phoenix kernel, status API and CLI.
"""

from __future__ import annotations

import json
import os

import pytest
from fastapi.testclient import TestClient

from phoenix.cli import build_parser, cmd_verify_checksums
from phoenix.core.config import (
    ChecksumConfig,
    HealthConfig,
    PhoenixConfig,
    ReplicationConfig,
    SupervisorConfig,
    WatchdogConfig,
)
from phoenix.core.kernel import PhoenixKernel, ServiceStatus
from phoenix.main import create_app
from phoenix.systems.watchdog import RECOVERY_SCRIPT_NAME


@pytest.fixture
def config(layout) -> PhoenixConfig:
    return PhoenixConfig(
        instance_id="test-instance",
        layout=layout,
        supervisor=SupervisorConfig(
            max_workers=4,
            restart_delay=0.0,
            stop_timeout=0.5,
            initial_workers=["w0", "w1", "w2"],
        ),
        health=HealthConfig(interval=60.0),
        replication=ReplicationConfig(interval=60.0),
        checksum=ChecksumConfig(interval=60.0),
        watchdog=WatchdogConfig(deploy_scripts=True),
    )


class TestKernel:
    """Test kernel lifecycle and status."""

    @pytest.mark.asyncio
    async def test_status_before_start(self, config, launcher):
        kernel = PhoenixKernel(config, launcher=launcher, write_pid=False)

        status = kernel.get_status()

        assert status["total_workers"] == 0
        assert status["alive_workers"] == 0
        assert status["failed_workers"] == 0
        assert status["average_uptime_seconds"] == 0.0
        assert status["site_count"] == 3
        assert status["redundancy_level"] == "CRITICAL"

    @pytest.mark.asyncio
    async def test_lifecycle(self, config, launcher, populate):
        populate(config.layout.primary, {"boot.py": "x", "phoenix.json": "{}"})
        kernel = PhoenixKernel(config, launcher=launcher)

        async with kernel:
            assert kernel.is_ready()
            assert config.layout.pid_file.read_text().strip() == str(os.getpid())

            # Startup replication, registry and scripts ran before workers
            for site in config.layout.sites:
                assert (site / "checksum-registry.json").exists()
                assert (site / RECOVERY_SCRIPT_NAME).exists()
            assert (config.layout.backups[0] / "boot.py").exists()

            status = kernel.get_status()
            assert status["total_workers"] == 3
            assert status["alive_workers"] == 3
            assert status["redundancy_level"] == "HIGH"

        assert kernel.get_status()["status"] == ServiceStatus.SHUTDOWN.value
        assert all(p.terminated for p in launcher.processes)
        assert not config.layout.pid_file.exists()

    @pytest.mark.asyncio
    async def test_failed_workers_counted(self, config, launcher, wait_until):
        config = config.model_copy(update={
            "supervisor": SupervisorConfig(max_workers=2, max_restart_attempts=0, initial_workers=["w0", "w1"]),
        })
        kernel = PhoenixKernel(config, launcher=launcher, write_pid=False)

        async with kernel:
            kernel.supervisor.get_workers_by_id("w0")[0].process.exit(1)
            await wait_until(lambda: kernel.supervisor.failover_queue == ("w0",))

            status = kernel.get_status()
            assert status["failed_workers"] == 1
            assert status["total_workers"] == 1
            assert status["redundancy_level"] == "LOW"


class TestStatusAPI:
    """Test the HTTP status surface."""

    def test_status_route(self, config, launcher):
        kernel = PhoenixKernel(config, launcher=launcher, write_pid=False)
        app = create_app(config, kernel=kernel, configure_logging=False)

        with TestClient(app) as client:
            response = client.get("/status")
            assert response.status_code == 200
            data = response.json()
            assert data["total_workers"] == 3
            assert data["alive_workers"] == 3
            assert data["failed_workers"] == 0
            assert data["site_count"] == 3
            assert data["redundancy_level"] == "HIGH"
            assert data["average_uptime_seconds"] >= 0.0

            workers = client.get("/workers").json()
            assert sorted(w["worker_id"] for w in workers) == ["w0", "w1", "w2"]

            failover = client.get("/failover").json()
            assert failover == {"failover_queue": [], "pending_restarts": 0}

            spawned = client.get("/events", params={"channel": "worker.spawned"}).json()
            assert sorted(e["payload"]["id"] for e in spawned) == ["w0", "w1", "w2"]
            assert all(e["source"] == "supervisor" for e in spawned)
            assert len(client.get("/events", params={"limit": 1}).json()) == 1

        # Lifespan shutdown terminated the workers
        assert all(p.terminated for p in launcher.processes)


class TestCLI:
    """Test command line parsing and the local commands."""

    def test_parser(self):
        parser = build_parser()

        args = parser.parse_args(["--config", "/etc/phoenix.json", "checksums", "--verify"])
        assert args.command == "checksums"
        assert args.verify
        assert str(args.config) == "/etc/phoenix.json"

        assert parser.parse_args(["status"]).url == "http://127.0.0.1:8470"

    @pytest.mark.asyncio
    async def test_verify_checksums(self, config, populate, capsys):
        from phoenix.systems.replication import ChecksumRegistryBuilder

        populate(config.layout.sites[0], {"boot.py": "a"})
        populate(config.layout.sites[1], {"boot.py": "b"})
        await ChecksumRegistryBuilder(config.layout, config.checksum).build_registry()
        capsys.readouterr()

        assert cmd_verify_checksums(config) == 1
        output = json.loads(capsys.readouterr().out)
        assert set(output["divergent"]) == {"boot.py"}
        assert output["missing"]["boot.py"] == [str(config.layout.sites[2])]
        assert output["missing"]["phoenix.json"] == [str(s) for s in config.layout.sites]

    @pytest.mark.asyncio
    async def test_verify_clean_mirror(self, config, populate, capsys):
        from phoenix.systems.replication import ChecksumRegistryBuilder

        for site in config.layout.sites:
            populate(site, {"boot.py": "x", "phoenix.json": "{}", ".env": "A=1"})
        await ChecksumRegistryBuilder(config.layout, config.checksum).build_registry()
        capsys.readouterr()

        assert cmd_verify_checksums(config) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["divergent"] == {}
        assert output["missing"] == {}

    def test_verify_without_registry(self, config, capsys):
        assert cmd_verify_checksums(config) == 2
