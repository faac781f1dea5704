"""
Shared fixtures for the Phoenix test suite.

Workers are driven through a fake launcher so restart and capacity logic can
be exercised without starting real processes.
"""

from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Callable, Optional

import pytest

from phoenix.core.config import (
    HealthConfig,
    LayoutConfig,
    SupervisorConfig,
    WatchdogConfig,
)
from phoenix.systems.process import EventBus, WorkerSupervisor
from phoenix.systems.process.supervisor import WORKER_ID_ENV

_pids = itertools.count(900000)


class FakeProcess:
    """In-memory stand-in for ``asyncio.subprocess.Process``."""

    def __init__(self, role_id: Optional[str] = None, ignore_terminate: bool = False):
        self.pid = next(_pids)
        self.role_id = role_id
        self.returncode: Optional[int] = None
        self.ignore_terminate = ignore_terminate
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int = 0) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


class FakeLauncher:
    """Records launches and hands out FakeProcess objects."""

    def __init__(self):
        self.launched: list[tuple[list[str], dict[str, str]]] = []
        self.processes: list[FakeProcess] = []
        self.fail = False
        self.ignore_terminate = False

    async def launch(self, command: list[str], env: dict[str, str]) -> FakeProcess:
        self.launched.append((list(command), dict(env)))
        if self.fail:
            raise OSError("spawn refused")
        process = FakeProcess(env.get(WORKER_ID_ENV), ignore_terminate=self.ignore_terminate)
        self.processes.append(process)
        return process


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


# ==================== Fixtures ====================

@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds."""
    return _wait_until


@pytest.fixture
def sites(tmp_path) -> list[Path]:
    """Primary plus two backups, none created yet."""
    return [tmp_path / "primary", tmp_path / "backup-a", tmp_path / "backup-b"]


@pytest.fixture
def layout(sites) -> LayoutConfig:
    return LayoutConfig(
        sites=sites,
        manifest=["boot.py", "phoenix.json", ".env"],
        boot_entry="boot.py",
        entry_scripts=["boot.py"],
    )


@pytest.fixture
def supervisor_config() -> SupervisorConfig:
    return SupervisorConfig(
        max_workers=4,
        max_restart_attempts=5,
        restart_delay=0.0,
        stop_timeout=0.5,
        initial_workers=["w0", "w1", "w2"],
    )


@pytest.fixture
def health_config() -> HealthConfig:
    return HealthConfig(interval=0.05, min_alive=2)


@pytest.fixture
def watchdog_config() -> WatchdogConfig:
    return WatchdogConfig(interval=0.01, max_failures=3, deploy_scripts=False)


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
async def event_bus():
    """Create an event bus for testing."""
    bus = EventBus(max_history=100)
    yield bus
    await bus.shutdown()


@pytest.fixture
async def supervisor(supervisor_config, event_bus, launcher):
    """Create a worker supervisor for testing (not started)."""
    sup = WorkerSupervisor(supervisor_config, event_bus, launcher)
    yield sup
    await sup.shutdown()


def write_artifacts(site: Path, files: dict[str, str]) -> None:
    site.mkdir(parents=True, exist_ok=True)
    for name, content in files.items():
        (site / name).write_text(content)


@pytest.fixture
def populate():
    """Write ``{name: content}`` into a site directory."""
    return write_artifacts
