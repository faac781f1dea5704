"""
Worker process launching.

The supervisor only needs "start this command, give me a handle"; the
launcher is injectable so the pool can be driven without real processes.
"""

from __future__ import annotations

import asyncio
import os
from typing import Optional, Protocol

import structlog

from phoenix.systems.process.models import WorkerProcess

logger = structlog.get_logger(__name__)


class WorkerLauncher(Protocol):
    """Starts one OS process for a worker role."""

    async def launch(self, command: list[str], env: dict[str, str]) -> WorkerProcess:
        """Start ``command`` with ``env`` added to the inherited environment.

        Raises OSError if the process cannot be started.
        """
        ...


class SubprocessLauncher:
    """Launches workers with ``asyncio.create_subprocess_exec``."""

    def __init__(self, cwd: Optional[str] = None):
        self.cwd = cwd

    async def launch(self, command: list[str], env: dict[str, str]) -> WorkerProcess:
        if not command:
            raise OSError("empty worker command")

        full_env = {**os.environ, **env}

        # Output is inherited so worker logs land wherever the service logs go
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=None,
            stderr=None,
            env=full_env,
            cwd=self.cwd,
        )

        logger.debug("Worker process started", command=command, pid=process.pid)
        return process
