"""
OS integration collaborator.

Registering the command alias and the autostart entry is host specific and
lives outside Phoenix. Recovery only calls ``install(primary)``; what that
does is up to the operator-supplied command.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

import structlog

from phoenix.core.config import WatchdogConfig
from phoenix.core.exceptions import RecoveryError

logger = structlog.get_logger(__name__)

PRIMARY_PLACEHOLDER = "{primary}"


class OSIntegration(Protocol):
    """Opaque install step run after a restore."""

    async def install(self, primary: Path) -> None: ...


class NullOSIntegration:
    """Used when no install command is configured."""

    async def install(self, primary: Path) -> None:
        logger.info("No OS integration configured, skipping install", primary=str(primary))


class CommandOSIntegration:
    """
    Runs an operator-supplied command.

    ``{primary}`` in any argument is replaced by the primary site root.
    A non-zero exit or a timeout raises RecoveryError.
    """

    def __init__(self, command: list[str], timeout: float = 60.0):
        if not command:
            raise ValueError("install command must not be empty")
        self.command = list(command)
        self.timeout = timeout

    def argv(self, primary: Path) -> list[str]:
        return [part.replace(PRIMARY_PLACEHOLDER, str(primary)) for part in self.command]

    async def install(self, primary: Path) -> None:
        argv = self.argv(primary)
        logger.info("Running OS integration install", command=argv)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RecoveryError(f"install command could not start: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RecoveryError(f"install command timed out after {self.timeout}s")

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise RecoveryError(
                f"install command exited with {process.returncode}: {detail}"
            )


def build_os_integration(config: WatchdogConfig) -> OSIntegration:
    if config.install_command:
        return CommandOSIntegration(config.install_command)
    return NullOSIntegration()
