"""
Liveness probe for the main service.

The watchdog shares nothing with the main service except the filesystem and
the OS process table: the service writes its pid to a file at the primary
site, and the probe looks that pid up with psutil.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Protocol

import psutil
import structlog

logger = structlog.get_logger(__name__)


class LivenessProbe(Protocol):
    """Answers "is the main service running right now?"."""

    def is_alive(self) -> bool: ...


class ServiceProbe:
    """
    Pid-file probe with an optional command-line pattern fallback.

    A pid from the file is trusted only if that process already existed when
    the file was written and, when a pattern is configured, its command line
    matches it. A pid the OS handed to an unrelated process after the service
    died therefore reads as dead.

    The pattern scan skips the probing process itself, whose own command
    line usually mentions the service name too.
    """

    # Slack between process creation time and pid file mtime
    CLOCK_TOLERANCE = 1.0

    def __init__(self, pid_file: Path, process_pattern: Optional[str] = None):
        self.pid_file = pid_file
        self.process_pattern = process_pattern

    def read_pid(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def is_alive(self) -> bool:
        pid = self.read_pid()
        if pid is not None and self._pid_alive(pid):
            return True
        if self.process_pattern:
            return self._pattern_alive(self.process_pattern)
        return False

    def _pid_alive(self, pid: int) -> bool:
        try:
            written_at = self.pid_file.stat().st_mtime
        except OSError:
            return False

        try:
            proc = psutil.Process(pid)
            if proc.status() == psutil.STATUS_ZOMBIE:
                return False
            if proc.create_time() > written_at + self.CLOCK_TOLERANCE:
                logger.info("Stale pid file, pid belongs to a newer process", pid=pid)
                return False
            if self.process_pattern:
                cmdline = " ".join(proc.cmdline())
                if self.process_pattern not in cmdline:
                    logger.info(
                        "Stale pid file, command line does not match",
                        pid=pid,
                        pattern=self.process_pattern,
                    )
                    return False
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists, owned by someone else
            return True
        return True

    @staticmethod
    def _pattern_alive(pattern: str) -> bool:
        own_pid = os.getpid()
        for proc in psutil.process_iter(["pid", "cmdline"]):
            if proc.info["pid"] == own_pid:
                continue
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if pattern in cmdline:
                logger.debug("Service matched by pattern", pid=proc.info["pid"], pattern=pattern)
                return True
        return False


def write_pid_file(path: Path, pid: Optional[int] = None) -> None:
    """Record ``pid`` (default: the current process) for the probe."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{pid if pid is not None else os.getpid()}\n")


def remove_pid_file(path: Path) -> None:
    """Remove the pid file if it still names the current process."""
    try:
        if int(path.read_text().strip()) != os.getpid():
            return
        path.unlink()
    except (OSError, ValueError):
        pass
