"""
Standby worker.

Default command for roles without an explicit command. Idles until it is
told to stop, which keeps a warm, supervised slot in the pool.

    python -m phoenix.worker
"""

from __future__ import annotations

import asyncio
import os
import signal

import structlog

from phoenix.main import setup_logging
from phoenix.systems.process.supervisor import RESTART_COUNT_ENV, WORKER_ID_ENV

logger = structlog.get_logger(__name__)


async def run() -> None:
    worker_id = os.environ.get(WORKER_ID_ENV, "standby")
    restart_count = int(os.environ.get(RESTART_COUNT_ENV, "0"))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Worker started", worker_id=worker_id, pid=os.getpid(), restart_count=restart_count)
    await stop.wait()
    logger.info("Worker stopping", worker_id=worker_id)


def main() -> None:
    setup_logging(os.environ.get("PHOENIX_MONITORING__LOG_LEVEL", "INFO"))
    asyncio.run(run())


if __name__ == "__main__":
    main()
