"""
Phoenix - Self-Healing Service Supervisor

Main entry point for the Phoenix service.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI

from phoenix.api.routes import setup_routes
from phoenix.core.config import PhoenixConfig
from phoenix.core.kernel import PhoenixKernel


# Configure structured logging
def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "text"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


def create_app(
    config: Optional[PhoenixConfig] = None,
    kernel: Optional[PhoenixKernel] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Create and configure the Phoenix FastAPI application.

    The application's lifespan owns the kernel: workers are spawned on
    startup and terminated on shutdown.

    Args:
        config: Optional configuration override
        kernel: Optional pre-built kernel (defaults to one built from config)
        configure_logging: Set up structlog from the monitoring config

    Returns:
        Configured FastAPI application
    """
    config = config or (kernel.config if kernel else PhoenixConfig())
    kernel = kernel or PhoenixKernel(config)

    if configure_logging:
        setup_logging(config.monitoring.log_level.value, config.monitoring.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Phoenix service", instance_id=config.instance_id)
        await kernel.initialize()
        logger.info("Phoenix service ready", status=kernel.get_status())

        yield

        logger.info("Shutting down Phoenix service")
        await kernel.shutdown()
        logger.info("Phoenix service shutdown complete")

    app = FastAPI(
        title="Phoenix - Self-Healing Service Supervisor",
        description="""
        Status surface of a Phoenix service:
        - Worker pool size, liveness and redundancy level
        - Failover queue of retired workers
        - Supervisor and event channel counters
        """,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.kernel = kernel

    setup_routes(app, kernel)
    return app


def run_server(config: Optional[PhoenixConfig] = None) -> None:
    """
    Run the Phoenix service until SIGINT/SIGTERM.

    uvicorn turns the signal into a lifespan shutdown, which terminates
    every worker before the process exits.
    """
    config = config or PhoenixConfig()
    app = create_app(config)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level=config.monitoring.log_level.value.lower(),
    )


if __name__ == "__main__":
    run_server()
