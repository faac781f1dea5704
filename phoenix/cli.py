"""
Phoenix Command Line Interface

Runs the service and the watchdog, queries a running service, and exposes
the one-shot replication, checksum and recovery operations.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import httpx

from phoenix.core.config import PhoenixConfig, load_config
from phoenix.core.exceptions import ConfigurationError

DEFAULT_URL = "http://127.0.0.1:8470"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phoenix",
        description="Phoenix - Self-Healing Service Supervisor CLI",
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Service
    subparsers.add_parser("serve", help="Run the Phoenix service")

    status_parser = subparsers.add_parser("status", help="Get service status")
    status_parser.add_argument("--url", default=DEFAULT_URL, help="Service URL")

    # One-shot operations
    subparsers.add_parser("replicate", help="Run one replication pass")

    checksums_parser = subparsers.add_parser("checksums", help="Build the checksum registry")
    checksums_parser.add_argument(
        "--verify",
        action="store_true",
        help="Read stored registries and report divergent artifacts instead",
    )

    subparsers.add_parser("recover", help="Run the recovery procedure once")
    subparsers.add_parser("watchdog", help="Run the watchdog loop")
    subparsers.add_parser("deploy-scripts", help="Write standalone recovery scripts to every site")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    if args.command == "status":
        asyncio.run(cmd_status(args.url))
        return

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "serve":
        from phoenix.main import run_server
        run_server(config)
        return

    from phoenix.main import setup_logging
    setup_logging(config.monitoring.log_level.value, config.monitoring.log_format)

    if args.command == "replicate":
        sys.exit(asyncio.run(cmd_replicate(config)))

    elif args.command == "checksums":
        if args.verify:
            sys.exit(cmd_verify_checksums(config))
        sys.exit(asyncio.run(cmd_checksums(config)))

    elif args.command == "recover":
        sys.exit(asyncio.run(cmd_recover(config)))

    elif args.command == "watchdog":
        asyncio.run(cmd_watchdog(config))

    elif args.command == "deploy-scripts":
        sys.exit(asyncio.run(cmd_deploy_scripts(config)))


async def cmd_status(base_url: str) -> None:
    """Get service status."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{base_url}/status", timeout=10.0)
        except httpx.ConnectError:
            print(f"Error: no Phoenix service at {base_url}")
            return

        if response.status_code == 200:
            result = response.json()
            print(json.dumps(result, indent=2))
        else:
            print(f"Error: {response.status_code}")


async def cmd_replicate(config: PhoenixConfig) -> int:
    """Run one replication pass."""
    from phoenix.systems.replication import ReplicationService

    service = ReplicationService(config.layout, config.replication)
    report = await service.replicate_once()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.success else 1


async def cmd_checksums(config: PhoenixConfig) -> int:
    """Build and write the checksum registry."""
    from phoenix.systems.replication import ChecksumRegistryBuilder

    builder = ChecksumRegistryBuilder(config.layout, config.checksum)
    registry = await builder.build_registry()
    print(json.dumps(registry.to_document(), indent=2))
    return 0


def cmd_verify_checksums(config: PhoenixConfig) -> int:
    """Report artifacts whose stored hashes differ between sites or are missing at some."""
    from phoenix.systems.replication import load_registry

    for site in config.layout.sites:
        registry = load_registry(site, config.layout.registry_filename)
        if registry is None:
            continue
        divergent = registry.divergent_artifacts()
        missing = {}
        for artifact in config.layout.manifest:
            held = registry.sites_for(artifact)
            absent = [s for s in registry.sites if s not in held]
            if absent:
                missing[artifact] = absent
        print(json.dumps({
            "registry": str(site / config.layout.registry_filename),
            "createdAt": registry.created_at.isoformat(),
            "divergent": divergent,
            "missing": missing,
        }, indent=2))
        return 1 if divergent or missing else 0

    print("Error: no checksum registry found at any site", file=sys.stderr)
    return 2


async def cmd_recover(config: PhoenixConfig) -> int:
    """Run the recovery procedure once."""
    from phoenix.systems.watchdog import RecoveryProcedure

    result = await RecoveryProcedure(config.layout, config.watchdog).run()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


async def cmd_watchdog(config: PhoenixConfig) -> None:
    """Run the watchdog until SIGINT/SIGTERM."""
    from phoenix.systems.watchdog import RecoveryProcedure, ServiceProbe, Watchdog

    watchdog = Watchdog(
        config.watchdog,
        ServiceProbe(config.layout.pid_file, config.watchdog.process_pattern),
        RecoveryProcedure(config.layout, config.watchdog),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, watchdog.stop)

    await watchdog.run()


async def cmd_deploy_scripts(config: PhoenixConfig) -> int:
    """Write the standalone scripts to every writable site."""
    from phoenix.systems.watchdog import deploy_scripts

    written = await deploy_scripts(config.layout, config.watchdog)
    print(json.dumps({"sites": [str(s) for s in written]}, indent=2))
    return 0 if written else 1


if __name__ == "__main__":
    main()
