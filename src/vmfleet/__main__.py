"""vmfleet CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from vmfleet.config import load_config
from vmfleet.errors import FleetError
from vmfleet.models import CleanupRequest

DEFAULT_CONFIG = Path("vmfleet.yaml")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def _destroy(args: argparse.Namespace) -> int:
    from vmfleet.server import FleetServer

    try:
        server = FleetServer(load_config(args.config))
    except ValueError as e:
        print(f"Error: invalid config {args.config}: {e}", file=sys.stderr)
        return 1

    try:
        await server.start()
    except Exception as e:
        print(f"Error: could not start vmfleet: {e}", file=sys.stderr)
        await server.stop()
        return 1

    try:
        outcome = await server.handler.handle(
            CleanupRequest(
                pool_id=args.pool_id,
                stage_runtime_id=args.stage_runtime_id,
                log_key=args.log_key,
            )
        )
    except FleetError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await server.stop()

    print(f"Destroyed instance {outcome.instance.id} ({outcome.instance.name})")
    for advisory in outcome.advisories:
        print(f"  warning: {advisory.step}: {advisory.error}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="vmfleet",
        description="vmfleet: control plane for short-lived CI build VMs",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to vmfleet.yaml (default: ./vmfleet.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # vmfleet serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to bind to (default: 3000)",
    )

    # vmfleet destroy
    destroy_parser = subparsers.add_parser(
        "destroy", help="Decommission the VM bound to a stage and exit"
    )
    destroy_parser.add_argument("--stage-runtime-id", required=True)
    destroy_parser.add_argument("--pool-id", default="")
    destroy_parser.add_argument("--log-key", default="")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.log_level)

    if args.command == "destroy":
        sys.exit(asyncio.run(_destroy(args)))

    import uvicorn

    from vmfleet.server import create_app

    app = create_app(config_path=args.config)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
