from __future__ import annotations

import argparse
import logging
import os
import sys

import coloredlogs
from dotenv import load_dotenv

from ..settings import ConfigStore, default_config_path

lgr = logging.getLogger(__name__)

COMMANDS = [
    "sync-orders",
    "cron-sync",
    "worker",
    "import-order",
    "sync-inventory",
    "activate",
    "deactivate",
    "diagnostics",
    "validate-config",
    "start-api",
]


def setup_logging(debug=False):

    level = logging.DEBUG if debug else logging.INFO
    coloredlogs.install(level=level)
    # Suppress SQLAlchemy and HTTP client chatter
    logging.getLogger("sqlalchemy").handlers = [logging.NullHandler()]
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.orm").setLevel(logging.ERROR)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="ordersync - order and inventory sync between a remote storefront and the local system")
    p.add_argument("command",
                    help="""
                        Command to run:
                        - sync-orders: pull orders since sync_orders_since (or the last sync)
                        - cron-sync: pull orders since the last sync
                        - worker: pull orders every sync_interval seconds and run queued events
                        - import-order: import a single remote order by increment id
                        - sync-inventory: ask the remote side to sync inventory
                        - activate: register the callback URL with the remote side
                        - deactivate: unregister and clear sync state
                        - diagnostics: show remote versions and registration status
                        - validate-config: check the configuration
                        - start-api: start the callback/webhook API server
                    """,
                    choices=COMMANDS,
                    )
    p.add_argument("ref", nargs="?", default=None, help="Remote order increment id (import-order)")

    p.add_argument(
        "--ordersync_config",
        type=str,
        help="""
                Path to the configuration JSON file:
                - api_url, api_login, api_password: remote REST API connection
                - auto_fulfill_status: order status to import, 'custom' or '-'
                - shipping_method_config: shipping method rules
                - order_transform_script: transform name, module:attr or file.py[:attr]
            """,
        default=None,
    )
    p.add_argument("--env-file", type=str, default=None, help="Path to a .env file with ORDERSYNC_* overrides")

    p.add_argument(
        "--api-host",
        default="0.0.0.0",
        type=str,
        help="API server host address (default: 0.0.0.0)"
    )
    p.add_argument(
        "--api-port",
        default=8000,
        type=int,
        help="API server port (default: 8000)"
    )

    return p.parse_args(argv)


def build_plugin(config: ConfigStore, queued: bool = True):
    from ..events import InlineEventBus, QueuedEventBus
    from ..plugin import SyncPlugin

    bus = QueuedEventBus() if queued else InlineEventBus()
    return SyncPlugin.from_config(config, bus=bus)


def _print_lines(lines):
    for line in lines:
        print(line)


def main(argv=None) -> int:
    args = parse_args(argv)

    DEBUG = bool(os.environ.get("DEBUG", False))
    setup_logging(debug=DEBUG)

    load_dotenv(args.env_file)
    config_path = args.ordersync_config or default_config_path()
    config = ConfigStore.from_file(config_path)

    from ..errors import SyncError

    try:
        if args.command == "validate-config":
            from ..events import InlineEventBus
            from ..plugin import SyncPlugin
            from ..local import SqlLocalSystem
            from ..state import StateStore
            from ..db_setup import init_database

            session_factory = init_database(":memory:")
            plugin = SyncPlugin(config, SqlLocalSystem(session_factory), StateStore(session_factory), bus=InlineEventBus())
            problems = plugin.validate_config()
            if problems:
                for problem in problems:
                    lgr.error(problem)
                return 1
            lgr.info("Configuration is valid")
            return 0

        if args.command == "start-api":
            lgr.info("Starting ordersync API server")
            import uvicorn
            from ..api_server import configure

            app = configure(build_plugin(config, queued=False))
            lgr.info(f"API server starting on {args.api_host}:{args.api_port}")
            uvicorn.run(app, host=args.api_host, port=args.api_port)
            return 0

        if args.command == "worker":
            from ..worker import STOP_EVENT, sync_orders_repeatedly

            plugin = build_plugin(config)
            interval = int(config.get("sync_interval", 300))
            try:
                sync_orders_repeatedly(plugin, interval=interval)
            except KeyboardInterrupt:
                lgr.info("KeyboardInterrupt received. Stopping worker...")
                STOP_EVENT.set()
            return 0

        plugin = build_plugin(config)

        if args.command in ("sync-orders", "cron-sync"):
            if args.command == "sync-orders":
                dispatched = plugin.sync_orders()
            else:
                dispatched = plugin.cron_sync_orders()
            completed = plugin.bus.drain()
            lgr.info(f"{dispatched} orders queued, {completed} events processed")

        elif args.command == "import-order":
            if not args.ref:
                lgr.error("import-order requires a remote order increment id")
                return 2
            result = plugin.import_order_event({"increment_id": args.ref})
            lgr.info(f"Remote Order # {args.ref}: {result}")

        elif args.command == "sync-inventory":
            plugin.sync_inventory()

        elif args.command == "activate":
            warnings = plugin.activate()
            for warning in warnings:
                lgr.warning(warning)
            return 1 if warnings else 0

        elif args.command == "deactivate":
            errors = plugin.deactivate()
            for error in errors:
                lgr.error(error)
            return 1 if errors else 0

        elif args.command == "diagnostics":
            _print_lines(plugin.connection_diagnostics())

    except SyncError as e:
        lgr.error(f"{args.command} failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
