# Vaultkeeper - Entry Point
#
#   vaultkeeper [--host H] [--port P] [--db PATH]   serve the API (uvicorn)
#   vaultkeeper [--db PATH] resolve VALUE           print a resolved value
#
# Defaults come from the environment / .env (see core.config).

import argparse
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .core import (
    EventSeverity,
    EventType,
    configure_audit_logger,
    get_audit_logger,
    load_settings,
)
from .vault.services import VaultServices, set_vault_services


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultkeeper",
        description="Vaultkeeper - group hierarchy and reference resolution for a secrets vault",
    )
    parser.add_argument("--host", default=None, help="API host (default: VAULTKEEPER_HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="API port (default: VAULTKEEPER_PORT or 8000)")
    parser.add_argument("--db", default=None, help="Database path (default: VAULTKEEPER_DB_PATH)")
    parser.add_argument("--version", action="version", version=f"Vaultkeeper v{__version__}")

    subparsers = parser.add_subparsers(dest="command")
    resolve = subparsers.add_parser("resolve", help="Resolve a value that may hold a reference token")
    resolve.add_argument("value", help="Raw value, e.g. {REF:USERNAME@ITEM:<uuid>}")
    return parser


def main(argv=None) -> int:
    """Main entry point for Vaultkeeper."""
    args = build_parser().parse_args(argv)

    settings = load_settings()
    if args.db:
        settings = replace(settings, db_path=Path(args.db))
    if args.host:
        settings = replace(settings, host=args.host)
    if args.port:
        settings = replace(settings, port=args.port)

    configure_audit_logger(settings.audit_dir)
    services = VaultServices.from_settings(settings)
    set_vault_services(services)

    if args.command == "resolve":
        try:
            resolution = services.resolver.resolve_detailed(args.value)
        finally:
            set_vault_services(None)
        print("" if resolution.value is None else resolution.value)
        if resolution.error is not None:
            print(f"warning: {resolution.error}", file=sys.stderr)
            return 2
        return 0

    print(f"Starting Vaultkeeper API on {settings.host}:{settings.port} (db: {settings.db_path})")
    print("Press Ctrl+C to stop")

    from .api.main import start_api_server

    try:
        start_api_server(host=settings.host, port=settings.port)
    except KeyboardInterrupt:
        print("\nShutting down...")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Vaultkeeper stopped (user interrupt)",
        )
    except Exception as e:
        print(f"\nError: {e}")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.CRITICAL,
            message=f"Vaultkeeper crashed: {e}",
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
