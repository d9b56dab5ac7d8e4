"""dsqlkit - Entry Point

Usage:
    python -m dsqlkit [--config PATH] [--uri URI] [--log-level LEVEL] [COMMAND]

Commands:
    migrate   - Bootstrap the ledger and apply pending migrations (default)
    bootstrap - Bootstrap the ledger only
    status    - Show the ledger version and pending migrations
    version   - Show version

Examples:
    python -m dsqlkit --uri dsql://admin@abc.dsql.us-east-1.on.aws/postgres
    python -m dsqlkit --config config/production.toml migrate
    python -m dsqlkit status --log-level DEBUG
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

import structlog

from dsqlkit import __version__


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="dsqlkit",
        description="Bootstrap and migrate Aurora DSQL databases with OCC-aware retries",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"dsqlkit {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )

    parser.add_argument("--uri", default=None, help="Cluster URI (dsql://user@host/db)")
    parser.add_argument("--user", default=None, help="Database role (default: admin)")
    parser.add_argument("--region", default=None, help="AWS region of the cluster")
    parser.add_argument(
        "--migrations-dir",
        type=Path,
        default=None,
        help="Directory of goose-format .sql migrations",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Overall timeout in seconds for the whole sequence",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        default=None,
        help="Emit JSON log lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("migrate", help="Bootstrap the ledger and apply migrations")
    subparsers.add_parser("bootstrap", help="Bootstrap the ledger only")
    subparsers.add_parser("status", help="Show ledger version and pending migrations")
    subparsers.add_parser("version", help="Show version")

    return parser.parse_args(argv)


def find_config_file(specified: Optional[Path]) -> Optional[Path]:
    """Find configuration file."""
    if specified and specified.exists():
        return specified

    search_paths = [
        Path("config/default.toml"),
        Path("dsqlkit.toml"),
        Path("/etc/dsqlkit/dsqlkit.toml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def build_config(args: argparse.Namespace):
    """Load config and apply command-line overrides."""
    from dsqlkit.core.config import ConfigManager

    config_path = find_config_file(args.config)
    config = ConfigManager(config_path) if config_path else ConfigManager()

    overrides = {
        "database.uri": args.uri,
        "database.identity": args.user,
        "database.region": args.region,
        "database.timeout_seconds": args.timeout,
        "migrations.dir": str(args.migrations_dir) if args.migrations_dir else None,
        "logging.level": args.log_level,
        "logging.json": args.log_json,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)
    return config, config_path


def run(args: argparse.Namespace) -> int:
    """Run the requested command."""
    from dsqlkit.app import MigrationApp
    from dsqlkit.core.logging import bind_run_context, setup_logging
    from dsqlkit.core.retry import DsqlkitError

    config, config_path = build_config(args)

    setup_logging(
        level=config.get("logging.level", "INFO"),
        json_output=config.get_bool("logging.json", False),
        log_file=config.get("logging.file"),
    )
    log = structlog.get_logger("dsqlkit")

    command = args.command or "migrate"
    bind_run_context(command=command)
    log.info(
        "starting_dsqlkit",
        version=__version__,
        command=command,
        config=str(config_path) if config_path else "defaults",
    )

    try:
        app = MigrationApp.from_config(config)
        app.install_signal_handlers()

        if command == "bootstrap":
            result = app.bootstrap()
            print(f"ledger {result.table_name} ready")
        elif command == "status":
            status = app.status()
            print(f"current version: {status.current_version}")
            print(f"latest version:  {status.latest_version}")
            for migration in status.pending:
                print(f"  pending: {migration.path.name}")
        else:
            report = app.migrate()
            print(f"applied {len(report.applied)} migration(s), now at version {report.version}")
        return 0

    except DsqlkitError as e:
        log.error("fatal_error", error=str(e), error_type=type(e).__name__)
        return 1
    except Exception as e:
        log.exception("unexpected_error", error=str(e))
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"dsqlkit {__version__}")
        return 0

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
