"""
Command-line tool for temporal tables.

Commands:
- generate: Print the static versioning trigger of a table
- render: Generate and install the trigger
- register: Store a table's configuration (and install its trigger)
- unregister: Remove a stored configuration
- list: Show stored configurations
- rerender: Regenerate triggers from stored configurations
- import: Register every configuration in a YAML or JSON file
- init-metadata: Create the configuration table

Usage:
    temporal-tables generate users users_history --increment-version > users.sql
    temporal-tables register public.users users_history --mitigate-update-conflicts
    temporal-tables rerender --all

Invariants:
    - Errors are reported on stderr with a non-zero exit code
    - generate never changes the database

How to change safely:
    - Add new commands, don't modify existing ones
    - Option flags mirror the generator keyword arguments one to one
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
import argparse
import json
import logging
import sys

import json_log_formatter
import yaml
from sqlalchemy import create_engine

from ..catalog.base import resolve_table
from ..codegen.generator import (
    GeneratedTrigger,
    generate_static_versioning_trigger,
    render_versioning_trigger,
)
from ..config import Settings
from ..errors import ConfigurationNotFoundError, TemporalTablesError
from ..listener import SchemaChangeListener
from ..metadata.store import VersioningConfig, VersioningConfigStore
from ..storage.base import TriggerInstaller
from ..storage.postgres import PostgresInstaller
from ..versioning.options import DEFAULT_SYS_PERIOD, DEFAULT_VERSION_COLUMN

logger = logging.getLogger(__name__)

_FLAGS = (
    ("ignore_unchanged_values", "Skip UPDATEs that change no compared column"),
    ("include_current_version_in_history", "Keep an open history row for the current version"),
    ("mitigate_update_conflicts", "Nudge colliding timestamps forward instead of failing"),
    ("enable_migration_mode", "Backfill missing open history rows"),
    ("increment_version", "Maintain a version counter column"),
)


def setup_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


class VersioningCLI:
    """Operations behind the temporal-tables commands.

    Example:
        >>> cli = VersioningCLI(PostgresInstaller(engine), VersioningConfigStore(engine))
        >>> print(cli.generate("users", "users_history"))
    """

    def __init__(self, installer: TriggerInstaller, store: VersioningConfigStore) -> None:
        self.installer = installer
        self.store = store

    def generate(self, table: str, history: str, **options: Any) -> str:
        return generate_static_versioning_trigger(self.installer.catalog, table, history, **options)

    def render(self, table: str, history: str, **options: Any) -> GeneratedTrigger:
        return render_versioning_trigger(self.installer, table, history, **options)

    def register(self, config: VersioningConfig, install: bool = True) -> Optional[GeneratedTrigger]:
        """Store a configuration, then install its trigger.

        The trigger is generated first so a configuration that does not
        match the schema is never stored.
        """
        generated = None
        if install:
            generated = render_versioning_trigger(self.installer, **config.generator_kwargs())
        self.store.put(config)
        return generated

    def unregister(self, table: str) -> bool:
        return self.store.remove(resolve_table(self.installer.catalog, table))

    def list(self) -> List[Dict[str, Any]]:
        return [config.to_dict() for config in self.store.list()]

    def rerender(self, tables: Sequence[str] = ()) -> List[GeneratedTrigger]:
        """Regenerate triggers of the named tables, or of all stored ones.

        Raises:
            ConfigurationNotFoundError: If a named table has no stored
                configuration
        """
        if not tables:
            return SchemaChangeListener(self.store, self.installer).rerender_all()
        generated = []
        for name in tables:
            table = resolve_table(self.installer.catalog, name)
            config = self.store.get(table)
            if config is None:
                raise ConfigurationNotFoundError(
                    f'no versioning configuration for table "{table}"',
                    details={"table": str(table)},
                    hint="register the table first",
                )
            generated.append(render_versioning_trigger(self.installer, **config.generator_kwargs()))
        return generated

    def import_file(self, path: str, install: bool = True) -> List[VersioningConfig]:
        """Register configurations from a YAML or JSON file.

        The file holds a list of mappings, or a mapping with a ``tables``
        list. Every entry is validated before anything is stored.
        """
        with open(path) as f:
            data = yaml.safe_load(f)
        if isinstance(data, dict):
            data = data.get("tables", [])
        if not isinstance(data, list):
            raise TemporalTablesError(f"{path}: expected a list of table configurations")

        default_schema = self.installer.catalog.current_schema()
        configs = [VersioningConfig.from_mapping(entry, default_schema) for entry in data]
        for config in configs:
            self.register(config, install=install)
        logger.info(f"Imported {len(configs)} configuration(s) from {path}", extra={"path": path})
        return configs

    def init_metadata(self) -> None:
        self.store.create_table()


def _add_table_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("table", help="Versioned table, optionally schema-qualified")
    parser.add_argument("history", help="History table, optionally schema-qualified")
    parser.add_argument("--sys-period", default=DEFAULT_SYS_PERIOD, help="Period column name")
    for flag, help_text in _FLAGS:
        parser.add_argument("--" + flag.replace("_", "-"), action="store_true", help=help_text)
    parser.add_argument(
        "--version-column-name", default=DEFAULT_VERSION_COLUMN, help="Version counter column name"
    )


def _options(args: argparse.Namespace) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "sys_period": args.sys_period,
        "version_column_name": args.version_column_name,
    }
    for flag, _ in _FLAGS:
        options[flag] = getattr(args, flag)
    return options


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="temporal-tables", description="System-versioned table triggers for PostgreSQL"
    )
    parser.add_argument("--database-url", help="Overrides TEMPORAL_TABLES_DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_parser = subparsers.add_parser("generate", help="Print the static trigger SQL")
    _add_table_arguments(generate_parser)
    generate_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    render_parser = subparsers.add_parser("render", help="Generate and install the trigger")
    _add_table_arguments(render_parser)

    register_parser = subparsers.add_parser("register", help="Store a configuration")
    _add_table_arguments(register_parser)
    register_parser.add_argument(
        "--no-install", action="store_true", help="Store without installing the trigger"
    )

    unregister_parser = subparsers.add_parser("unregister", help="Remove a stored configuration")
    unregister_parser.add_argument("table")

    list_parser = subparsers.add_parser("list", help="Show stored configurations")
    list_parser.add_argument("--format", choices=["text", "json"], default="text")

    rerender_parser = subparsers.add_parser("rerender", help="Regenerate stored triggers")
    rerender_parser.add_argument("tables", nargs="*", help="Tables to regenerate")
    rerender_parser.add_argument("--all", action="store_true", help="Regenerate every stored table")

    import_parser = subparsers.add_parser("import", help="Register configurations from a file")
    import_parser.add_argument("file", help="YAML or JSON file")
    import_parser.add_argument("--no-install", action="store_true")

    subparsers.add_parser("init-metadata", help="Create the configuration table")
    return parser


def run(cli: VersioningCLI, args: argparse.Namespace) -> int:
    """Execute a parsed command. Returns the exit code."""
    if args.command == "generate":
        sql = cli.generate(args.table, args.history, **_options(args))
        if args.output:
            with open(args.output, "w") as f:
                f.write(sql)
            print(f"Trigger written to {args.output}", file=sys.stderr)
        else:
            print(sql, end="")

    elif args.command == "render":
        generated = cli.render(args.table, args.history, **_options(args))
        print(f"Installed {generated.trigger_name} on {generated.table}")

    elif args.command == "register":
        catalog = cli.installer.catalog
        table = resolve_table(catalog, args.table)
        history = resolve_table(catalog, args.history)
        options = _options(args)
        config = VersioningConfig(
            table_name=table.name,
            table_schema=table.schema,
            history_table=history.name,
            history_table_schema=history.schema,
            **options,
        )
        cli.register(config, install=not args.no_install)
        print(f"Registered {config.table} -> {config.history}")

    elif args.command == "unregister":
        if not cli.unregister(args.table):
            print(f"No configuration stored for {args.table}", file=sys.stderr)
            return 1
        print(f"Unregistered {args.table}")

    elif args.command == "list":
        configs = cli.list()
        if args.format == "json":
            print(json.dumps(configs, indent=2, sort_keys=True))
        elif not configs:
            print("No versioned tables")
        else:
            for config in configs:
                enabled = [flag for flag, _ in _FLAGS if config[flag]]
                print(
                    f"{config['table_schema']}.{config['table_name']} -> "
                    f"{config['history_table_schema']}.{config['history_table']} "
                    f"[{', '.join(enabled) or 'defaults'}]"
                )

    elif args.command == "rerender":
        if not args.tables and not args.all:
            print("Name tables to regenerate or pass --all", file=sys.stderr)
            return 2
        for generated in cli.rerender(args.tables):
            print(f"Regenerated {generated.trigger_name} on {generated.table}")

    elif args.command == "import":
        configs = cli.import_file(args.file, install=not args.no_install)
        print(f"Imported {len(configs)} configuration(s)")

    elif args.command == "init-metadata":
        cli.init_metadata()
        print(f"Created {cli.store.table.fullname}")

    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(settings)

    engine = create_engine(args.database_url or settings.database_url)
    cli = VersioningCLI(
        PostgresInstaller(engine),
        VersioningConfigStore(engine, schema=settings.metadata_schema),
    )
    try:
        return run(cli, args)
    except TemporalTablesError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
