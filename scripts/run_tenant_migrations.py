from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from tenancy.config import load_settings
from tenancy.db.session import build_engine, build_session_factory
from tenancy.errors import TenancyError
from tenancy.logging_setup import setup_backend_logging
from tenancy.schema_migrations.runner import MigrationRunner, TenantSchemaStatus


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply pending tenant schema migrations")
    parser.add_argument("--slug", help="Only migrate this tenant")
    parser.add_argument("--status-only", action="store_true", help="Print schema status and exit")
    return parser.parse_args(argv)


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def print_status(rows: list[TenantSchemaStatus]) -> None:
    print(f"{'slug':<32} {'schema':<40} {'schema':<7} {'tables':<7} {'active':<7}")
    for row in rows:
        print(
            f"{row.slug:<32} {row.schema_name:<40} {_yes_no(row.schema_exists):<7} "
            f"{_yes_no(row.tables_exist):<7} {_yes_no(row.is_active):<7}"
        )


def run(runner: MigrationRunner, args: argparse.Namespace) -> int:
    print_status(runner.status_report())
    if args.status_only:
        return 0

    if args.slug:
        try:
            applied = runner.run_for_tenant(args.slug)
        except TenancyError as exc:
            print(f"Migration failed for {args.slug}: {exc.message}", file=sys.stderr)
            return 1
        print(f"Applied {len(applied)} migration(s) to {args.slug}")
        return 0

    result = runner.apply_to_all_active_tenants()
    print(f"Migrated: {', '.join(result.success) or '-'}")
    if result.failed:
        print(f"Failed: {', '.join(result.failed)}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings = load_settings()
    setup_backend_logging(settings)
    logging.getLogger("tenancy.cli").info("tenant_migrations_cli_started slug=%s", args.slug or "*")

    engine = build_engine(settings)
    try:
        runner = MigrationRunner(engine, build_session_factory(engine))
        return run(runner, args)
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
