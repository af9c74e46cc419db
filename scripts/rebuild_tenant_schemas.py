from __future__ import annotations

import argparse
import sys
import time

from dotenv import load_dotenv

from tenancy.config import load_settings
from tenancy.db.session import build_engine, build_session_factory
from tenancy.errors import TenancyError
from tenancy.logging_setup import setup_backend_logging
from tenancy.schema_migrations.runner import MigrationRunner


ABORT_WINDOW_SECONDS = 5


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Drop and rebuild tenant schemas from scratch. ALL TENANT DATA IN THEM IS LOST."
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--slug", help="Rebuild a single tenant schema")
    target.add_argument("--all", action="store_true", help="Rebuild every tenant schema, active or not")
    parser.add_argument("--confirm-all", help="Confirmation token required together with --all")
    parser.add_argument("--yes", action="store_true", help="Skip the abort window")
    return parser.parse_args(argv)


def run(runner: MigrationRunner, args: argparse.Namespace, wait_seconds: int = ABORT_WINDOW_SECONDS) -> int:
    target = "ALL tenants" if args.all else args.slug
    print(f"About to DROP and rebuild schema(s) for {target}.")
    if wait_seconds > 0 and not args.yes:
        print(f"Press Ctrl+C within {wait_seconds} seconds to abort...")
        time.sleep(wait_seconds)

    try:
        if args.all:
            result = runner.rebuild_all_tenant_schemas(confirm=args.confirm_all)
        else:
            runner.rebuild_tenant_schema(args.slug)
            print(f"Rebuilt schema for {args.slug}")
            return 0
    except TenancyError as exc:
        print(f"Rebuild refused: {exc.message}", file=sys.stderr)
        return 2

    print(f"Rebuilt: {', '.join(result.success) or '-'}")
    if result.failed:
        print(f"Failed: {', '.join(result.failed)}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings = load_settings()
    setup_backend_logging(settings)

    if not settings.allow_schema_rebuild:
        print("Schema rebuild is disabled; set ALLOW_SCHEMA_REBUILD=true", file=sys.stderr)
        return 2

    engine = build_engine(settings)
    try:
        runner = MigrationRunner(engine, build_session_factory(engine), allow_rebuild=True)
        return run(runner, args)
    except KeyboardInterrupt:
        print("Aborted.", file=sys.stderr)
        return 130
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
