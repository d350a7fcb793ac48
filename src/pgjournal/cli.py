"""CLI interface for pgjournal."""

import argparse
import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional

from pgjournal.config import (
    JOURNAL_DIRNAME,
    JOURNAL_FILENAME,
    DatabaseConfig,
    ServiceConfig,
)
from pgjournal.connection import close_pool, create_pool
from pgjournal.exceptions import MigrationError, PgjournalError
from pgjournal.journal import JournalStore
from pgjournal.log import configure_logging
from pgjournal.migrations import create_migration, discover_migrations
from pgjournal.runner import MigrationRunner, pending_migrations

# ANSI color codes
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

DEFAULT_MIGRATIONS_DIR = "db/migrations"


def print_table(headers: list[str], rows: list[list[str]]) -> None:
    """Print a simple aligned table."""
    if not rows:
        return

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))

    header_row = "  ".join(h.ljust(w) for h, w in zip(headers, widths))
    print(f"{BOLD}{header_row}{RESET}")
    print("-" * (len(header_row) + len(headers) * 2))

    for row in rows:
        print("  ".join(str(cell).ljust(w) for cell, w in zip(row, widths)))


def fail(error: Exception) -> NoReturn:
    """Print an error and exit with status 1."""
    print(f"\n{RED}ERROR:{RESET} {error}")
    sys.exit(1)


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def optional_count(value: str) -> Optional[int]:
    """Positional rollback count; anything but a positive integer means none."""
    try:
        number = int(value)
    except ValueError:
        return None
    return number if number >= 1 else None


def migrations_dir_for(args: argparse.Namespace) -> Path:
    return Path(
        args.migrations_dir
        or os.getenv("PGJOURNAL_MIGRATIONS_DIR", DEFAULT_MIGRATIONS_DIR)
    )


def journal_store_for(args: argparse.Namespace) -> JournalStore:
    override = os.getenv("PGJOURNAL_JOURNAL_PATH")
    if override:
        return JournalStore(override)
    return JournalStore(migrations_dir_for(args) / JOURNAL_DIRNAME / JOURNAL_FILENAME)


def get_config(args: argparse.Namespace) -> DatabaseConfig:
    """Get database configuration from environment and CLI overrides."""
    try:
        config = DatabaseConfig.from_env()
    except PgjournalError as e:
        fail(e)

    if config is None:
        print(f"{RED}ERROR:{RESET} DATABASE_URL environment variable not set")
        sys.exit(1)

    if args.migrations_dir:
        config = config.model_copy(update={"migrations_dir": args.migrations_dir})
    return config


def run_with_runner(
    args: argparse.Namespace,
    body: Callable[[MigrationRunner], Awaitable[None]],
) -> None:
    """Acquire a pool, run ``body`` with a runner and always release the pool."""

    async def _run():
        config = get_config(args)

        try:
            pool = await create_pool(config)
        except PgjournalError as e:
            fail(e)

        try:
            await body(MigrationRunner.from_pool(pool, config))
        except MigrationError as e:
            if e.completed:
                print(f"\n{YELLOW}Completed before the failure:{RESET}")
                for tag in e.completed:
                    print(f"  - {tag}")
            fail(e)
        except PgjournalError as e:
            fail(e)
        finally:
            await close_pool(pool)

    asyncio.run(_run())


def cmd_migrate(args: argparse.Namespace) -> None:
    """Apply pending migrations."""

    async def _migrate(runner: MigrationRunner) -> None:
        if args.dry_run:
            print(f"{BOLD}DRY RUN MODE - No changes will be made{RESET}\n")

        applied = await runner.migrate(dry_run=args.dry_run)

        if not applied:
            print(f"{YELLOW}No pending migrations to apply.{RESET}")
        elif args.dry_run:
            print(f"{BOLD}Would apply {len(applied)} migration(s):{RESET}")
            for tag in applied:
                print(f"  - {tag}")
        else:
            print(f"\n{GREEN}✓ Applied {len(applied)} migration(s):{RESET}")
            for tag in applied:
                print(f"  - {tag}")

    run_with_runner(args, _migrate)


def cmd_rollback(args: argparse.Namespace) -> None:
    """Rollback migrations."""
    target = args.target or None
    count = args.count or args.steps

    async def _rollback(runner: MigrationRunner) -> None:
        if args.dry_run:
            print(f"{BOLD}DRY RUN MODE - No changes will be made{RESET}\n")

        rolled_back = await runner.rollback(
            target=target, count=count, dry_run=args.dry_run
        )

        if not rolled_back:
            print(f"{YELLOW}No migrations to rollback.{RESET}")
        elif args.dry_run:
            print(f"{BOLD}Would rollback {len(rolled_back)} migration(s):{RESET}")
            for tag in rolled_back:
                print(f"  - {tag}")
        else:
            print(f"\n{GREEN}✓ Rolled back {len(rolled_back)} migration(s):{RESET}")
            for tag in rolled_back:
                print(f"  - {tag}")

    run_with_runner(args, _rollback)


def cmd_status(args: argparse.Namespace) -> None:
    """Show migration status."""
    try:
        journal = journal_store_for(args).read()
    except PgjournalError as e:
        fail(e)

    files = discover_migrations(migrations_dir_for(args))
    pending = pending_migrations(files, journal)
    entries = journal.entries if journal else []

    if journal is None:
        print(f"{YELLOW}No journal found; run 'pgjournal init' to create one.{RESET}")

    print(f"\n{BOLD}Migration Files:{RESET} {len(files)}")
    print(f"{BOLD}Applied Migrations:{RESET} {len(entries)}")
    print(f"{BOLD}Pending Migrations:{RESET} {len(pending)}")

    if entries:
        print(f"\n{BOLD}Applied:{RESET}")
        rows = []
        for entry in entries:
            when = datetime.fromtimestamp(entry.applied_at / 1000).isoformat(
                sep=" ", timespec="seconds"
            )
            rows.append([str(entry.index), entry.tag, when])
        print_table(["Idx", "Tag", "Applied At"], rows)

    if pending:
        print(f"\n{BOLD}Pending:{RESET}")
        rows = [
            [m.tag, "✓ down script" if m.has_down_script else f"{DIM}none{RESET}"]
            for m in pending
        ]
        print_table(["Tag", "Rollback"], rows)


def cmd_init(args: argparse.Namespace) -> None:
    """Create the migrations directory and an empty journal."""
    migrations_dir = migrations_dir_for(args)
    migrations_dir.mkdir(parents=True, exist_ok=True)
    print(f"✓ Created directory: {migrations_dir}")

    store = journal_store_for(args)
    existed = store.exists()
    try:
        store.scaffold(version=args.journal_version, dialect=args.dialect)
    except PgjournalError as e:
        fail(e)

    if existed:
        print(f"{DIM}Journal already exists: {store.path}{RESET}")
    else:
        print(f"✓ Created journal: {store.path}")

    print(f"\n{GREEN}Initialization complete!{RESET}")
    print("\nNext steps:")
    print("  1. Set DATABASE_URL environment variable")
    print("  2. Run 'pgjournal create <name>' to create your first migration")
    print("  3. Edit the migration file and run 'pgjournal migrate'")


def cmd_create(args: argparse.Namespace) -> None:
    """Create a new migration file and its down script."""
    try:
        up_file, down_file = create_migration(migrations_dir_for(args), args.name)
    except (ValueError, OSError) as e:
        fail(e)

    print(f"\n{GREEN}✓ Created migration files:{RESET}")
    print(f"  UP:   {up_file}")
    print(f"  DOWN: {down_file}")
    print("\nEdit these files to add your migration SQL.")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for pgjournal CLI."""
    parser = argparse.ArgumentParser(
        prog="pgjournal",
        description="pgjournal - journal-tracked SQL migrations for PostgreSQL. "
        "Runs 'migrate' when no command is given.",
    )
    parser.add_argument(
        "--migrations-dir",
        "-m",
        help=f"Migrations directory (default: $PGJOURNAL_MIGRATIONS_DIR or {DEFAULT_MIGRATIONS_DIR})",
    )
    parser.set_defaults(func=cmd_migrate, dry_run=False)

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Apply pending migrations")
    migrate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be applied without executing",
    )
    migrate_parser.set_defaults(func=cmd_migrate)

    # rollback [target] [count]
    rollback_parser = subparsers.add_parser("rollback", help="Rollback migrations")
    rollback_parser.add_argument(
        "target",
        nargs="?",
        help="Roll back every migration applied after this tag",
    )
    rollback_parser.add_argument(
        "count",
        nargs="?",
        type=optional_count,
        help="Number of most recent migrations to roll back (ignored unless positive)",
    )
    rollback_parser.add_argument(
        "--steps",
        "-s",
        type=positive_int,
        help="Number of migrations to rollback (default: 1)",
    )
    rollback_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be rolled back without executing",
    )
    rollback_parser.set_defaults(func=cmd_rollback)

    # status
    status_parser = subparsers.add_parser("status", help="Show migration status")
    status_parser.set_defaults(func=cmd_status)

    # init
    init_parser = subparsers.add_parser(
        "init", help="Create the migrations directory and journal"
    )
    init_parser.add_argument(
        "--journal-version", default="7", help="Journal schema version (default: 7)"
    )
    init_parser.add_argument(
        "--dialect", default="postgresql", help="SQL dialect (default: postgresql)"
    )
    init_parser.set_defaults(func=cmd_init)

    # create
    create_cmd_parser = subparsers.add_parser(
        "create", help="Create a new migration and its down script"
    )
    create_cmd_parser.add_argument("name", help="Migration name")
    create_cmd_parser.set_defaults(func=cmd_create)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for CLI."""
    parser = create_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on usage errors
        sys.exit(0 if e.code in (0, None) else 1)

    try:
        configure_logging(ServiceConfig.from_env())
    except PgjournalError as e:
        fail(e)

    args.func(args)


if __name__ == "__main__":
    main()
