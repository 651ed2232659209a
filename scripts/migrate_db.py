# =============================================================================
# MongoDB Schema Migration Runner
# =============================================================================
# Applies the operational store's schema migrations from
# services/mongodb/migrations/ in version order and records each applied
# version in schema_migrations. Also rolls back a single version on request.
#
# Usage:
#   python scripts/migrate_db.py                 # apply pending migrations
#   python scripts/migrate_db.py --dry-run       # list pending migrations
#   python scripts/migrate_db.py --rollback 001  # run down() of one version
# =============================================================================

import argparse
import importlib.util
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import CollectionInvalid, OperationFailure

from libs.models import MongoSettings

MIGRATIONS_COLLECTION = "schema_migrations"

_MIGRATION_FILE = re.compile(r"^(\d{3})_[A-Za-z0-9_]+\.py$")


@dataclass(frozen=True)
class Migration:
    """A loaded migration module."""

    version: str
    path: Path
    up: Callable[[Database], None]
    down: Optional[Callable[[Database], None]] = None


def default_migrations_dir() -> Path:
    """Repository layout first, then the container layout (/app)."""
    repo_dir = Path(__file__).resolve().parent.parent / "services" / "mongodb" / "migrations"
    if repo_dir.exists():
        return repo_dir
    return Path("/app/services/mongodb/migrations")


def discover_migrations(migrations_dir: Path) -> list[tuple[str, Path]]:
    """
    Find migration files named NNN_<name>.py.

    Returns:
        List of (version, file_path) tuples, sorted by version

    Raises:
        ValueError: If the directory is missing or two files share a version
    """
    if not migrations_dir.exists():
        raise ValueError(f"Migrations directory does not exist: {migrations_dir}")

    migrations: dict[str, Path] = {}
    for file_path in sorted(migrations_dir.glob("*.py")):
        if file_path.name.startswith("__"):
            continue

        match = _MIGRATION_FILE.match(file_path.name)
        if match is None:
            print(
                f"Warning: Skipping file '{file_path.name}' - not named NNN_<name>.py",
                file=sys.stderr,
            )
            continue

        version = match.group(1)
        if version in migrations:
            raise ValueError(
                f"Duplicate migration version '{version}' found in '{file_path.name}'"
            )
        migrations[version] = file_path

    return sorted(migrations.items())


def load_migration_module(file_path: Path) -> tuple[str, Callable[[Database], None]]:
    """
    Load a migration file and return its VERSION and up() function.

    Raises:
        ValueError: If VERSION or up() is missing or has the wrong type
        ImportError: If the file cannot be loaded
    """
    migration = load_migration(file_path)
    return migration.version, migration.up


def load_migration(file_path: Path) -> Migration:
    """
    Load a migration file, including its optional down() function.

    Raises:
        ValueError: If VERSION or up() is missing or has the wrong type
        ImportError: If the file cannot be loaded
    """
    spec = importlib.util.spec_from_file_location(f"migration_{file_path.stem}", file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load migration module from {file_path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    version = getattr(module, "VERSION", None)
    if version is None:
        raise ValueError(f"Migration '{file_path.name}' missing VERSION constant")
    if not isinstance(version, str):
        raise ValueError(
            f"Migration '{file_path.name}' VERSION must be a string, got {type(version).__name__}"
        )

    up_func = getattr(module, "up", None)
    if up_func is None:
        raise ValueError(f"Migration '{file_path.name}' missing up() function")
    if not callable(up_func):
        raise ValueError(
            f"Migration '{file_path.name}' up must be callable, got {type(up_func).__name__}"
        )

    down_func = getattr(module, "down", None)
    if down_func is not None and not callable(down_func):
        raise ValueError(f"Migration '{file_path.name}' down must be callable")

    return Migration(version=version, path=file_path, up=up_func, down=down_func)


def ensure_schema_migrations_collection(db: Database) -> None:
    """Create schema_migrations with a unique version index if needed."""
    try:
        db.create_collection(MIGRATIONS_COLLECTION)
    except CollectionInvalid:
        pass

    try:
        db[MIGRATIONS_COLLECTION].create_index("version", unique=True)
    except OperationFailure:
        pass


def get_applied_versions(db: Database) -> set[str]:
    return {doc["version"] for doc in db[MIGRATIONS_COLLECTION].find({}, {"version": 1})}


def pending_migrations(
    discovered: list[tuple[str, Path]], applied: set[str]
) -> list[tuple[str, Path]]:
    """Discovered migrations not yet applied, in version order."""
    return [(version, path) for version, path in discovered if version not in applied]


def apply_migration(db: Database, version: str, up_func: Callable[[Database], None]) -> None:
    """
    Run up() and record the version. A failed migration is not recorded, so
    it is retried on the next run.
    """
    start_time = time.time()

    try:
        up_func(db)
    except Exception as e:
        print(f"Migration {version} failed: {e}", file=sys.stderr)
        raise

    duration_ms = int((time.time() - start_time) * 1000)
    db[MIGRATIONS_COLLECTION].insert_one({
        "version": version,
        "applied_at": datetime.now(timezone.utc),
        "duration_ms": duration_ms,
    })
    print(f"Applied migration {version} (took {duration_ms}ms)")


def rollback_migration(db: Database, migration: Migration) -> None:
    """
    Run down() and forget the version.

    Raises:
        ValueError: If the migration has no down() function
    """
    if migration.down is None:
        raise ValueError(f"Migration {migration.version} has no down() function")

    migration.down(db)
    db[MIGRATIONS_COLLECTION].delete_one({"version": migration.version})
    print(f"Rolled back migration {migration.version}")


def check_replica_set(db: Database) -> bool:
    """
    Change streams need a replica set; warn when the server is standalone.

    Returns:
        True if the server is a replica set member
    """
    hello = db.client.admin.command("hello")
    if not hello.get("setName"):
        print(
            "Warning: MongoDB is not running as a replica set; "
            "the change feed sensor will not be able to open a change stream",
            file=sys.stderr,
        )
        return False
    return True


def migrate(db: Database, migrations_dir: Path, *, dry_run: bool = False) -> list[str]:
    """
    Apply every pending migration.

    Returns:
        Versions applied (or that would be applied, for a dry run)

    Raises:
        ValueError: If a file's VERSION does not match its name
    """
    ensure_schema_migrations_collection(db)

    discovered = discover_migrations(migrations_dir)
    print(f"Discovered {len(discovered)} migration(s)")

    pending = pending_migrations(discovered, get_applied_versions(db))
    if dry_run:
        for version, file_path in pending:
            print(f"Pending migration {version}: {file_path.name}")
        return [version for version, _ in pending]

    applied = []
    for version, file_path in pending:
        print(f"Applying migration {version} from {file_path.name}...")
        migration = load_migration(file_path)
        if migration.version != version:
            raise ValueError(
                f"Migration '{file_path.name}' VERSION '{migration.version}' "
                f"does not match filename version '{version}'"
            )
        apply_migration(db, version, migration.up)
        applied.append(version)

    return applied


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply MongoDB schema migrations")
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations only")
    parser.add_argument("--rollback", metavar="VERSION", help="Roll back one applied migration")
    parser.add_argument(
        "--migrations-dir",
        type=Path,
        default=None,
        help="Directory holding NNN_<name>.py migrations",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Migration runner entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = parse_args(argv)
    migrations_dir = args.migrations_dir or default_migrations_dir()

    try:
        settings = MongoSettings()
        client = MongoClient(settings.connection_string, serverSelectionTimeoutMS=10000)

        try:
            db = client[settings.database]
            check_replica_set(db)

            if args.rollback:
                ensure_schema_migrations_collection(db)
                if args.rollback not in get_applied_versions(db):
                    print(f"Migration {args.rollback} is not applied", file=sys.stderr)
                    return 1
                versions = dict(discover_migrations(migrations_dir))
                if args.rollback not in versions:
                    print(f"Migration {args.rollback} not found", file=sys.stderr)
                    return 1
                rollback_migration(db, load_migration(versions[args.rollback]))
                return 0

            applied = migrate(db, migrations_dir, dry_run=args.dry_run)
            if args.dry_run:
                print(f"{len(applied)} pending migration(s)")
            else:
                print(f"Applied {len(applied)} migration(s); schema is up to date")
            return 0

        finally:
            client.close()

    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
