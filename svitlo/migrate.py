#!/usr/bin/env python3
"""
Schema migrations for the Svitlo database.

Each file in svitlo/migrations/ is one step, named NNN_description.sql.
Steps are recorded in the schema_version table; a step runs when its
number is not recorded yet, so a file added below the latest applied
number is still picked up.

    python -m svitlo.migrate --db-path ./data/svitlo.db            # apply pending steps
    python -m svitlo.migrate --db-path ./data/svitlo.db --status   # list steps
    python -m svitlo.migrate --db-path ./data/svitlo.db --reset    # drop everything, start over
"""

import argparse
import logging
import os
import sqlite3
import sys
from pathlib import Path
from typing import List, NamedTuple, Optional, Set

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

SCHEMA_VERSION_DDL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    filename TEXT NOT NULL,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


class Migration(NamedTuple):
    version: int
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


def get_migration_files(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """SQL steps in version order; files without a numeric prefix are skipped."""
    migrations = []
    for path in directory.glob("*.sql") if directory.is_dir() else ():
        prefix = path.stem.partition("_")[0]
        if not prefix.isdigit():
            logger.warning(f"Skipping {path.name}: no version prefix")
            continue
        migrations.append(Migration(int(prefix), path))
    migrations.sort()
    return migrations


def get_connection(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(SCHEMA_VERSION_DDL)
    conn.commit()
    return conn


def get_applied_versions(conn: sqlite3.Connection) -> Set[int]:
    return {row[0] for row in conn.execute("SELECT version FROM schema_version")}


def get_current_version(conn: sqlite3.Connection) -> int:
    return max(get_applied_versions(conn), default=0)


def apply_migration(conn: sqlite3.Connection, migration: Migration) -> bool:
    logger.info(f"Applying {migration.name}")
    try:
        conn.executescript(migration.path.read_text(encoding='utf-8'))
        conn.execute(
            "INSERT INTO schema_version (version, filename) VALUES (?, ?)",
            (migration.version, migration.name)
        )
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"{migration.name} failed: {e}")
        return False
    return True


def migrate(db_path: str, directory: Path = MIGRATIONS_DIR) -> bool:
    """Apply every step not recorded yet. Stops at the first failure and returns False."""
    conn = get_connection(db_path)
    try:
        applied = get_applied_versions(conn)
        pending = [m for m in get_migration_files(directory) if m.version not in applied]
        if not pending:
            logger.info(f"Database {db_path} is up to date (version {get_current_version(conn)})")
            return True

        for migration in pending:
            if not apply_migration(conn, migration):
                return False
        logger.info(f"Database {db_path} migrated to version {get_current_version(conn)}")
        return True
    finally:
        conn.close()


def show_status(db_path: str, directory: Path = MIGRATIONS_DIR) -> None:
    if not os.path.exists(db_path):
        print(f"Database does not exist: {db_path}")
        return

    conn = get_connection(db_path)
    try:
        applied = get_applied_versions(conn)
        print(f"Database: {db_path} (version {get_current_version(conn)})")
        for migration in get_migration_files(directory):
            mark = "✓ applied" if migration.version in applied else "○ pending"
            print(f"  {migration.name} [{mark}]")
    finally:
        conn.close()


def reset_and_migrate(db_path: str, directory: Path = MIGRATIONS_DIR) -> bool:
    """Drops every table, schema_version included, then migrates from scratch."""
    if os.path.exists(db_path):
        logger.warning(f"Dropping all tables in {db_path}")
        conn = sqlite3.connect(db_path)
        try:
            tables = [row[0] for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )]
            for table in tables:
                conn.execute(f'DROP TABLE IF EXISTS "{table}"')
            conn.commit()
        finally:
            conn.close()
    return migrate(db_path, directory)


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    parser = argparse.ArgumentParser(description='Svitlo database migrations')
    parser.add_argument('--db-path', required=True, help='SQLite database file')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--status', action='store_true', help='list migrations and whether they are applied')
    group.add_argument('--reset', action='store_true', help='drop all data and migrate from scratch')
    parser.add_argument('--yes', action='store_true', help='do not ask before --reset')
    args = parser.parse_args(argv)

    if args.status:
        show_status(args.db_path)
        return

    if args.reset:
        if not args.yes and input("All data will be deleted. Type 'yes' to continue: ").strip().lower() != 'yes':
            print("Aborted.")
            return
        ok = reset_and_migrate(args.db_path)
    else:
        ok = migrate(args.db_path)
    sys.exit(0 if ok else 1)


if __name__ == '__main__':
    main()
