"""
Migration runner for the bill store schema.

Migration modules live next to this file, named {version:03d}_{name}.py
(e.g. 001_bill_links.py), and define VERSION, NAME, upgrade(conn) and
optionally downgrade(conn). Each migration is applied in its own
transaction together with its row in the `migrations` table.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = __name__.rsplit(".", 1)[0]


@dataclass(frozen=True)
class Migration:
    """One versioned schema change."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Optional[Callable[[sqlite3.Connection], None]]


def get_all_migrations() -> list[Migration]:
    """Discover migration modules, sorted by version.

    A module missing VERSION, NAME or upgrade is a packaging bug and raises.
    """
    migrations = []
    for path in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{path.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    versions = [m.version for m in migrations]
    if len(versions) != len(set(versions)):
        raise RuntimeError(f"Duplicate migration versions: {versions}")
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations and records them in `migrations`."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def applied_versions(self) -> set[int]:
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def current_version(self) -> int:
        return max(self.applied_versions(), default=0)

    def pending(self) -> list[Migration]:
        applied = self.applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def _apply(self, migration: Migration) -> None:
        logger.info("Applying migration %03d_%s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d_%s failed", migration.version, migration.name)
            raise

    def _revert(self, migration: Migration) -> None:
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version:03d}_{migration.name} cannot be reverted"
            )
        logger.info("Reverting migration %03d_%s", migration.version, migration.name)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def run_pending(self) -> list[int]:
        """Apply every pending migration. Returns the versions applied."""
        applied = []
        for migration in self.pending():
            self._apply(migration)
            applied.append(migration.version)
        if applied:
            logger.info("Applied migrations: %s", applied)
        return applied

    def revert_to(self, target_version: int) -> list[int]:
        """Revert applied migrations above target_version, newest first."""
        applied = self.applied_versions()
        reverted = []
        for migration in reversed(get_all_migrations()):
            if migration.version > target_version and migration.version in applied:
                self._revert(migration)
                reverted.append(migration.version)
        return reverted
