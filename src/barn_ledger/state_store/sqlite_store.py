"""
SQLite-based state store implementation.

Tables:
- categories: Expense category catalogue
- providers: Invoice vendors (extraction prompt, expected fields, contact)
- horses / people: Canonical registry
- horse_aliases / person_aliases: Learned alias stores (alias_key UNIQUE)
- bills: Bill records with extracted data and approval state
- bill_links: Source -> derivative forward links (migration 001)

Every public write runs in a single transaction; a failure rolls back the
whole write.
"""

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..errors import AlreadyApproved, BillNotFound, EntityNotFound
from ..schemas.bill import Bill, BillLink, BillStatus
from ..schemas.registry import (
    AliasRecord,
    EntityType,
    Horse,
    Person,
    Provider,
    RegistrySnapshot,
)

logger = logging.getLogger(__name__)

ALIAS_TABLES = {
    EntityType.HORSE: ("horse_aliases", "horses"),
    EntityType.PERSON: ("person_aliases", "people"),
}

PROVIDER_CONTACT_COLUMNS = (
    "full_name",
    "primary_contact_name",
    "primary_contact_phone",
    "address",
    "phone",
    "email",
    "account_number",
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class DerivativeSpec:
    """One derivative bill to create during a reclassification approval."""

    category: str
    extracted_data: dict[str, Any]
    amount: Decimal
    item_count: int


@dataclass
class BillDataUpdate:
    """New extracted data for a bill; None fields are left as stored."""

    extracted_data: dict[str, Any]
    unmatched_names: Optional[list[str]] = None
    has_unmatched_horses: Optional[bool] = None
    metadata: Optional[dict[str, Any]] = None


class StateStore:
    """
    SQLite-based state store for barn-ledger.

    Provides persistent tracking of:
    - Category catalogue and providers
    - Horses, people and their learned aliases
    - Bills, their parse results and approval state
    - Derivative bill links

    Each call opens its own connection, so concurrent parses on worker
    threads never share a connection.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _immediate_transaction(self) -> Iterator[sqlite3.Connection]:
        """Transaction that takes the write lock before its first read.

        Check-then-write sequences run in one of these, so a second writer
        waits and then reads what the first one committed.
        """
        with self._transaction() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    slug TEXT PRIMARY KEY,
                    name TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS providers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    slug TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    category TEXT,
                    extraction_prompt TEXT,
                    expected_fields TEXT,  -- JSON array
                    full_name TEXT,
                    primary_contact_name TEXT,
                    primary_contact_phone TEXT,
                    address TEXT,
                    phone TEXT,
                    email TEXT,
                    account_number TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS horses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS people (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'freelance',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """
            )

            for alias_table, entity_table in ALIAS_TABLES.values():
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {alias_table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        alias_key TEXT NOT NULL UNIQUE,
                        canonical_entity_id INTEGER NOT NULL,
                        canonical_name TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (canonical_entity_id) REFERENCES {entity_table}(id)
                    )
                """
                )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bills (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category TEXT NOT NULL,
                    provider_slug TEXT,
                    file_ref TEXT,
                    file_name TEXT,
                    billing_period TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    extracted_data TEXT,  -- NormalizedInvoice JSON
                    unmatched_names TEXT,  -- JSON array
                    has_unmatched_horses INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT,  -- JSON object
                    is_approved INTEGER NOT NULL DEFAULT 0,
                    approved_at TEXT,
                    source_bill_id INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (category) REFERENCES categories(slug)
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_bills_status ON bills(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bills_category ON bills(category)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_bills_source_bill_id ON bills(source_bill_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Category methods

    def seed_categories(self, categories: dict[str, str]) -> int:
        """Insert missing categories. Returns the number inserted."""
        inserted = 0
        with self._transaction() as conn:
            for slug, name in categories.items():
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO categories (slug, name) VALUES (?, ?)", (slug, name)
                )
                inserted += cursor.rowcount
        return inserted

    def category_exists(self, slug: str) -> bool:
        with self._transaction() as conn:
            return self._category_exists(conn, slug)

    @staticmethod
    def _category_exists(conn: sqlite3.Connection, slug: str) -> bool:
        row = conn.execute("SELECT 1 FROM categories WHERE slug = ?", (slug,)).fetchone()
        return row is not None

    def list_categories(self) -> list[tuple[str, str]]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT slug, name FROM categories ORDER BY slug").fetchall()
            return [(row["slug"], row["name"]) for row in rows]

    # Provider methods

    def upsert_provider(
        self,
        slug: str,
        name: str,
        category: str | None = None,
        extraction_prompt: str | None = None,
        expected_fields: list[str] | None = None,
    ) -> Provider:
        """Insert or update a provider by slug (contact fields are left alone)."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO providers (slug, name, category, extraction_prompt, expected_fields)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    name = excluded.name,
                    category = excluded.category,
                    extraction_prompt = excluded.extraction_prompt,
                    expected_fields = excluded.expected_fields
            """,
                (slug, name, category, extraction_prompt, json.dumps(expected_fields or [])),
            )
            row = conn.execute("SELECT * FROM providers WHERE slug = ?", (slug,)).fetchone()
            return self._provider_from_row(row)

    def get_provider(self, slug: str | None) -> Provider | None:
        if not slug:
            return None
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM providers WHERE slug = ?", (slug,)).fetchone()
            return self._provider_from_row(row) if row else None

    @staticmethod
    def _provider_from_row(row: sqlite3.Row) -> Provider:
        return Provider(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            category=row["category"],
            extraction_prompt=row["extraction_prompt"],
            expected_fields=json.loads(row["expected_fields"]) if row["expected_fields"] else [],
            **{column: row[column] for column in PROVIDER_CONTACT_COLUMNS},
        )

    @staticmethod
    def _apply_provider_patch(
        conn: sqlite3.Connection, provider_id: int, patch: dict[str, str]
    ) -> None:
        columns = [column for column in PROVIDER_CONTACT_COLUMNS if column in patch]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        conn.execute(
            f"UPDATE providers SET {assignments} WHERE id = ?",
            (*[patch[column] for column in columns], provider_id),
        )

    # Registry methods

    def add_horse(self, name: str, status: str = "active") -> Horse:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO horses (name, status, created_at) VALUES (?, ?, ?)",
                (name.strip(), status, _utc_now()),
            )
            return Horse(id=cursor.lastrowid or 0, name=name.strip(), status=status)

    def get_horse(self, horse_id: int) -> Horse | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM horses WHERE id = ?", (horse_id,)).fetchone()
            return Horse(id=row["id"], name=row["name"], status=row["status"]) if row else None

    def list_horses(self, active_only: bool = False) -> list[Horse]:
        with self._transaction() as conn:
            return self._list_horses(conn, active_only)

    @staticmethod
    def _list_horses(conn: sqlite3.Connection, active_only: bool) -> list[Horse]:
        query = "SELECT * FROM horses"
        if active_only:
            query += " WHERE status = 'active'"
        rows = conn.execute(query + " ORDER BY id").fetchall()
        return [Horse(id=row["id"], name=row["name"], status=row["status"]) for row in rows]

    def add_person(self, name: str, role: str = "freelance", is_active: bool = True) -> Person:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO people (name, role, is_active, created_at) VALUES (?, ?, ?, ?)",
                (name.strip(), role, int(is_active), _utc_now()),
            )
            return Person(id=cursor.lastrowid or 0, name=name.strip(), role=role, is_active=is_active)

    def get_person(self, person_id: int) -> Person | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM people WHERE id = ?", (person_id,)).fetchone()
            return self._person_from_row(row) if row else None

    def list_people(self, active_only: bool = False) -> list[Person]:
        with self._transaction() as conn:
            return self._list_people(conn, active_only)

    @classmethod
    def _list_people(cls, conn: sqlite3.Connection, active_only: bool) -> list[Person]:
        query = "SELECT * FROM people"
        if active_only:
            query += " WHERE is_active = 1"
        rows = conn.execute(query + " ORDER BY id").fetchall()
        return [cls._person_from_row(row) for row in rows]

    @staticmethod
    def _person_from_row(row: sqlite3.Row) -> Person:
        return Person(
            id=row["id"], name=row["name"], role=row["role"], is_active=bool(row["is_active"])
        )

    def get_entity(self, entity_type: EntityType, entity_id: int) -> Horse | Person:
        """
        Fetch a horse or person.

        Raises:
            EntityNotFound: No such record
        """
        entity = (
            self.get_horse(entity_id)
            if entity_type == EntityType.HORSE
            else self.get_person(entity_id)
        )
        if entity is None:
            raise EntityNotFound(f"{entity_type.value} {entity_id} not found")
        return entity

    # Alias methods

    def upsert_alias(
        self,
        entity_type: EntityType,
        alias_key: str,
        entity_id: int,
        canonical_name: str,
    ) -> AliasRecord:
        """Insert an alias, or overwrite its target (last write wins)."""
        alias_table, _ = ALIAS_TABLES[entity_type]
        now = _utc_now()
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {alias_table}
                (alias_key, canonical_entity_id, canonical_name, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(alias_key) DO UPDATE SET
                    canonical_entity_id = excluded.canonical_entity_id,
                    canonical_name = excluded.canonical_name,
                    updated_at = excluded.updated_at
            """,
                (alias_key, entity_id, canonical_name, now, now),
            )
        return AliasRecord(
            alias_key=alias_key,
            canonical_entity_id=entity_id,
            canonical_name=canonical_name,
            updated_at=now,
        )

    def get_alias(self, entity_type: EntityType, alias_key: str) -> AliasRecord | None:
        alias_table, _ = ALIAS_TABLES[entity_type]
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM {alias_table} WHERE alias_key = ?", (alias_key,)
            ).fetchone()
            return self._alias_from_row(row) if row else None

    def list_aliases(self, entity_type: EntityType) -> list[AliasRecord]:
        alias_table, _ = ALIAS_TABLES[entity_type]
        with self._transaction() as conn:
            rows = conn.execute(f"SELECT * FROM {alias_table} ORDER BY alias_key").fetchall()
            return [self._alias_from_row(row) for row in rows]

    @staticmethod
    def _alias_from_row(row: sqlite3.Row) -> AliasRecord:
        return AliasRecord(
            alias_key=row["alias_key"],
            canonical_entity_id=row["canonical_entity_id"],
            canonical_name=row["canonical_name"],
            updated_at=row["updated_at"],
        )

    def registry_snapshot(self) -> RegistrySnapshot:
        """Active horses/people and both alias stores, read in one transaction."""
        with self._transaction() as conn:
            aliases = {}
            for entity_type, (alias_table, _) in ALIAS_TABLES.items():
                rows = conn.execute(
                    f"SELECT alias_key, canonical_name FROM {alias_table}"
                ).fetchall()
                aliases[entity_type] = {row["alias_key"]: row["canonical_name"] for row in rows}
            return RegistrySnapshot(
                horses=self._list_horses(conn, active_only=True),
                people=self._list_people(conn, active_only=True),
                horse_aliases=aliases[EntityType.HORSE],
                person_aliases=aliases[EntityType.PERSON],
            )

    # Bill methods

    def create_bill(
        self,
        category: str,
        provider_slug: str | None = None,
        file_ref: str | None = None,
        file_name: str | None = None,
        billing_period: str | None = None,
        status: BillStatus = BillStatus.UPLOADING,
    ) -> Bill:
        """Create a bill record. Returns the stored bill."""
        now = _utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO bills
                (category, provider_slug, file_ref, file_name, billing_period, status,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (category, provider_slug, file_ref, file_name, billing_period, status.value, now, now),
            )
            return self._get_bill(conn, cursor.lastrowid or 0)

    def get_bill(self, bill_id: int) -> Bill:
        """
        Fetch a bill with its forward links.

        Raises:
            BillNotFound: No such bill
        """
        with self._transaction() as conn:
            return self._get_bill(conn, bill_id)

    def _get_bill(self, conn: sqlite3.Connection, bill_id: int) -> Bill:
        row = conn.execute("SELECT * FROM bills WHERE id = ?", (bill_id,)).fetchone()
        if row is None:
            raise BillNotFound(f"Bill {bill_id} not found")
        link_rows = conn.execute(
            "SELECT * FROM bill_links WHERE source_bill_id = ? ORDER BY id", (bill_id,)
        ).fetchall()
        return self._bill_from_row(row, link_rows)

    @staticmethod
    def _bill_from_row(row: sqlite3.Row, link_rows: list[sqlite3.Row]) -> Bill:
        return Bill(
            id=row["id"],
            category=row["category"],
            status=BillStatus(row["status"]),
            provider_slug=row["provider_slug"],
            file_ref=row["file_ref"],
            file_name=row["file_name"],
            billing_period=row["billing_period"],
            error_message=row["error_message"],
            extracted_data=json.loads(row["extracted_data"]) if row["extracted_data"] else None,
            unmatched_names=json.loads(row["unmatched_names"]) if row["unmatched_names"] else [],
            has_unmatched_horses=bool(row["has_unmatched_horses"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            is_approved=bool(row["is_approved"]),
            approved_at=row["approved_at"],
            source_bill_id=row["source_bill_id"],
            links=[
                BillLink(
                    derivative_bill_id=link["derivative_bill_id"],
                    target_category=link["target_category"],
                    amount=Decimal(link["amount"]),
                    item_count=link["item_count"],
                )
                for link in link_rows
            ],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def list_bills(self, status: BillStatus | None = None) -> list[Bill]:
        with self._transaction() as conn:
            if status is None:
                rows = conn.execute("SELECT id FROM bills ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT id FROM bills WHERE status = ? ORDER BY id", (status.value,)
                ).fetchall()
            return [self._get_bill(conn, row["id"]) for row in rows]

    def set_bill_status(self, bill_id: int, status: BillStatus) -> None:
        with self._transaction() as conn:
            self._require_bill(conn, bill_id)
            conn.execute(
                "UPDATE bills SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _utc_now(), bill_id),
            )

    @staticmethod
    def _require_bill(conn: sqlite3.Connection, bill_id: int) -> sqlite3.Row:
        row = conn.execute(
            "SELECT id, is_approved FROM bills WHERE id = ?", (bill_id,)
        ).fetchone()
        if row is None:
            raise BillNotFound(f"Bill {bill_id} not found")
        return row

    def save_parse_result(
        self,
        bill_id: int,
        extracted_data: dict[str, Any],
        unmatched_names: list[str],
        has_unmatched_horses: bool,
        metadata: dict[str, Any],
        status: BillStatus,
        provider_patch: Optional[tuple[int, dict[str, str]]] = None,
    ) -> None:
        """Persist a successful parse (and the provider contact patch) atomically."""
        with self._transaction() as conn:
            self._require_bill(conn, bill_id)
            conn.execute(
                """
                UPDATE bills
                SET extracted_data = ?, unmatched_names = ?, has_unmatched_horses = ?,
                    metadata = ?, status = ?, error_message = NULL, updated_at = ?
                WHERE id = ?
            """,
                (
                    json.dumps(extracted_data),
                    json.dumps(unmatched_names),
                    int(has_unmatched_horses),
                    json.dumps(metadata),
                    status.value,
                    _utc_now(),
                    bill_id,
                ),
            )
            if provider_patch is not None:
                provider_id, patch = provider_patch
                self._apply_provider_patch(conn, provider_id, patch)

    def mark_bill_error(self, bill_id: int, error_message: str) -> None:
        """Move a bill to the error status; extracted data is not touched."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE bills SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (BillStatus.ERROR.value, error_message, _utc_now(), bill_id),
            )

    def rewrite_bill_data(self, bill_id: int, rewrite: Callable[[Bill], BillDataUpdate]) -> Bill:
        """
        Read-modify-write of a bill's extracted data under the write lock.

        rewrite gets the stored bill and returns its new data. Concurrent
        rewrites of one bill run one after the other, each seeing the last
        one's result. An exception from rewrite leaves the bill untouched.

        Returns:
            The bill as written

        Raises:
            BillNotFound: No such bill
        """
        with self._immediate_transaction() as conn:
            update = rewrite(self._get_bill(conn, bill_id))
            self._write_bill_data(conn, bill_id, update)
            return self._get_bill(conn, bill_id)

    @staticmethod
    def _write_bill_data(conn: sqlite3.Connection, bill_id: int, update: BillDataUpdate) -> None:
        assignments = ["extracted_data = ?", "updated_at = ?"]
        values: list[Any] = [json.dumps(update.extracted_data), _utc_now()]
        if update.unmatched_names is not None:
            assignments.append("unmatched_names = ?")
            values.append(json.dumps(update.unmatched_names))
        if update.has_unmatched_horses is not None:
            assignments.append("has_unmatched_horses = ?")
            values.append(int(update.has_unmatched_horses))
        if update.metadata is not None:
            assignments.append("metadata = ?")
            values.append(json.dumps(update.metadata))
        conn.execute(
            f"UPDATE bills SET {', '.join(assignments)} WHERE id = ?", (*values, bill_id)
        )

    def approve_bill(self, bill_id: int) -> str:
        """
        Approve a bill without splitting.

        Raises:
            AlreadyApproved: The bill was approved before
        """
        now = _utc_now()
        with self._immediate_transaction() as conn:
            row = self._require_bill(conn, bill_id)
            if row["is_approved"]:
                raise AlreadyApproved(f"Bill {bill_id} is already approved")
            conn.execute(
                """
                UPDATE bills SET is_approved = 1, approved_at = ?, status = ?, updated_at = ?
                WHERE id = ?
            """,
                (now, BillStatus.DONE.value, now, bill_id),
            )
        return now

    def apply_reclassification(
        self,
        source_bill_id: int,
        kept_data: dict[str, Any],
        derivatives: list[DerivativeSpec],
    ) -> list[BillLink]:
        """
        Split a bill and approve it, as one transaction.

        Creates one derivative bill per DerivativeSpec, records forward links on the
        source, rewrites the source's extracted data and approves it. Derivative
        categories must exist in the catalogue.

        Raises:
            AlreadyApproved: The source bill was approved before
        """
        now = _utc_now()
        links: list[BillLink] = []
        with self._immediate_transaction() as conn:
            row = self._require_bill(conn, source_bill_id)
            if row["is_approved"]:
                raise AlreadyApproved(f"Bill {source_bill_id} is already approved")
            source = conn.execute(
                "SELECT provider_slug, billing_period FROM bills WHERE id = ?", (source_bill_id,)
            ).fetchone()

            for spec in derivatives:
                cursor = conn.execute(
                    """
                    INSERT INTO bills
                    (category, provider_slug, billing_period, status, extracted_data,
                     unmatched_names, has_unmatched_horses, metadata, source_bill_id,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, '[]', 0, ?, ?, ?, ?)
                """,
                    (
                        spec.category,
                        source["provider_slug"],
                        source["billing_period"],
                        BillStatus.DONE.value,
                        json.dumps(spec.extracted_data),
                        json.dumps({"reclassified_from": source_bill_id}),
                        source_bill_id,
                        now,
                        now,
                    ),
                )
                derivative_id = cursor.lastrowid or 0
                conn.execute(
                    """
                    INSERT INTO bill_links
                    (source_bill_id, derivative_bill_id, target_category, amount, item_count,
                     created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (
                        source_bill_id,
                        derivative_id,
                        spec.category,
                        str(spec.amount),
                        spec.item_count,
                        now,
                    ),
                )
                links.append(
                    BillLink(
                        derivative_bill_id=derivative_id,
                        target_category=spec.category,
                        amount=spec.amount,
                        item_count=spec.item_count,
                    )
                )

            conn.execute(
                """
                UPDATE bills
                SET extracted_data = ?, is_approved = 1, approved_at = ?, status = ?,
                    updated_at = ?
                WHERE id = ?
            """,
                (json.dumps(kept_data), now, BillStatus.DONE.value, now, source_bill_id),
            )
        return links

    def delete_bill(self, bill_id: int) -> list[str]:
        """
        Delete a bill, cascading to its derivatives and theirs.

        Deleting a derivative only detaches its link from its own source.

        Returns:
            File references of every deleted bill (for document cleanup)

        Raises:
            BillNotFound: No such bill
        """
        with self._immediate_transaction() as conn:
            self._require_bill(conn, bill_id)
            doomed = [bill_id, *self._descendant_ids(conn, bill_id)]

            file_refs: list[str] = []
            for doomed_id in doomed:
                row = conn.execute(
                    "SELECT file_ref FROM bills WHERE id = ?", (doomed_id,)
                ).fetchone()
                if row is None:
                    continue
                if row["file_ref"]:
                    file_refs.append(row["file_ref"])
                conn.execute(
                    "DELETE FROM bill_links WHERE source_bill_id = ? OR derivative_bill_id = ?",
                    (doomed_id, doomed_id),
                )
                conn.execute("DELETE FROM bills WHERE id = ?", (doomed_id,))

        logger.info("Deleted bill %d and %d derivative(s)", bill_id, len(doomed) - 1)
        return file_refs

    @staticmethod
    def _descendant_ids(conn: sqlite3.Connection, bill_id: int) -> list[int]:
        """Every bill derived from bill_id, directly or through another derivative."""
        found: list[int] = []
        seen = {bill_id}
        frontier = [bill_id]
        while frontier:
            source_id = frontier.pop(0)
            children = {
                row["derivative_bill_id"]
                for row in conn.execute(
                    "SELECT derivative_bill_id FROM bill_links WHERE source_bill_id = ?",
                    (source_id,),
                ).fetchall()
            }
            children.update(
                row["id"]
                for row in conn.execute(
                    "SELECT id FROM bills WHERE source_bill_id = ?", (source_id,)
                ).fetchall()
            )
            for child_id in sorted(children - seen):
                seen.add(child_id)
                found.append(child_id)
                frontier.append(child_id)
        return found

    def get_stats(self) -> dict[str, Any]:
        """Counts for the status command."""
        with self._transaction() as conn:
            by_status = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM bills GROUP BY status"
                ).fetchall()
            }
            unmatched = conn.execute(
                "SELECT COUNT(*) FROM bills WHERE has_unmatched_horses = 1"
            ).fetchone()[0]
            approved = conn.execute("SELECT COUNT(*) FROM bills WHERE is_approved = 1").fetchone()[0]
            horses = conn.execute("SELECT COUNT(*) FROM horses").fetchone()[0]
            people = conn.execute("SELECT COUNT(*) FROM people").fetchone()[0]
            horse_aliases = conn.execute("SELECT COUNT(*) FROM horse_aliases").fetchone()[0]
            person_aliases = conn.execute("SELECT COUNT(*) FROM person_aliases").fetchone()[0]
        return {
            "bills_by_status": by_status,
            "bills_with_unmatched_horses": unmatched,
            "bills_approved": approved,
            "horses": horses,
            "people": people,
            "horse_aliases": horse_aliases,
            "person_aliases": person_aliases,
        }
