"""
Migration 001: Create the bill_links table.

Forward links from a source bill to the derivative bills created when its
line items were reclassified at approval time. One row per derivative.
"""

import sqlite3

VERSION = 1
NAME = "bill_links"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the bill_links table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS bill_links (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_bill_id INTEGER NOT NULL,
            derivative_bill_id INTEGER NOT NULL,
            target_category TEXT NOT NULL,
            amount TEXT NOT NULL,  -- Decimal as string
            item_count INTEGER NOT NULL,
            created_at TEXT NOT NULL,

            FOREIGN KEY (source_bill_id) REFERENCES bills(id),
            FOREIGN KEY (derivative_bill_id) REFERENCES bills(id),

            UNIQUE(derivative_bill_id)  -- A derivative has exactly one source
        )
        """
    )

    conn.execute("CREATE INDEX IF NOT EXISTS idx_bill_links_source ON bill_links(source_bill_id)")


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove the bill_links table."""
    conn.execute("DROP INDEX IF EXISTS idx_bill_links_source")
    conn.execute("DROP TABLE IF EXISTS bill_links")
