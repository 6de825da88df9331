"""
SQLite schema for the fulfillment store.

Each table keeps the full pydantic snapshot as JSON in ``payload`` next to
the columns that conditional updates and lookups filter on. All statements
use IF NOT EXISTS, so applying the schema is idempotent.
"""

SCHEMA_VERSION = 1

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    number INTEGER NOT NULL UNIQUE,
    status TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    worker_id TEXT,
    item_id TEXT,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_status ON orders (status);
CREATE INDEX IF NOT EXISTS idx_orders_customer ON orders (customer_id);

CREATE TABLE IF NOT EXISTS order_status_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id TEXT NOT NULL REFERENCES orders (id),
    from_status TEXT NOT NULL,
    to_status TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    changed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_order ON order_status_history (order_id, id);

CREATE TABLE IF NOT EXISTS issues (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL REFERENCES orders (id),
    status TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- At most one unresolved issue per order
CREATE UNIQUE INDEX IF NOT EXISTS idx_issues_one_active
    ON issues (order_id) WHERE status != 'RESOLVED';

CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    available INTEGER NOT NULL DEFAULT 1,
    sold INTEGER NOT NULL DEFAULT 0,
    reserved_ticket_id TEXT,
    reserved_customer_id TEXT,
    payload TEXT NOT NULL,
    CHECK (available + sold + (reserved_ticket_id IS NOT NULL) = 1)
);

CREATE INDEX IF NOT EXISTS idx_items_category ON items (category, available);

CREATE TABLE IF NOT EXISTS tickets (
    id TEXT PRIMARY KEY,
    channel_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    is_open INTEGER NOT NULL DEFAULT 1,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tickets_channel ON tickets (channel_id, is_open);

CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER NOT NULL
);
"""


def get_schema() -> str:
    """Return the full SQLite schema script."""
    return SQLITE_SCHEMA


__all__ = ["SCHEMA_VERSION", "SQLITE_SCHEMA", "get_schema"]
