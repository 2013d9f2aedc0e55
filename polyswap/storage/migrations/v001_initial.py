"""Initial schema: conditional orders, markets, workflow events, config snapshots."""

import sqlite3

DDL = [
    # Markets the off-chain leg is placed on
    """
    CREATE TABLE IF NOT EXISTS markets (
        id TEXT PRIMARY KEY,
        question TEXT NOT NULL,
        condition_id TEXT NOT NULL UNIQUE,
        clob_token_ids TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,

    # Conditional swap orders (never deleted)
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_hash TEXT UNIQUE,
        owner TEXT NOT NULL,
        handler TEXT,
        sell_token TEXT NOT NULL,
        buy_token TEXT NOT NULL,
        sell_amount TEXT NOT NULL,
        min_buy_amount TEXT NOT NULL,
        start_timestamp INTEGER NOT NULL,
        deadline_timestamp INTEGER NOT NULL,
        app_data TEXT,
        market_id TEXT REFERENCES markets(id),
        outcome_selected INTEGER,
        bet_percentage REAL,
        polymarket_order_hash TEXT,
        transaction_hash TEXT,
        block_number INTEGER,
        status TEXT NOT NULL DEFAULT 'draft',
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CHECK (status IN ('draft', 'live', 'filled', 'canceled')),
        CHECK (deadline_timestamp > start_timestamp),
        CHECK (transaction_hash IS NULL OR polymarket_order_hash IS NOT NULL)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_owner ON orders(owner)",
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",
    (
        "CREATE INDEX IF NOT EXISTS idx_orders_polymarket_hash "
        "ON orders(polymarket_order_hash)"
    ),

    # Append-only audit trail of workflow transitions
    """
    CREATE TABLE IF NOT EXISTS workflow_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER REFERENCES orders(id),
        flow TEXT NOT NULL,
        step TEXT NOT NULL,
        error_kind TEXT,
        message TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_workflow_events_order ON workflow_events(order_id)",

    # Config snapshots
    """
    CREATE TABLE IF NOT EXISTS config_snapshots (
        config_hash TEXT PRIMARY KEY,
        config_json TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def up(conn: sqlite3.Connection) -> None:
    for stmt in DDL:
        conn.execute(stmt)
    conn.commit()
