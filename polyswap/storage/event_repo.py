"""Append-only audit log of workflow transitions."""

import sqlite3


def log_event(
    conn: sqlite3.Connection,
    order_id: int | None,
    flow: str,
    step: str,
    error_kind: str | None = None,
    message: str = "",
) -> int:
    cursor = conn.execute(
        "INSERT INTO workflow_events (order_id, flow, step, error_kind, message) "
        "VALUES (?, ?, ?, ?, ?)",
        (order_id, flow, step, error_kind, message),
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_events_for_order(conn: sqlite3.Connection, order_id: int) -> list[dict]:
    rows = conn.execute(
        "SELECT * FROM workflow_events WHERE order_id = ? ORDER BY id",
        (order_id,),
    ).fetchall()
    return [dict(r) for r in rows]
