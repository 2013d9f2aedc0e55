"""Repository for prediction markets referenced by orders."""

import json
import sqlite3

from polyswap.models.order import Market


def save_market(conn: sqlite3.Connection, market: Market) -> None:
    """Insert or refresh a market."""
    conn.execute(
        "INSERT INTO markets (id, question, condition_id, clob_token_ids) "
        "VALUES (?, ?, ?, ?) "
        "ON CONFLICT(id) DO UPDATE SET question = excluded.question, "
        "clob_token_ids = excluded.clob_token_ids, updated_at = CURRENT_TIMESTAMP",
        (market.id, market.question, market.condition_id, json.dumps(market.clob_token_ids)),
    )
    conn.commit()


def get_market(conn: sqlite3.Connection, market_id: str) -> Market | None:
    row = conn.execute(
        "SELECT id, question, condition_id, clob_token_ids FROM markets WHERE id = ?",
        (market_id,),
    ).fetchone()
    if row is None:
        return None
    raw_ids = row["clob_token_ids"]
    token_ids = json.loads(raw_ids) if raw_ids else []
    return Market(
        id=row["id"],
        question=row["question"],
        condition_id=row["condition_id"],
        clob_token_ids=[str(t) for t in token_ids],
    )
