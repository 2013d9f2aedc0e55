"""Repository for conditional swap orders and their checkpoints.

Checkpoint columns (`polymarket_order_hash`, `transaction_hash`) are written
with conditional updates so a repeated write is a no-op rather than an
overwrite. Status changes are validated against the forward-only lifecycle.
"""

import logging
import sqlite3

from polyswap.models.order import Order, OrderStatus, can_transition
from polyswap.storage.database import write_transaction

logger = logging.getLogger(__name__)


class OrderNotFoundError(Exception):
    def __init__(self, order_ref: int | str):
        super().__init__(f"Order not found: {order_ref}")
        self.order_ref = order_ref


class CheckpointError(Exception):
    """Raised when a checkpoint write would break checkpoint ordering."""


class InvalidStatusTransition(Exception):
    def __init__(self, current: OrderStatus, new: OrderStatus):
        super().__init__(f"Invalid status transition {current} -> {new}")
        self.current = current
        self.new = new


def create_draft_order(
    conn: sqlite3.Connection,
    owner: str,
    sell_token: str,
    buy_token: str,
    sell_amount: int,
    min_buy_amount: int,
    start_timestamp: int,
    deadline_timestamp: int,
    market_id: str | None = None,
    outcome_selected: int | None = None,
    bet_percentage: float | None = None,
    app_data: str | None = None,
) -> int:
    """Persist a new draft order. Returns the row id."""
    cursor = conn.execute(
        "INSERT INTO orders "
        "(owner, sell_token, buy_token, sell_amount, min_buy_amount, "
        "start_timestamp, deadline_timestamp, market_id, outcome_selected, "
        "bet_percentage, app_data, status) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'draft')",
        (
            owner.lower(),
            sell_token,
            buy_token,
            str(sell_amount),
            str(min_buy_amount),
            start_timestamp,
            deadline_timestamp,
            market_id,
            outcome_selected,
            bet_percentage,
            app_data,
        ),
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_order(conn: sqlite3.Connection, order_id: int) -> Order | None:
    row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
    if row is None:
        return None
    return Order.from_row(dict(row))


def require_order(conn: sqlite3.Connection, order_id: int) -> Order:
    order = get_order(conn, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def get_order_by_hash(
    conn: sqlite3.Connection, order_hash: str, owner: str | None = None
) -> Order | None:
    """Get an order by its conditional-order hash, optionally scoped to an owner."""
    sql = "SELECT * FROM orders WHERE lower(order_hash) = ?"
    params: list = [order_hash.lower()]
    if owner is not None:
        sql += " AND owner = ?"
        params.append(owner.lower())
    row = conn.execute(sql, params).fetchone()
    if row is None:
        return None
    return Order.from_row(dict(row))


def get_order_by_polymarket_hash(
    conn: sqlite3.Connection, polymarket_order_hash: str
) -> Order | None:
    row = conn.execute(
        "SELECT * FROM orders WHERE lower(polymarket_order_hash) = ?",
        (polymarket_order_hash.lower(),),
    ).fetchone()
    if row is None:
        return None
    return Order.from_row(dict(row))


def list_orders_by_owner(
    conn: sqlite3.Connection, owner: str, limit: int = 100, offset: int = 0
) -> list[Order]:
    rows = conn.execute(
        "SELECT * FROM orders WHERE owner = ? ORDER BY created_at DESC, id DESC "
        "LIMIT ? OFFSET ?",
        (owner.lower(), limit, offset),
    ).fetchall()
    return [Order.from_row(dict(r)) for r in rows]


def set_polymarket_order_hash(
    conn: sqlite3.Connection, order_id: int, polymarket_order_hash: str
) -> bool:
    """Write the off-chain checkpoint once. Returns True if this call wrote it."""
    cursor = conn.execute(
        "UPDATE orders SET polymarket_order_hash = ?, updated_at = CURRENT_TIMESTAMP "
        "WHERE id = ? AND polymarket_order_hash IS NULL AND status = 'draft'",
        (polymarket_order_hash, order_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        require_order(conn, order_id)
        logger.info("Order %d already has an off-chain leg, keeping it", order_id)
        return False
    return True


def record_transaction(
    conn: sqlite3.Connection,
    order_id: int,
    transaction_hash: str,
    order_hash: str | None = None,
    block_number: int | None = None,
    handler: str | None = None,
) -> bool:
    """Write the on-chain checkpoint and mark the order live, atomically.

    Requires the off-chain checkpoint. Returns True if this call wrote it,
    False if the order already carried a transaction hash.
    """
    with write_transaction(conn):
        order = require_order(conn, order_id)
        if order.polymarket_order_hash is None:
            raise CheckpointError(
                f"Order {order_id} has no Polymarket order; refusing to record "
                f"transaction {transaction_hash}"
            )
        if order.transaction_hash is not None:
            return False
        if not can_transition(order.status, OrderStatus.LIVE):
            raise InvalidStatusTransition(order.status, OrderStatus.LIVE)
        conn.execute(
            "UPDATE orders SET transaction_hash = ?, "
            "order_hash = COALESCE(?, order_hash), "
            "block_number = COALESCE(?, block_number), "
            "handler = COALESCE(?, handler), "
            "status = 'live', updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND transaction_hash IS NULL",
            (transaction_hash, order_hash, block_number, handler, order_id),
        )
    return True


def update_status(
    conn: sqlite3.Connection, order_id: int, new_status: OrderStatus
) -> bool:
    """Move an order forward in its lifecycle.

    Re-applying the current status is a no-op returning False. Moving to
    `live` must go through record_transaction.
    """
    with write_transaction(conn):
        order = require_order(conn, order_id)
        if order.status == new_status:
            return False
        if new_status == OrderStatus.LIVE:
            raise CheckpointError("live status is only written with the transaction checkpoint")
        if not can_transition(order.status, new_status):
            raise InvalidStatusTransition(order.status, new_status)
        conn.execute(
            "UPDATE orders SET status = ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND status = ?",
            (new_status.value, order_id, order.status.value),
        )
    return True
