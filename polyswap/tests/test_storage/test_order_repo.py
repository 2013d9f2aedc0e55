"""Tests for order, market and workflow-event repositories."""

import sqlite3

import pytest

from polyswap.models.order import Market, OrderStatus
from polyswap.storage import event_repo, market_repo, order_repo
from polyswap.tests.fakes import POLYMARKET_ORDER_ID, SAFE, USDC

TX_HASH = "0x" + "11" * 32
ORDER_HASH = "0x" + "22" * 32


def _make_live(db: sqlite3.Connection, order_id: int) -> None:
    order_repo.set_polymarket_order_hash(db, order_id, POLYMARKET_ORDER_ID)
    order_repo.record_transaction(db, order_id, TX_HASH, order_hash=ORDER_HASH, block_number=42)


class TestCreateAndRead:
    def test_create_draft(self, db: sqlite3.Connection, draft_order_id: int):
        order = order_repo.require_order(db, draft_order_id)
        assert order.status == OrderStatus.DRAFT
        assert order.owner == SAFE.lower()
        assert order.sell_token == USDC
        assert order.sell_amount == 100
        assert order.polymarket_order_hash is None
        assert order.transaction_hash is None

    def test_large_amounts_round_trip(self, db: sqlite3.Connection, market: Market):
        big = 2**200
        order_id = order_repo.create_draft_order(
            db, SAFE, USDC, USDC, big, big - 1, 1, 2, market_id=market.id
        )
        order = order_repo.require_order(db, order_id)
        assert order.sell_amount == big
        assert order.to_dict()["sell_amount"] == str(big)

    def test_missing_order(self, db: sqlite3.Connection):
        assert order_repo.get_order(db, 999) is None
        with pytest.raises(order_repo.OrderNotFoundError):
            order_repo.require_order(db, 999)

    def test_get_by_hash_scoped_to_owner(self, db: sqlite3.Connection, draft_order_id: int):
        _make_live(db, draft_order_id)
        assert order_repo.get_order_by_hash(db, ORDER_HASH.upper().replace("0X", "0x")).id == draft_order_id
        assert order_repo.get_order_by_hash(db, ORDER_HASH, SAFE.upper().replace("0X", "0x")) is not None
        assert order_repo.get_order_by_hash(db, ORDER_HASH, "0x" + "99" * 20) is None

    def test_get_by_polymarket_hash(self, db: sqlite3.Connection, draft_order_id: int):
        order_repo.set_polymarket_order_hash(db, draft_order_id, POLYMARKET_ORDER_ID)
        assert order_repo.get_order_by_polymarket_hash(db, POLYMARKET_ORDER_ID).id == draft_order_id

    def test_list_by_owner_paginates(self, db: sqlite3.Connection, market: Market):
        ids = [
            order_repo.create_draft_order(db, SAFE, USDC, USDC, 1, 1, 1, 2, market_id=market.id)
            for _ in range(3)
        ]
        page = order_repo.list_orders_by_owner(db, SAFE, limit=2)
        assert [o.id for o in page] == [ids[2], ids[1]]
        rest = order_repo.list_orders_by_owner(db, SAFE, limit=2, offset=2)
        assert [o.id for o in rest] == [ids[0]]


class TestPolymarketCheckpoint:
    def test_written_once(self, db: sqlite3.Connection, draft_order_id: int):
        assert order_repo.set_polymarket_order_hash(db, draft_order_id, POLYMARKET_ORDER_ID) is True
        assert order_repo.set_polymarket_order_hash(db, draft_order_id, "0xother") is False
        order = order_repo.require_order(db, draft_order_id)
        assert order.polymarket_order_hash == POLYMARKET_ORDER_ID

    def test_missing_order_raises(self, db: sqlite3.Connection):
        with pytest.raises(order_repo.OrderNotFoundError):
            order_repo.set_polymarket_order_hash(db, 404, POLYMARKET_ORDER_ID)


class TestTransactionCheckpoint:
    def test_requires_polymarket_leg(self, db: sqlite3.Connection, draft_order_id: int):
        with pytest.raises(order_repo.CheckpointError):
            order_repo.record_transaction(db, draft_order_id, TX_HASH)
        order = order_repo.require_order(db, draft_order_id)
        assert order.status == OrderStatus.DRAFT
        assert order.transaction_hash is None

    def test_marks_live_atomically(self, db: sqlite3.Connection, draft_order_id: int):
        _make_live(db, draft_order_id)
        order = order_repo.require_order(db, draft_order_id)
        assert order.status == OrderStatus.LIVE
        assert order.transaction_hash == TX_HASH
        assert order.order_hash == ORDER_HASH
        assert order.block_number == 42

    def test_second_write_is_noop(self, db: sqlite3.Connection, draft_order_id: int):
        _make_live(db, draft_order_id)
        assert order_repo.record_transaction(db, draft_order_id, "0x" + "33" * 32) is False
        assert order_repo.require_order(db, draft_order_id).transaction_hash == TX_HASH


class TestUpdateStatus:
    def test_live_to_canceled(self, db: sqlite3.Connection, draft_order_id: int):
        _make_live(db, draft_order_id)
        assert order_repo.update_status(db, draft_order_id, OrderStatus.CANCELED) is True
        assert order_repo.require_order(db, draft_order_id).status == OrderStatus.CANCELED

    def test_same_status_is_noop(self, db: sqlite3.Connection, draft_order_id: int):
        _make_live(db, draft_order_id)
        order_repo.update_status(db, draft_order_id, OrderStatus.CANCELED)
        assert order_repo.update_status(db, draft_order_id, OrderStatus.CANCELED) is False

    def test_draft_cannot_be_canceled(self, db: sqlite3.Connection, draft_order_id: int):
        with pytest.raises(order_repo.InvalidStatusTransition):
            order_repo.update_status(db, draft_order_id, OrderStatus.CANCELED)

    def test_live_only_via_transaction(self, db: sqlite3.Connection, draft_order_id: int):
        with pytest.raises(order_repo.CheckpointError):
            order_repo.update_status(db, draft_order_id, OrderStatus.LIVE)

    def test_no_way_back(self, db: sqlite3.Connection, draft_order_id: int):
        _make_live(db, draft_order_id)
        order_repo.update_status(db, draft_order_id, OrderStatus.FILLED)
        with pytest.raises(order_repo.InvalidStatusTransition):
            order_repo.update_status(db, draft_order_id, OrderStatus.CANCELED)


class TestMarketRepo:
    def test_upsert(self, db: sqlite3.Connection, market: Market):
        market_repo.save_market(db, Market(market.id, "Renamed?", market.condition_id, ["a", "b"]))
        stored = market_repo.get_market(db, market.id)
        assert stored.question == "Renamed?"
        assert stored.clob_token_ids == ["a", "b"]

    def test_missing(self, db: sqlite3.Connection):
        assert market_repo.get_market(db, "nope") is None


class TestEventRepo:
    def test_events_in_order(self, db: sqlite3.Connection, draft_order_id: int):
        event_repo.log_event(db, draft_order_id, "broadcast", "transaction")
        event_repo.log_event(db, draft_order_id, "broadcast", "error", "insufficient_balance", "low")
        events = event_repo.get_events_for_order(db, draft_order_id)
        assert [e["step"] for e in events] == ["transaction", "error"]
        assert events[1]["error_kind"] == "insufficient_balance"
