"""Shared test fixtures."""

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from polyswap.config.schema import PolyswapConfig
from polyswap.execution.clob_client import ClobClient
from polyswap.models.order import Market
from polyswap.storage import market_repo, order_repo
from polyswap.storage.database import connect, run_migrations
from polyswap.tests.fakes import POLYMARKET_ORDER_ID, SAFE, USDC, WETH, FakeChain


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path: Path) -> sqlite3.Connection:
    """Migrated SQLite database in a temp directory."""
    conn = connect(db_path)
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def default_config() -> PolyswapConfig:
    return PolyswapConfig()


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "chain": {"rpc_url": "http://fake-rpc", "chain_id": 137},
        "polymarket": {"order_size": 5.0},
        "workflow": {"propagation_delay_seconds": 5},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def market(db: sqlite3.Connection) -> Market:
    m = Market(
        id="mkt-1",
        question="Will it rain in London tomorrow?",
        condition_id="0x" + "c0" * 32,
        clob_token_ids=["tok-yes", "tok-no"],
    )
    market_repo.save_market(db, m)
    return m


@pytest.fixture
def draft_order_id(db: sqlite3.Connection, market: Market) -> int:
    return order_repo.create_draft_order(
        db,
        owner=SAFE,
        sell_token=USDC,
        buy_token=WETH,
        sell_amount=100,
        min_buy_amount=1,
        start_timestamp=1_700_000_000,
        deadline_timestamp=1_800_000_000,
        market_id=market.id,
        outcome_selected=0,
        bet_percentage=40.0,
    )


@pytest.fixture
def py_clob() -> MagicMock:
    """py-clob-client double that accepts every order and cancel."""
    client = MagicMock()
    client.create_order.return_value = {"signed": True}
    client.post_order.return_value = {"success": True, "orderID": POLYMARKET_ORDER_ID}
    client.cancel.return_value = {"canceled": [POLYMARKET_ORDER_ID], "not_canceled": {}}
    return client


@pytest.fixture
def clob(py_clob: MagicMock) -> ClobClient:
    return ClobClient(client=py_clob)
