"""Tests for the Polymarket CLOB client wrapper."""

from unittest.mock import MagicMock

import pytest

from polyswap.execution.clob_client import ClobClient, ClobClientError
from polyswap.tests.fakes import POLYMARKET_ORDER_ID


class TestCreateOrder:
    def test_returns_order_id(self, clob: ClobClient, py_clob: MagicMock):
        order_id = clob.create_order("tok-yes", "BUY", 0.4, 5.0)
        assert order_id == POLYMARKET_ORDER_ID
        args = py_clob.create_order.call_args.args[0]
        assert args.token_id == "tok-yes"
        assert args.price == 0.4
        assert args.size == 5.0
        assert args.side == "BUY"

    def test_rejected_order(self, clob: ClobClient, py_clob: MagicMock):
        py_clob.post_order.return_value = {"success": False, "errorMsg": "not enough balance"}
        with pytest.raises(ClobClientError, match="not enough balance"):
            clob.create_order("tok-yes", "BUY", 0.4, 5.0)

    def test_missing_id(self, clob: ClobClient, py_clob: MagicMock):
        py_clob.post_order.return_value = {"success": True}
        with pytest.raises(ClobClientError, match="no order id"):
            clob.create_order("tok-yes", "BUY", 0.4, 5.0)

    def test_transport_error_wrapped(self, clob: ClobClient, py_clob: MagicMock):
        error = RuntimeError("503 upstream")
        error.status_code = 503
        py_clob.post_order.side_effect = error
        with pytest.raises(ClobClientError) as exc:
            clob.create_order("tok-yes", "BUY", 0.4, 5.0)
        assert exc.value.status_code == 503


class TestCancelOrder:
    def test_cancelled(self, clob: ClobClient):
        assert clob.cancel_order(POLYMARKET_ORDER_ID) is True

    def test_already_closed(self, clob: ClobClient, py_clob: MagicMock):
        py_clob.cancel.return_value = {
            "canceled": [], "not_canceled": {POLYMARKET_ORDER_ID: "order already matched"},
        }
        assert clob.cancel_order(POLYMARKET_ORDER_ID) is False

    def test_failure_raises(self, clob: ClobClient, py_clob: MagicMock):
        py_clob.cancel.side_effect = RuntimeError("timeout")
        with pytest.raises(ClobClientError, match="Cancel failed"):
            clob.cancel_order(POLYMARKET_ORDER_ID)


class TestSetup:
    def test_no_key_raises(self, monkeypatch):
        monkeypatch.delenv("POLYMARKET_PRIVATE_KEY", raising=False)
        with pytest.raises(ClobClientError, match="not set"):
            ClobClient()
