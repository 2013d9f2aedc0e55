"""Polymarket CLOB client for the off-chain leg of a conditional swap."""

import logging
import os

from py_clob_client.client import ClobClient as PyClobClient
from py_clob_client.clob_types import ApiCreds, OrderArgs, OrderType

logger = logging.getLogger(__name__)

CLOB_HOST = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137


class ClobClientError(Exception):
    """Raised when the CLOB rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ClobClient:
    """Wrapper around py-clob-client exposing create/cancel for GTC limit orders.

    API credentials come from CLOB_API_KEY / CLOB_SECRET / CLOB_PASS_PHRASE
    when all are set, otherwise they are derived from the signing key.
    """

    def __init__(
        self,
        private_key: str | None = None,
        host: str = CLOB_HOST,
        chain_id: int = POLYGON_CHAIN_ID,
        signature_type: int = 0,
        funder: str | None = None,
        client: PyClobClient | None = None,
    ):
        if client is not None:
            self.client = client
            return
        key = private_key or os.environ.get("POLYMARKET_PRIVATE_KEY", "")
        if not key:
            raise ClobClientError("POLYMARKET_PRIVATE_KEY not set")
        self.client = PyClobClient(
            host=host,
            key=key,
            chain_id=chain_id,
            signature_type=signature_type,
            funder=funder or None,
        )
        self.client.set_api_creds(self._api_creds())

    def _api_creds(self) -> ApiCreds:
        api_key = os.environ.get("CLOB_API_KEY", "")
        secret = os.environ.get("CLOB_SECRET", "")
        passphrase = os.environ.get("CLOB_PASS_PHRASE", "")
        if api_key and secret and passphrase:
            return ApiCreds(api_key=api_key, api_secret=secret, api_passphrase=passphrase)
        try:
            return self.client.create_or_derive_api_creds()
        except Exception as e:
            raise ClobClientError(f"Unable to derive CLOB API credentials: {e}") from e

    def create_order(self, token_id: str, side: str, price: float, size: float) -> str:
        """Sign and post a GTC limit order. Returns the CLOB order id."""
        args = OrderArgs(token_id=token_id, price=price, size=size, side=side)
        try:
            signed = self.client.create_order(args)
            response = self.client.post_order(signed, OrderType.GTC)
        except Exception as e:
            logger.error("CLOB order failed for token %s: %s", token_id, e)
            raise ClobClientError(f"Order placement failed: {e}", _status_of(e)) from e

        response = response if isinstance(response, dict) else {}
        order_id = response.get("orderID") or response.get("id")
        if not order_id or response.get("success") is False:
            error = response.get("errorMsg") or response.get("error") or "no order id returned"
            logger.warning("CLOB rejected order for token %s: %s", token_id, error)
            raise ClobClientError(f"Order rejected: {error}")
        logger.info(
            "CLOB order %s placed: %s %.2f @ %.4f on %s",
            order_id, side, size, price, token_id,
        )
        return str(order_id)

    def cancel_order(self, order_id: str) -> bool:
        """Cancel an order. Cancelling an already-cancelled or filled order is a no-op.

        Returns True if the CLOB reported the order as cancelled by this call.
        """
        try:
            response = self.client.cancel(order_id=order_id)
        except Exception as e:
            logger.error("CLOB cancel failed for %s: %s", order_id, e)
            raise ClobClientError(f"Cancel failed: {e}", _status_of(e)) from e

        response = response if isinstance(response, dict) else {}
        canceled = response.get("canceled") or []
        if order_id in canceled:
            logger.info("CLOB order %s cancelled", order_id)
            return True
        reason = (response.get("not_canceled") or {}).get(order_id)
        logger.info("CLOB order %s not cancelled (%s)", order_id, reason or "already closed")
        return False


def _status_of(exc: Exception) -> int | None:
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None
