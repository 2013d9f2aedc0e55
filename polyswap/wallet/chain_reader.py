"""JSON-RPC client for reading chain state and submitting raw transactions."""

import itertools
import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://polygon-rpc.com"


class RpcError(Exception):
    """Raised when the node is unreachable or answers with an error."""

    def __init__(self, message: str, code: int | None = None, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class ChainReader:
    """Thin wrapper around the Ethereum JSON-RPC methods this package needs.

    Every read goes to the node at call time; nothing is cached.
    """

    def __init__(self, rpc_url: str = DEFAULT_RPC_URL, timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _request(self, method: str, params: list) -> object:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = httpx.post(self.rpc_url, json=payload, timeout=self.timeout)
        except httpx.RequestError as e:
            logger.error("RPC request failed: %s -> %s", method, e)
            raise RpcError(f"Request failed: {e}") from e
        if resp.status_code >= 400:
            logger.error("RPC %d: %s -> %s", resp.status_code, method, resp.text)
            raise RpcError(f"HTTP {resp.status_code}: {resp.text}", status_code=resp.status_code)
        body = resp.json()
        if body.get("error"):
            err = body["error"]
            message = err.get("message", "unknown error") if isinstance(err, dict) else str(err)
            code = err.get("code") if isinstance(err, dict) else None
            raise RpcError(f"{method}: {message}", code=code)
        return body.get("result")

    # --- Reads ---

    def call(self, to: str, data: str, block: str = "latest") -> str:
        """eth_call; returns the raw 0x-prefixed return data."""
        return self._request("eth_call", [{"to": to, "data": data}, block])

    def get_code(self, address: str, block: str = "latest") -> str:
        return self._request("eth_getCode", [address, block])

    def get_storage_at(self, address: str, slot: str, block: str = "latest") -> str:
        return self._request("eth_getStorageAt", [address, slot, block])

    def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        """Receipt dict, or None while the transaction is pending."""
        return self._request("eth_getTransactionReceipt", [tx_hash])

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(self._request("eth_getTransactionCount", [address, block]), 16)

    def gas_price(self) -> int:
        return int(self._request("eth_gasPrice", []), 16)

    def estimate_gas(self, tx: dict) -> int:
        return int(self._request("eth_estimateGas", [tx]), 16)

    # --- Writes ---

    def send_raw_transaction(self, raw_tx: str) -> str:
        return self._request("eth_sendRawTransaction", [raw_tx])

    def is_contract(self, address: str) -> bool:
        code = self.get_code(address)
        return bool(code) and code not in ("0x", "0x0")
