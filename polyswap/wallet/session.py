"""Wallet sessions: the two ways a Safe call can be handed to the user's wallet."""

import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

import httpx

from polyswap.models.batch import ExecutionOutcome, Operation, TransactionRequest

logger = logging.getLogger(__name__)

# wallet_getCallsStatus: version 1.0 strings and the later numeric codes
BUNDLE_PENDING = {"PENDING", 100}
BUNDLE_CONFIRMED = {"CONFIRMED", 200}


class WalletSessionKind(StrEnum):
    EMBEDDED = "embedded"  # Safe-native execution path
    REMOTE = "remote"  # generic signer connection


class WalletSessionError(Exception):
    """Raised by a session when the wallet refuses or fails a request.

    `code` carries the EIP-1193 provider error code when one is known.
    """

    def __init__(self, message: str, code: int | str | None = None):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SafeCall:
    """A packed Safe call plus the sub-transactions it was packed from."""

    to: str
    data: str
    value: int
    operation: Operation
    transactions: list[TransactionRequest] = field(default_factory=list)


class WalletSession(Protocol):
    kind: WalletSessionKind
    address: str

    def execute(self, call: SafeCall) -> ExecutionOutcome: ...

    def sign_message(self, message: str) -> str: ...


class RemoteSignerSession:
    """Session over a JSON-RPC signer endpoint (WalletConnect bridge, Frame, ...).

    Single calls go through eth_sendTransaction. Batches go through
    wallet_sendCalls so the wallet can bundle them itself, then
    wallet_getCallsStatus is polled until the bundle lands or fails. A
    bundle still pending after `status_timeout` (a multi-owner Safe waiting
    for co-signers) is reported as not executed.
    """

    kind = WalletSessionKind.REMOTE

    def __init__(
        self,
        signer_url: str,
        address: str,
        chain_id: int = 137,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
        status_timeout: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.signer_url = signer_url
        self.address = address
        self.chain_id = chain_id
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.status_timeout = status_timeout
        self.clock = clock
        self.sleep = sleep
        self._ids = itertools.count(1)

    def _request(self, method: str, params: list) -> object:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = httpx.post(self.signer_url, json=payload, timeout=self.timeout)
        except httpx.RequestError as e:
            logger.error("Signer request failed: %s -> %s", method, e)
            raise WalletSessionError(f"Network connection issue: {e}") from e
        if resp.status_code >= 400:
            raise WalletSessionError(f"Signer HTTP {resp.status_code}: {resp.text}")
        body = resp.json()
        if body.get("error"):
            err = body["error"]
            raise WalletSessionError(err.get("message", "signer error"), code=err.get("code"))
        return body.get("result")

    def execute(self, call: SafeCall) -> ExecutionOutcome:
        txs = call.transactions or [TransactionRequest(to=call.to, data=call.data, value=call.value)]
        if len(txs) == 1:
            tx = txs[0]
            tx_hash = self._request("eth_sendTransaction", [{
                "from": self.address,
                "to": tx.to,
                "data": tx.data,
                "value": hex(tx.value),
            }])
            if not tx_hash:
                raise WalletSessionError("Transaction result missing hash - signing may have failed")
            return ExecutionOutcome(executed=True, transaction_hash=str(tx_hash))

        result = self._request("wallet_sendCalls", [{
            "version": "1.0",
            "chainId": hex(self.chain_id),
            "from": self.address,
            "calls": [{"to": tx.to, "data": tx.data, "value": hex(tx.value)} for tx in txs],
        }])
        batch_id = result.get("id") if isinstance(result, dict) else result
        if not batch_id:
            raise WalletSessionError("wallet_sendCalls result missing batch id")
        return self._await_bundle(str(batch_id))

    def _await_bundle(self, batch_id: str) -> ExecutionOutcome:
        deadline = self.clock() + self.status_timeout
        while True:
            status = self._request("wallet_getCallsStatus", [batch_id]) or {}
            receipts = status.get("receipts") or []
            tx_hash = next((r.get("transactionHash") for r in receipts if r.get("transactionHash")), None)
            if tx_hash:
                logger.info("Batch %s landed in %s", batch_id, tx_hash)
                return ExecutionOutcome(executed=True, transaction_hash=tx_hash, safe_tx_hash=batch_id)

            code = status.get("status")
            if code is not None and code not in BUNDLE_PENDING | BUNDLE_CONFIRMED:
                raise WalletSessionError(f"Batch {batch_id} failed with status {code}", code=code)
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            self.sleep(min(self.poll_interval, remaining))

        logger.info("Batch %s still pending after %.0fs, waiting on other Safe owners", batch_id, self.status_timeout)
        return ExecutionOutcome(executed=False, safe_tx_hash=batch_id)

    def sign_message(self, message: str) -> str:
        return str(self._request("personal_sign", [message, self.address]))
