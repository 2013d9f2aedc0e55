"""Bounded, cancellable wait for a transaction receipt."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from polyswap.wallet.chain_reader import ChainReader, RpcError

logger = logging.getLogger(__name__)


class ConfirmationTimeout(Exception):
    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Transaction {tx_hash} not confirmed within {timeout:.0f}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class ConfirmationCancelled(Exception):
    pass


class TransactionReverted(Exception):
    def __init__(self, tx_hash: str, block_number: int | None):
        super().__init__(f"Transaction {tx_hash} reverted in block {block_number}")
        self.tx_hash = tx_hash
        self.block_number = block_number


@dataclass(frozen=True)
class Confirmation:
    tx_hash: str
    block_number: int | None
    status: int


class ConfirmationWaiter:
    """Polls for a receipt until it lands, the timeout passes, or it is cancelled.

    A cancel stays in effect until reset(), so one waiter shared by several
    flows stops all of them until a new run resets it.

    Transient RPC errors while polling are logged and polling continues.
    `clock` and `sleep` are injectable so tests never wait on wall time.
    """

    def __init__(
        self,
        reader: ChainReader,
        poll_interval: float = 2.0,
        propagation_delay: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self.reader = reader
        self.poll_interval = poll_interval
        self.propagation_delay = propagation_delay
        self.clock = clock
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancellable_sleep

    def _cancellable_sleep(self, seconds: float) -> None:
        self._cancelled.wait(seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    def reset(self) -> None:
        """Clear an earlier cancel so the waiter can be used again."""
        self._cancelled.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait(self, tx_hash: str, timeout: float) -> Confirmation:
        """Wait for `tx_hash` to be mined.

        Raises ConfirmationTimeout, ConfirmationCancelled or TransactionReverted.
        """
        deadline = self.clock() + timeout
        while True:
            if self._cancelled.is_set():
                raise ConfirmationCancelled(f"Wait for {tx_hash} cancelled")
            try:
                receipt = self.reader.get_transaction_receipt(tx_hash)
            except RpcError as e:
                logger.warning("Receipt poll for %s failed: %s", tx_hash, e)
                receipt = None
            if receipt:
                confirmation = _parse_receipt(tx_hash, receipt)
                if confirmation.status != 1:
                    raise TransactionReverted(tx_hash, confirmation.block_number)
                logger.info("Transaction %s confirmed in block %s", tx_hash, confirmation.block_number)
                return confirmation
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ConfirmationTimeout(tx_hash, timeout)
            self._sleep(min(self.poll_interval, remaining))

    def settle(self) -> None:
        """Give downstream indexers time to observe a freshly mined transaction."""
        if self.propagation_delay > 0 and not self._cancelled.is_set():
            self._sleep(self.propagation_delay)


def _parse_receipt(tx_hash: str, receipt: dict) -> Confirmation:
    block = receipt.get("blockNumber")
    status = receipt.get("status", "0x1")
    return Confirmation(
        tx_hash=receipt.get("transactionHash") or tx_hash,
        block_number=int(block, 16) if isinstance(block, str) else block,
        status=int(status, 16) if isinstance(status, str) else int(status),
    )
