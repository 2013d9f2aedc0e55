"""Broadcast state machine: off-chain leg, Safe batch, confirmation, persistence.

    polymarket -> transaction -> signed -> success
    (error is reachable from the first three)

Each step re-reads the order so a fresh orchestrator can resume any order
from its persisted checkpoints. Setup-only batches loop from `signed` back
to `transaction` until the wallet is fully configured.
"""

import logging
import sqlite3

from polyswap.config.schema import WorkflowConfig
from polyswap.execution.batch_builder import (
    BatchPreparationError,
    BatchTransactionBuilder,
    InsufficientBalanceError,
    NotSafeWalletError,
)
from polyswap.execution.clob_client import ClobClient, ClobClientError
from polyswap.execution.confirmation import (
    ConfirmationCancelled,
    ConfirmationTimeout,
    ConfirmationWaiter,
    TransactionReverted,
)
from polyswap.execution.executor import ProgressCallback, TransactionExecutor
from polyswap.models.order import Order, OrderStatus
from polyswap.models.workflow import (
    BroadcastState,
    BroadcastStep,
    ErrorKind,
    ProgressUpdate,
    WorkflowError,
    broadcast_resume_step,
)
from polyswap.storage import event_repo, market_repo, order_repo
from polyswap.wallet.session import WalletSession

logger = logging.getLogger(__name__)

FLOW = "broadcast"
BUY = "BUY"


class BroadcastOrchestrator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        clob: ClobClient,
        builder: BatchTransactionBuilder,
        executor: TransactionExecutor,
        waiter: ConfirmationWaiter,
        session: WalletSession,
        workflow_config: WorkflowConfig | None = None,
        order_size: float = 5.0,
        on_progress: ProgressCallback | None = None,
    ):
        self.conn = conn
        self.clob = clob
        self.builder = builder
        self.executor = executor
        self.waiter = waiter
        self.session = session
        self.config = workflow_config or WorkflowConfig()
        self.order_size = order_size
        self.on_progress = on_progress

    # --- Driving ---

    def start(self, order_id: int) -> BroadcastState:
        """Initial state for an order, derived from its persisted checkpoints."""
        order = order_repo.get_order(self.conn, order_id)
        if order is None:
            return self._fail(
                BroadcastState(order_id, BroadcastStep.ERROR),
                WorkflowError(ErrorKind.ORDER_NOT_FOUND, f"Order {order_id} not found"),
            )
        if order.status != OrderStatus.DRAFT:
            logger.info("Order %d is already %s, nothing to broadcast", order_id, order.status)
            return BroadcastState(order_id, BroadcastStep.SUCCESS)
        if order.polymarket_order_hash:
            return BroadcastState(order_id, BroadcastStep.TRANSACTION)
        return BroadcastState(order_id, BroadcastStep.POLYMARKET)

    def advance(self, state: BroadcastState) -> BroadcastState:
        """Perform exactly one step and return the next state."""
        if state.terminal:
            return state
        handler = {
            BroadcastStep.POLYMARKET: self._polymarket,
            BroadcastStep.TRANSACTION: self._transaction,
            BroadcastStep.SIGNED: self._signed,
        }[state.step]
        next_state = handler(state)
        self._record(next_state)
        return next_state

    def run(self, order_id: int) -> BroadcastState:
        self.waiter.reset()
        return self.resume(self.start(order_id))

    def resume(self, state: BroadcastState) -> BroadcastState:
        """Advance until terminal or until the waiter is cancelled.

        A cancelled wait leaves the state at SIGNED with its pending hash and
        nothing persisted; reset the waiter and resume the same state later.
        """
        while not state.terminal and not self.waiter.cancelled:
            state = self.advance(state)
        if not state.terminal:
            logger.info("Order %d: broadcast abandoned at %s", state.order_id, state.step)
        return state

    def retry(self, state: BroadcastState) -> BroadcastState:
        """Re-enter the flow at the step the error maps to, keeping checkpoints."""
        if state.step != BroadcastStep.ERROR or state.error is None:
            return state
        if state.error.fatal or state.error.kind == ErrorKind.TRANSACTION_NEEDS_SIGNATURES:
            logger.info("Order %d: %s is not retryable", state.order_id, state.error.kind)
            return state
        step = broadcast_resume_step(state.error.kind)
        logger.info("Order %d: retrying at %s after %s", state.order_id, step, state.error.kind)
        return state.moved(
            step, error=None, pending_tx_hash=None, pending_order_hash=None, pending_setup=False
        )

    # --- Steps ---

    def _polymarket(self, state: BroadcastState) -> BroadcastState:
        order = order_repo.require_order(self.conn, state.order_id)
        if order.polymarket_order_hash:
            return state.moved(BroadcastStep.TRANSACTION)

        try:
            clob_order_id, written = place_polymarket_leg(self.conn, self.clob, order, self.order_size)
        except (ClobClientError, ValueError) as e:
            return state.failed(
                WorkflowError(ErrorKind.POLYMARKET_CREATION_FAILED, f"Polymarket order failed: {e}")
            )

        if not written:
            state = state.warned(
                f"Order {order.id} already had a Polymarket order; discarded {clob_order_id}"
            )
        return state.moved(BroadcastStep.TRANSACTION)

    def _transaction(self, state: BroadcastState) -> BroadcastState:
        order = order_repo.require_order(self.conn, state.order_id)
        if order.status != OrderStatus.DRAFT or order.transaction_hash:
            return state.moved(BroadcastStep.SUCCESS)

        try:
            plan = self.builder.build_order_plan(order)
        except NotSafeWalletError as e:
            return state.failed(WorkflowError(ErrorKind.NOT_SAFE_WALLET, str(e)))
        except InsufficientBalanceError as e:
            return state.failed(WorkflowError(ErrorKind.INSUFFICIENT_BALANCE, str(e)))
        except BatchPreparationError as e:
            return state.failed(WorkflowError(ErrorKind.TRANSACTION_PREPARATION_FAILED, str(e)))

        if plan.setup_only_batch and state.setup_rounds >= self.config.max_setup_rounds:
            return state.failed(WorkflowError(
                ErrorKind.TRANSACTION_PREPARATION_FAILED,
                f"Wallet setup still incomplete after {state.setup_rounds} round(s)",
            ))

        progress: list[ProgressUpdate] = []

        def _on_progress(update: ProgressUpdate) -> None:
            progress.append(update)
            if self.on_progress is not None:
                self.on_progress(update)

        try:
            submitted = self.executor.execute(plan, self.session, _on_progress)
        except WorkflowError as e:
            return state.failed(e)

        return state.moved(
            BroadcastStep.SIGNED,
            pending_tx_hash=submitted.transaction_hash,
            pending_order_hash=plan.order_hash,
            pending_setup=plan.setup_only_batch,
            setup_rounds=state.setup_rounds + (1 if plan.setup_only_batch else 0),
            progress=progress[-1] if progress else None,
        )

    def _signed(self, state: BroadcastState) -> BroadcastState:
        tx_hash = state.pending_tx_hash
        if tx_hash is None:
            return state.moved(BroadcastStep.TRANSACTION)
        timeout = (
            self.config.setup_confirmation_timeout_seconds
            if state.pending_setup
            else self.config.order_confirmation_timeout_seconds
        )

        block_number = None
        try:
            confirmation = self.waiter.wait(tx_hash, timeout)
            block_number = confirmation.block_number
        except TransactionReverted as e:
            return state.failed(WorkflowError(ErrorKind.TRANSACTION_REVERTED, str(e)))
        except ConfirmationCancelled:
            logger.info("Order %d: stopped waiting for %s", state.order_id, tx_hash)
            return state
        except ConfirmationTimeout as e:
            if state.pending_setup:
                return state.failed(WorkflowError(ErrorKind.TRANSACTION_TIMEOUT, str(e)))
            state = state.warned(
                f"{ErrorKind.TRANSACTION_TIMEOUT}: {e}; the order was submitted and may still confirm"
            )
        else:
            self.waiter.settle()

        if state.pending_setup:
            logger.info("Order %d: wallet setup confirmed, planning again", state.order_id)
            return state.moved(
                BroadcastStep.TRANSACTION, pending_tx_hash=None, pending_setup=False
            )

        try:
            order_repo.record_transaction(
                self.conn,
                state.order_id,
                tx_hash,
                order_hash=state.pending_order_hash,
                block_number=block_number,
                handler=self.builder.config.polyswap_handler,
            )
        except (sqlite3.Error, order_repo.CheckpointError, order_repo.InvalidStatusTransition) as e:
            logger.error("Order %d confirmed in %s but not persisted: %s", state.order_id, tx_hash, e)
            state = state.warned(
                f"Transaction {tx_hash} succeeded but the order record could not be updated: {e}"
            )
        return state.moved(BroadcastStep.SUCCESS)

    # --- Helpers ---

    def _fail(self, state: BroadcastState, error: WorkflowError) -> BroadcastState:
        failed = state.failed(error)
        self._record(failed)
        return failed

    def _record(self, state: BroadcastState) -> None:
        error = state.error
        if error is not None and state.step == BroadcastStep.ERROR:
            logger.warning("Order %d broadcast failed: %s (%s)", state.order_id, error.kind, error.message)
        order_id = None if error is not None and error.kind == ErrorKind.ORDER_NOT_FOUND else state.order_id
        try:
            event_repo.log_event(
                self.conn,
                order_id,
                FLOW,
                state.step.value,
                error.kind.value if error is not None else None,
                error.message if error is not None else "; ".join(state.warnings),
            )
        except sqlite3.Error as e:
            logger.warning("Could not record %s event for order %d: %s", FLOW, state.order_id, e)


def resolve_leg(conn: sqlite3.Connection, order: Order) -> tuple[str, float]:
    """CLOB token id and limit price for an order's selected outcome."""
    if not order.market_id or order.outcome_selected is None or order.bet_percentage is None:
        raise ValueError("order is missing market_id, outcome_selected or bet_percentage")
    market = market_repo.get_market(conn, order.market_id)
    if market is None:
        raise ValueError(f"market {order.market_id} not found")
    if not 0 <= order.outcome_selected < len(market.clob_token_ids):
        raise ValueError(f"outcome {order.outcome_selected} out of range for market {market.id}")
    price = order.bet_percentage / 100
    if not 0 < price < 1:
        raise ValueError(f"bet percentage {order.bet_percentage} is not a valid price")
    return market.clob_token_ids[order.outcome_selected], price


def place_polymarket_leg(
    conn: sqlite3.Connection, clob: ClobClient, order: Order, order_size: float
) -> tuple[str, bool]:
    """Post the GTC buy order for a draft and persist its id write-once.

    Returns (clob_order_id, written). `written` is False when the order
    already carried an off-chain leg and the new id was not stored.
    """
    if order.status != OrderStatus.DRAFT:
        raise ValueError(f"order {order.id} is {order.status}, not draft")
    token_id, price = resolve_leg(conn, order)
    clob_order_id = clob.create_order(token_id, BUY, price, order_size)
    written = order_repo.set_polymarket_order_hash(conn, order.id, clob_order_id)
    return clob_order_id, written
