"""Cancellation state machine for a live conditional order.

    confirm -> signing -> polymarket -> transaction -> signed -> success

The ownership proof is verified at the start of `polymarket`, before any
off-chain or on-chain side effect. A failed Polymarket cancel is recorded
and the on-chain removal still proceeds.
"""

import logging
import sqlite3

from polyswap.config.schema import WorkflowConfig
from polyswap.execution.batch_builder import BatchPreparationError, BatchTransactionBuilder
from polyswap.execution.clob_client import ClobClient, ClobClientError
from polyswap.execution.confirmation import (
    ConfirmationCancelled,
    ConfirmationTimeout,
    ConfirmationWaiter,
    TransactionReverted,
)
from polyswap.execution.executor import ProgressCallback, TransactionExecutor
from polyswap.models.order import OrderStatus
from polyswap.models.workflow import (
    CancellationState,
    CancellationStep,
    ErrorKind,
    ProgressUpdate,
    SignedAction,
    WorkflowError,
    cancellation_resume_step,
)
from polyswap.storage import event_repo, order_repo
from polyswap.wallet import encoding
from polyswap.wallet.session import WalletSession
from polyswap.wallet.signature import (
    CANCEL_ORDER_ACTION,
    SignatureVerifier,
    create_signature_message,
)

logger = logging.getLogger(__name__)

FLOW = "cancellation"


class CancellationOrchestrator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        clob: ClobClient,
        builder: BatchTransactionBuilder,
        executor: TransactionExecutor,
        waiter: ConfirmationWaiter,
        session: WalletSession,
        verifier: SignatureVerifier,
        chain_id: int = 137,
        workflow_config: WorkflowConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.conn = conn
        self.clob = clob
        self.builder = builder
        self.executor = executor
        self.waiter = waiter
        self.session = session
        self.verifier = verifier
        self.chain_id = chain_id
        self.config = workflow_config or WorkflowConfig()
        self.on_progress = on_progress

    # --- Driving ---

    def start(
        self, order_hash: str, owner: str, signed_action: SignedAction | None = None
    ) -> CancellationState:
        return CancellationState(
            order_hash=order_hash,
            owner=owner.lower(),
            step=CancellationStep.CONFIRM,
            signed_action=signed_action,
        )

    def advance(self, state: CancellationState) -> CancellationState:
        """Perform exactly one step and return the next state."""
        if state.terminal:
            return state
        handler = {
            CancellationStep.CONFIRM: self._confirm,
            CancellationStep.SIGNING: self._signing,
            CancellationStep.POLYMARKET: self._polymarket,
            CancellationStep.TRANSACTION: self._transaction,
            CancellationStep.SIGNED: self._signed,
        }[state.step]
        next_state = handler(state)
        self._record(next_state)
        return next_state

    def run(
        self, order_hash: str, owner: str, signed_action: SignedAction | None = None
    ) -> CancellationState:
        self.waiter.reset()
        return self.resume(self.start(order_hash, owner, signed_action))

    def resume(self, state: CancellationState) -> CancellationState:
        while not state.terminal and not self.waiter.cancelled:
            state = self.advance(state)
        if not state.terminal:
            logger.info("Cancellation of %s abandoned at %s", state.order_hash, state.step)
        return state

    def retry(self, state: CancellationState) -> CancellationState:
        if state.step != CancellationStep.ERROR or state.error is None:
            return state
        if state.error.fatal or state.error.kind == ErrorKind.TRANSACTION_NEEDS_SIGNATURES:
            return state
        step = cancellation_resume_step(state.error.kind)
        changes: dict = {"error": None, "pending_tx_hash": None}
        if step == CancellationStep.SIGNING:
            changes["signed_action"] = None
        logger.info("Cancellation of %s: retrying at %s after %s", state.order_hash, step, state.error.kind)
        return state.moved(step, **changes)

    # --- Steps ---

    def _confirm(self, state: CancellationState) -> CancellationState:
        order = order_repo.get_order_by_hash(self.conn, state.order_hash, state.owner)
        if order is None:
            return state.failed(WorkflowError(
                ErrorKind.ORDER_NOT_FOUND,
                f"Order {state.order_hash} not found for owner {state.owner}",
            ))
        if order.status == OrderStatus.CANCELED:
            return state.moved(CancellationStep.SUCCESS, order_id=order.id)
        if order.status != OrderStatus.LIVE:
            return state.failed(WorkflowError(
                ErrorKind.INVALID_ORDER_STATE,
                f"Order {state.order_hash} is {order.status}; only live orders can be cancelled",
            ))
        return state.moved(
            CancellationStep.SIGNING,
            order_id=order.id,
            polymarket_order_hash=order.polymarket_order_hash,
        )

    def _signing(self, state: CancellationState) -> CancellationState:
        if state.signed_action is not None:
            return state.moved(CancellationStep.POLYMARKET)
        timestamp = int(self.verifier.clock())
        message = create_signature_message(CANCEL_ORDER_ACTION, state.order_hash, timestamp, self.chain_id)
        try:
            signature = self.session.sign_message(message)
        except Exception as e:
            logger.warning("Cancellation signature for %s refused: %s", state.order_hash, e)
            return state.failed(WorkflowError(ErrorKind.SIGNATURE_REFUSED, f"Signature refused: {e}"))
        return state.moved(
            CancellationStep.POLYMARKET,
            signed_action=SignedAction(
                action=CANCEL_ORDER_ACTION,
                order_identifier=state.order_hash,
                timestamp=timestamp,
                chain_id=self.chain_id,
                signature=signature,
            ),
        )

    def _polymarket(self, state: CancellationState) -> CancellationState:
        error = check_signed_action(
            self.verifier, state.signed_action, state.order_hash, state.owner, self.chain_id
        )
        if error is not None:
            return state.failed(error)

        if encoding.is_zero_hash(state.polymarket_order_hash):
            return state.moved(CancellationStep.TRANSACTION, polymarket_canceled=False)
        try:
            canceled = self.clob.cancel_order(state.polymarket_order_hash)
        except ClobClientError as e:
            logger.warning("Polymarket cancel for %s failed, continuing: %s", state.polymarket_order_hash, e)
            return state.warned(f"Polymarket order could not be cancelled: {e}").moved(
                CancellationStep.TRANSACTION, polymarket_canceled=False
            )
        return state.moved(CancellationStep.TRANSACTION, polymarket_canceled=canceled)

    def _transaction(self, state: CancellationState) -> CancellationState:
        try:
            plan = self.builder.build_cancellation_plan(state.order_hash, state.owner)
        except BatchPreparationError as e:
            return state.failed(WorkflowError(ErrorKind.TRANSACTION_PREPARATION_FAILED, str(e)))

        if plan.is_empty:
            state = state.warned("Conditional order was already removed on-chain")
            return self._persist_canceled(state)

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
            CancellationStep.SIGNED,
            pending_tx_hash=submitted.transaction_hash,
            progress=progress[-1] if progress else None,
        )

    def _signed(self, state: CancellationState) -> CancellationState:
        if state.pending_tx_hash is None:
            return state.moved(CancellationStep.TRANSACTION)
        try:
            self.waiter.wait(state.pending_tx_hash, self.config.cancel_confirmation_timeout_seconds)
        except TransactionReverted as e:
            return state.failed(WorkflowError(ErrorKind.TRANSACTION_REVERTED, str(e)))
        except ConfirmationCancelled:
            logger.info("Cancellation of %s: stopped waiting for %s", state.order_hash, state.pending_tx_hash)
            return state
        except ConfirmationTimeout as e:
            state = state.warned(
                f"{ErrorKind.TRANSACTION_TIMEOUT}: {e}; the removal was submitted and may still confirm"
            )
        else:
            self.waiter.settle()
        return self._persist_canceled(state)

    # --- Helpers ---

    def _persist_canceled(self, state: CancellationState) -> CancellationState:
        try:
            order_repo.update_status(self.conn, state.order_id, OrderStatus.CANCELED)
        except (sqlite3.Error, order_repo.OrderNotFoundError, order_repo.InvalidStatusTransition) as e:
            logger.error("Order %s removed on-chain but not persisted: %s", state.order_hash, e)
            state = state.warned(f"Order was removed but the order record could not be updated: {e}")
        return state.moved(CancellationStep.SUCCESS)

    def _record(self, state: CancellationState) -> None:
        error = state.error
        if error is not None and state.step == CancellationStep.ERROR:
            logger.warning("Cancellation of %s failed: %s (%s)", state.order_hash, error.kind, error.message)
        try:
            event_repo.log_event(
                self.conn,
                state.order_id,
                FLOW,
                state.step.value,
                error.kind.value if error is not None else None,
                error.message if error is not None else "; ".join(state.warnings),
            )
        except sqlite3.Error as e:
            logger.warning("Could not record %s event for %s: %s", FLOW, state.order_hash, e)


def check_signed_action(
    verifier: SignatureVerifier,
    action: SignedAction | None,
    order_hash: str,
    owner: str,
    chain_id: int,
) -> WorkflowError | None:
    """Validate a signed cancellation request for `order_hash` owned by `owner`."""
    if action is None:
        return WorkflowError(ErrorKind.INVALID_SIGNATURE, "No signed cancellation request")
    if (
        action.action != CANCEL_ORDER_ACTION
        or action.order_identifier.lower() != order_hash.lower()
        or action.chain_id != chain_id
    ):
        return WorkflowError(ErrorKind.INVALID_SIGNATURE, "Signed request does not match this cancellation")
    result = verifier.verify(
        action.action,
        action.order_identifier,
        action.timestamp,
        action.chain_id,
        action.signature,
        owner,
    )
    if not result.valid:
        return WorkflowError(ErrorKind.INVALID_SIGNATURE, result.error or "Invalid signature")
    return None
