"""Executor: packs a batch plan into one Safe call and hands it to the wallet."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from polyswap.execution.errors import classify_wallet_error
from polyswap.models.batch import BatchPlan, ExecutionOutcome
from polyswap.models.workflow import ErrorKind, ProgressUpdate, WorkflowError
from polyswap.wallet import encoding
from polyswap.wallet.session import SafeCall, WalletSession, WalletSessionKind

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass(frozen=True)
class SubmittedBatch:
    transaction_hash: str
    safe_tx_hash: str | None
    transaction_count: int


class TransactionExecutor:
    def __init__(self, multisend_address: str):
        self.multisend_address = multisend_address

    def pack(self, plan: BatchPlan) -> SafeCall:
        tx, operation = encoding.encode_multisend(plan.transactions, self.multisend_address)
        return SafeCall(
            to=tx.to,
            data=tx.data,
            value=tx.value,
            operation=operation,
            transactions=list(plan.transactions),
        )

    def execute(
        self,
        plan: BatchPlan,
        session: WalletSession,
        on_progress: ProgressCallback | None = None,
    ) -> SubmittedBatch:
        """Submit a plan through the wallet session exactly once.

        1. Validate and pack (MultiSend when more than one call)
        2. Report progress per sub-transaction
        3. Hand the call to the session
        4. Classify any wallet failure

        Raises WorkflowError; never retries.
        """
        if session.kind not in (WalletSessionKind.EMBEDDED, WalletSessionKind.REMOTE):
            raise WorkflowError(ErrorKind.UNSUPPORTED_WALLET, f"Unsupported wallet session: {session.kind}")

        # 1. Validate and pack
        problem = encoding.validate_transactions(plan.transactions)
        if problem is not None:
            raise WorkflowError(ErrorKind.TRANSACTION_PREPARATION_FAILED, problem)
        call = self.pack(plan)

        # 2. Progress
        total = len(plan.transactions)
        if on_progress is not None:
            for i, tx in enumerate(plan.transactions, start=1):
                on_progress(ProgressUpdate(i, total, encoding.describe_transaction(tx)))

        # 3. Submit
        logger.info(
            "Submitting %d call(s) from %s via %s session (operation=%s)",
            total, session.address, session.kind, call.operation.name,
        )
        try:
            outcome: ExecutionOutcome = session.execute(call)
        except Exception as e:
            # 4. Classify
            error = classify_wallet_error(e)
            logger.warning("Wallet submission failed (%s): %s", error.kind, e)
            raise error from e

        if not outcome.executed:
            raise WorkflowError(
                ErrorKind.TRANSACTION_NEEDS_SIGNATURES,
                "Transaction proposed to the Safe and is waiting for more owner signatures"
                + (f" (safeTxHash {outcome.safe_tx_hash})" if outcome.safe_tx_hash else ""),
            )
        if not outcome.transaction_hash:
            raise WorkflowError(ErrorKind.SEND_TRANSACTION_FAILED, "Wallet returned no transaction hash")

        return SubmittedBatch(
            transaction_hash=outcome.transaction_hash,
            safe_tx_hash=outcome.safe_tx_hash,
            transaction_count=total,
        )
