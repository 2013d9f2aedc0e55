"""Workflow steps, error taxonomy and state snapshots for both orchestrators."""

from dataclasses import dataclass, replace
from enum import StrEnum


class BroadcastStep(StrEnum):
    POLYMARKET = "polymarket"
    TRANSACTION = "transaction"
    SIGNED = "signed"
    SUCCESS = "success"
    ERROR = "error"


class CancellationStep(StrEnum):
    CONFIRM = "confirm"
    SIGNING = "signing"
    POLYMARKET = "polymarket"
    TRANSACTION = "transaction"
    SIGNED = "signed"
    SUCCESS = "success"
    ERROR = "error"


class ErrorKind(StrEnum):
    POLYMARKET_CREATION_FAILED = "polymarket_creation_failed"
    TRANSACTION_PREPARATION_FAILED = "transaction_preparation_failed"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSACTION_REFUSED = "transaction_refused"
    SAFE_TRANSACTION_REFUSED = "safe_transaction_refused"
    TRANSACTION_NEEDS_SIGNATURES = "transaction_needs_signatures"
    WALLETCONNECT_CONNECTION_ISSUE = "walletconnect_connection_issue"
    TRANSACTION_VALIDATION_FAILED = "transaction_validation_failed"
    SEND_TRANSACTION_FAILED = "send_transaction_failed"
    TRANSACTION_TIMEOUT = "transaction_timeout"
    TRANSACTION_REVERTED = "transaction_reverted"
    UNSUPPORTED_WALLET = "unsupported_wallet"
    NOT_SAFE_WALLET = "not_safe_wallet"
    SIGNATURE_REFUSED = "signature_refused"
    INVALID_SIGNATURE = "invalid_signature"
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_ORDER_STATE = "invalid_order_state"


FATAL_ERRORS = frozenset({
    ErrorKind.UNSUPPORTED_WALLET,
    ErrorKind.NOT_SAFE_WALLET,
    ErrorKind.ORDER_NOT_FOUND,
    ErrorKind.INVALID_ORDER_STATE,
})

# Reported to the caller but never re-entered automatically.
NON_RETRYABLE_ERRORS = FATAL_ERRORS | {
    ErrorKind.TRANSACTION_PREPARATION_FAILED,
    ErrorKind.INSUFFICIENT_BALANCE,
    ErrorKind.TRANSACTION_NEEDS_SIGNATURES,
}

BROADCAST_RESUME_STEP: dict[ErrorKind, BroadcastStep] = {
    ErrorKind.POLYMARKET_CREATION_FAILED: BroadcastStep.POLYMARKET,
}

CANCELLATION_RESUME_STEP: dict[ErrorKind, CancellationStep] = {
    ErrorKind.SIGNATURE_REFUSED: CancellationStep.SIGNING,
    ErrorKind.INVALID_SIGNATURE: CancellationStep.SIGNING,
}


def broadcast_resume_step(kind: ErrorKind) -> BroadcastStep:
    return BROADCAST_RESUME_STEP.get(kind, BroadcastStep.TRANSACTION)


def cancellation_resume_step(kind: ErrorKind) -> CancellationStep:
    return CANCELLATION_RESUME_STEP.get(kind, CancellationStep.TRANSACTION)


class WorkflowError(Exception):
    """A classified failure with a stable kind and a human message."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def fatal(self) -> bool:
        return self.kind in FATAL_ERRORS

    @property
    def retryable(self) -> bool:
        return self.kind not in NON_RETRYABLE_ERRORS

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class ProgressUpdate:
    current: int
    total: int
    current_tx_type: str


@dataclass(frozen=True)
class BroadcastState:
    order_id: int
    step: BroadcastStep
    error: WorkflowError | None = None
    warnings: tuple[str, ...] = ()
    progress: ProgressUpdate | None = None
    pending_tx_hash: str | None = None
    pending_order_hash: str | None = None
    pending_setup: bool = False
    setup_rounds: int = 0

    @property
    def terminal(self) -> bool:
        return self.step in (BroadcastStep.SUCCESS, BroadcastStep.ERROR)

    def moved(self, step: BroadcastStep, **changes) -> "BroadcastState":
        return replace(self, step=step, **changes)

    def failed(self, error: WorkflowError) -> "BroadcastState":
        return replace(self, step=BroadcastStep.ERROR, error=error)

    def warned(self, message: str) -> "BroadcastState":
        return replace(self, warnings=self.warnings + (message,))


@dataclass(frozen=True)
class SignedAction:
    """An ownership proof for an off-chain action."""

    action: str
    order_identifier: str
    timestamp: int
    chain_id: int
    signature: str


@dataclass(frozen=True)
class CancellationState:
    order_hash: str
    owner: str
    step: CancellationStep
    order_id: int | None = None
    polymarket_order_hash: str | None = None
    signed_action: SignedAction | None = None
    polymarket_canceled: bool | None = None
    pending_tx_hash: str | None = None
    error: WorkflowError | None = None
    warnings: tuple[str, ...] = ()
    progress: ProgressUpdate | None = None

    @property
    def terminal(self) -> bool:
        return self.step in (CancellationStep.SUCCESS, CancellationStep.ERROR)

    def moved(self, step: CancellationStep, **changes) -> "CancellationState":
        return replace(self, step=step, **changes)

    def failed(self, error: WorkflowError) -> "CancellationState":
        return replace(self, step=CancellationStep.ERROR, error=error)

    def warned(self, message: str) -> "CancellationState":
        return replace(self, warnings=self.warnings + (message,))
