"""Transaction and batch plan models."""

from dataclasses import dataclass, field
from enum import IntEnum


class Operation(IntEnum):
    CALL = 0
    DELEGATECALL = 1


@dataclass(frozen=True)
class TransactionRequest:
    to: str
    data: str  # 0x-prefixed calldata
    value: int = 0

    def to_dict(self) -> dict:
        return {"to": self.to, "data": self.data, "value": str(self.value)}


@dataclass(frozen=True)
class BatchPlan:
    transactions: list[TransactionRequest] = field(default_factory=list)
    needs_approval: bool = False
    needs_fallback_handler: bool = False
    needs_domain_verifier: bool = False
    setup_only_batch: bool = False
    order_hash: str | None = None
    salt: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.transactions

    def to_dict(self) -> dict:
        return {
            "transactions": [tx.to_dict() for tx in self.transactions],
            "needs_approval": self.needs_approval,
            "needs_fallback_handler": self.needs_fallback_handler,
            "needs_domain_verifier": self.needs_domain_verifier,
            "setup_only_batch": self.setup_only_batch,
            "order_hash": self.order_hash,
        }


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of handing a packed call to a wallet session.

    `executed` is False when the Safe still needs more owner signatures.
    """

    executed: bool
    transaction_hash: str | None = None
    safe_tx_hash: str | None = None
