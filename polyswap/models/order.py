"""Order aggregate and its status lifecycle."""

from dataclasses import dataclass
from enum import StrEnum


class OrderStatus(StrEnum):
    DRAFT = "draft"
    LIVE = "live"
    FILLED = "filled"
    CANCELED = "canceled"


# Status only ever moves forward along these edges.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.LIVE}),
    OrderStatus.LIVE: frozenset({OrderStatus.FILLED, OrderStatus.CANCELED}),
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class Order:
    id: int
    owner: str
    sell_token: str
    buy_token: str
    sell_amount: int
    min_buy_amount: int
    start_timestamp: int
    deadline_timestamp: int
    status: OrderStatus
    market_id: str | None = None
    outcome_selected: int | None = None
    bet_percentage: float | None = None
    app_data: str | None = None
    handler: str | None = None
    order_hash: str | None = None
    polymarket_order_hash: str | None = None
    transaction_hash: str | None = None
    block_number: int | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: dict) -> "Order":
        return cls(
            id=row["id"],
            owner=row["owner"],
            sell_token=row["sell_token"],
            buy_token=row["buy_token"],
            sell_amount=int(row["sell_amount"]),
            min_buy_amount=int(row["min_buy_amount"]),
            start_timestamp=int(row["start_timestamp"]),
            deadline_timestamp=int(row["deadline_timestamp"]),
            status=OrderStatus(row["status"]),
            market_id=row.get("market_id"),
            outcome_selected=row.get("outcome_selected"),
            bet_percentage=row.get("bet_percentage"),
            app_data=row.get("app_data"),
            handler=row.get("handler"),
            order_hash=row.get("order_hash"),
            polymarket_order_hash=row.get("polymarket_order_hash"),
            transaction_hash=row.get("transaction_hash"),
            block_number=row.get("block_number"),
            created_at=row.get("created_at") or "",
            updated_at=row.get("updated_at") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "sell_token": self.sell_token,
            "buy_token": self.buy_token,
            "sell_amount": str(self.sell_amount),
            "min_buy_amount": str(self.min_buy_amount),
            "start_timestamp": self.start_timestamp,
            "deadline_timestamp": self.deadline_timestamp,
            "status": self.status.value,
            "market_id": self.market_id,
            "outcome_selected": self.outcome_selected,
            "bet_percentage": self.bet_percentage,
            "app_data": self.app_data,
            "handler": self.handler,
            "order_hash": self.order_hash,
            "polymarket_order_hash": self.polymarket_order_hash,
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Market:
    id: str
    question: str
    condition_id: str
    clob_token_ids: list[str]
