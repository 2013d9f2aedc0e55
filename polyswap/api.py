"""Persisted-order HTTP API (FastAPI).

Exposes the order record and the checkpoint writes that a browser-side
wallet flow needs: placing the off-chain leg, fetching the batch to sign,
recording the Safe transaction, and the two-phase cancellation.
"""

import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from eth_utils import is_address
from pydantic import BaseModel, Field, field_validator

from polyswap.config.schema import PolyswapConfig
from polyswap.execution.batch_builder import (
    BatchPreparationError,
    BatchTransactionBuilder,
    InsufficientBalanceError,
    NotSafeWalletError,
    summarize,
)
from polyswap.execution.clob_client import ClobClient, ClobClientError
from polyswap.models.order import OrderStatus
from polyswap.models.workflow import SignedAction
from polyswap.storage import market_repo, order_repo
from polyswap.storage.database import connect, run_migrations
from polyswap.wallet import encoding
from polyswap.wallet.chain_reader import ChainReader
from polyswap.wallet.signature import CANCEL_ORDER_ACTION, SignatureVerifier
from polyswap.workflow.broadcast import place_polymarket_leg
from polyswap.workflow.cancellation import check_signed_action
from polyswap.workflow.wiring import build_clob_client

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message


# ── Request bodies ──────────────────────────────────────────────


class CreateOrderBody(BaseModel):
    owner: str
    sell_token: str = Field(alias="sellToken")
    buy_token: str = Field(alias="buyToken")
    sell_amount: int = Field(alias="sellAmount", gt=0)
    min_buy_amount: int = Field(alias="minBuyAmount", gt=0)
    start_timestamp: int = Field(alias="startTimestamp", ge=0)
    deadline_timestamp: int = Field(alias="deadlineTimestamp", gt=0)
    market_id: str = Field(alias="marketId")
    outcome_selected: int = Field(alias="outcomeSelected", ge=0)
    bet_percentage: float = Field(alias="betPercentage", gt=0, lt=100)
    app_data: str | None = Field(default=None, alias="appData")

    @field_validator("owner", "sell_token", "buy_token")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not is_address(v):
            raise ValueError(f"not an address: {v}")
        return v


class PolymarketBody(BaseModel):
    order_id: int = Field(alias="orderId", gt=0)


class BatchTransactionBody(BaseModel):
    owner_address: str = Field(alias="ownerAddress")


class TransactionBody(BaseModel):
    transaction_hash: str = Field(alias="transactionHash")
    order_hash: str | None = Field(default=None, alias="orderHash")
    block_number: int | None = Field(default=None, alias="blockNumber")


class RemoveBody(BaseModel):
    order_hash: str = Field(alias="orderHash")
    owner_address: str = Field(alias="ownerAddress")
    signature: str | None = None
    timestamp: int | None = None
    chain_id: int | None = Field(default=None, alias="chainId")


class ConfirmRemoveBody(BaseModel):
    order_hash: str = Field(alias="orderHash")
    transaction_hash: str = Field(alias="transactionHash")
    confirmed: bool


def create_app(
    config: PolyswapConfig,
    db_path: str | Path,
    clob_factory: Callable[[], ClobClient] | None = None,
    reader: ChainReader | None = None,
) -> FastAPI:
    app = FastAPI(title="Polyswap Orders", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    reader = reader or ChainReader(config.chain.rpc_url, timeout=config.chain.rpc_timeout_seconds)
    builder = BatchTransactionBuilder(reader, config.contracts)
    verifier = SignatureVerifier(
        reader,
        max_age_seconds=config.signature.max_age_seconds,
        future_tolerance_seconds=config.signature.future_tolerance_seconds,
    )
    clob_holder: dict[str, ClobClient] = {}

    def _clob() -> ClobClient:
        if "client" not in clob_holder:
            factory = clob_factory or (lambda: build_clob_client(config))
            clob_holder["client"] = factory()
        return clob_holder["client"]

    def _conn() -> sqlite3.Connection:
        conn = connect(db_path)
        run_migrations(conn)
        return conn

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.error, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = ", ".join(".".join(str(p) for p in e["loc"][1:]) for e in exc.errors())
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request", "message": f"Invalid or missing: {fields}"},
        )

    # ── Reads ───────────────────────────────────────────────────

    @app.get("/api/orders/id/{order_id}")
    def get_order(order_id: int):
        if order_id <= 0:
            raise ApiError(400, "Invalid order ID", "Order ID must be a positive integer")
        conn = _conn()
        try:
            order = order_repo.get_order(conn, order_id)
            if order is None:
                raise ApiError(404, "Order not found", f"No order found with ID: {order_id}")
            return {"success": True, "data": order.to_dict()}
        finally:
            conn.close()

    @app.get("/api/orders/hash/{order_hash}")
    def get_order_by_hash(order_hash: str):
        conn = _conn()
        try:
            order = order_repo.get_order_by_hash(conn, order_hash)
            if order is None:
                raise ApiError(404, "Order not found", f"No order found with hash: {order_hash}")
            return {"success": True, "data": order.to_dict()}
        finally:
            conn.close()

    @app.get("/api/orders/polymarket/{polymarket_order_hash}")
    def get_order_by_polymarket_hash(polymarket_order_hash: str):
        conn = _conn()
        try:
            order = order_repo.get_order_by_polymarket_hash(conn, polymarket_order_hash)
            if order is None:
                raise ApiError(
                    404, "Order not found", f"No order found with Polymarket hash: {polymarket_order_hash}"
                )
            return {"success": True, "data": order.to_dict()}
        finally:
            conn.close()

    @app.get("/api/orders/owner/{owner}")
    def list_orders(owner: str, limit: int = 100, offset: int = 0):
        if not 1 <= limit <= 1000 or offset < 0:
            raise ApiError(400, "Invalid pagination", "limit must be 1-1000 and offset >= 0")
        conn = _conn()
        try:
            orders = order_repo.list_orders_by_owner(conn, owner, limit=limit, offset=offset)
            return {
                "success": True,
                "data": [o.to_dict() for o in orders],
                "pagination": {"limit": limit, "offset": offset, "count": len(orders)},
            }
        finally:
            conn.close()

    # ── Broadcast checkpoints ───────────────────────────────────

    @app.post("/api/orders", status_code=201)
    def create_order(body: CreateOrderBody):
        if body.deadline_timestamp <= body.start_timestamp:
            raise ApiError(400, "Invalid order", "deadlineTimestamp must be after startTimestamp")
        conn = _conn()
        try:
            if market_repo.get_market(conn, body.market_id) is None:
                raise ApiError(404, "Market not found", f"No market found with ID: {body.market_id}")
            order_id = order_repo.create_draft_order(
                conn,
                owner=body.owner,
                sell_token=body.sell_token,
                buy_token=body.buy_token,
                sell_amount=body.sell_amount,
                min_buy_amount=body.min_buy_amount,
                start_timestamp=body.start_timestamp,
                deadline_timestamp=body.deadline_timestamp,
                market_id=body.market_id,
                outcome_selected=body.outcome_selected,
                bet_percentage=body.bet_percentage,
                app_data=body.app_data,
            )
            order = order_repo.require_order(conn, order_id)
            return {"success": True, "data": order.to_dict()}
        finally:
            conn.close()

    @app.put("/api/orders/polymarket")
    def create_polymarket_order(body: PolymarketBody):
        conn = _conn()
        try:
            order = order_repo.get_order(conn, body.order_id)
            if order is None:
                raise ApiError(404, "Order not found", f"No order found with ID: {body.order_id}")
            if order.polymarket_order_hash:
                return {
                    "success": True,
                    "data": {"polymarketOrderHash": order.polymarket_order_hash, "created": False},
                }
            if order.status != OrderStatus.DRAFT:
                raise ApiError(400, "Invalid order state", f"Order is {order.status}, expected draft")
            try:
                clob_order_id, written = place_polymarket_leg(
                    conn, _clob(), order, config.polymarket.order_size
                )
            except ValueError as e:
                raise ApiError(400, "Invalid order data", str(e)) from e
            except ClobClientError as e:
                raise ApiError(502, "Polymarket order failed", str(e)) from e
            current = order_repo.require_order(conn, order.id)
            return {
                "success": True,
                "data": {"polymarketOrderHash": current.polymarket_order_hash, "created": written},
            }
        finally:
            conn.close()

    @app.post("/api/orders/id/{order_id}/batch-transaction")
    def get_batch_transaction(order_id: int, body: BatchTransactionBody):
        conn = _conn()
        try:
            order = order_repo.get_order(conn, order_id)
            if order is None:
                raise ApiError(404, "Order not found", f"No order found with ID: {order_id}")
            if encoding.is_zero_hash(order.polymarket_order_hash):
                raise ApiError(
                    400,
                    "Missing Polymarket order",
                    "Polymarket order must be created before getting transaction data",
                )
            try:
                plan = builder.build_order_plan(order, body.owner_address)
            except NotSafeWalletError as e:
                raise ApiError(400, "not_safe_wallet", str(e)) from e
            except InsufficientBalanceError as e:
                raise ApiError(400, "insufficient_balance", str(e)) from e
            except BatchPreparationError as e:
                raise ApiError(500, "transaction_preparation_failed", str(e)) from e
            return {
                "success": True,
                "data": {
                    **plan.to_dict(),
                    "summary": summarize(plan),
                    "transactionSummary": encoding.summarize_transactions(plan.transactions),
                },
            }
        finally:
            conn.close()

    @app.put("/api/orders/id/{order_id}/transaction")
    def record_transaction(order_id: int, body: TransactionBody):
        conn = _conn()
        try:
            try:
                written = order_repo.record_transaction(
                    conn,
                    order_id,
                    body.transaction_hash,
                    order_hash=body.order_hash,
                    block_number=body.block_number,
                    handler=config.contracts.polyswap_handler,
                )
            except order_repo.OrderNotFoundError as e:
                raise ApiError(404, "Order not found", str(e)) from e
            except (order_repo.CheckpointError, order_repo.InvalidStatusTransition) as e:
                raise ApiError(400, "Invalid order state", str(e)) from e
            order = order_repo.require_order(conn, order_id)
            return {"success": True, "data": {**order.to_dict(), "updated": written}}
        finally:
            conn.close()

    # ── Cancellation ────────────────────────────────────────────

    @app.post("/api/orders/remove")
    def remove_order(body: RemoveBody):
        if body.signature is None or body.timestamp is None or body.chain_id is None:
            raise ApiError(
                401, "Missing authentication", "signature, timestamp and chainId are required"
            )
        conn = _conn()
        try:
            order = order_repo.get_order_by_hash(conn, body.order_hash, body.owner_address)
            if order is None:
                raise ApiError(404, "Order not found", "Order not found or not owned by this address")

            action = SignedAction(
                action=CANCEL_ORDER_ACTION,
                order_identifier=body.order_hash,
                timestamp=body.timestamp,
                chain_id=body.chain_id,
                signature=body.signature,
            )
            error = check_signed_action(
                verifier, action, body.order_hash, order.owner, config.chain.chain_id
            )
            if error is not None:
                raise ApiError(403, "Unauthorized", error.message)

            if order.status != OrderStatus.LIVE:
                raise ApiError(400, "Invalid order state", f"Cannot remove order with status: {order.status}")

            polymarket_canceled = False
            if not encoding.is_zero_hash(order.polymarket_order_hash):
                try:
                    polymarket_canceled = _clob().cancel_order(order.polymarket_order_hash)
                except ClobClientError as e:
                    logger.warning("Polymarket cancel for order %d failed: %s", order.id, e)

            tx = encoding.remove_tx(config.contracts.composable_cow, order.order_hash)
            return {
                "success": True,
                "data": {"transaction": tx.to_dict(), "polymarketCanceled": polymarket_canceled},
            }
        finally:
            conn.close()

    @app.put("/api/orders/remove")
    def confirm_remove(body: ConfirmRemoveBody):
        if not body.confirmed:
            raise ApiError(400, "Not confirmed", "Cancellation must be confirmed on-chain first")
        conn = _conn()
        try:
            order = order_repo.get_order_by_hash(conn, body.order_hash)
            if order is None:
                raise ApiError(404, "Order not found", f"No order found with hash: {body.order_hash}")
            try:
                remaining = builder.build_cancellation_plan(order.order_hash, order.owner)
            except BatchPreparationError as e:
                raise ApiError(500, "transaction_preparation_failed", str(e)) from e
            if not remaining.is_empty:
                raise ApiError(
                    409, "Order still active", "Conditional order is still registered on-chain"
                )
            try:
                order_repo.update_status(conn, order.id, OrderStatus.CANCELED)
            except order_repo.InvalidStatusTransition as e:
                raise ApiError(400, "Invalid order state", str(e)) from e
            return {
                "success": True,
                "data": {
                    "orderHash": body.order_hash,
                    "transactionHash": body.transaction_hash,
                    "status": OrderStatus.CANCELED.value,
                },
            }
        finally:
            conn.close()

    return app
