"""Batch composition: decide which Safe calls an order needs right now.

Every decision is made from live chain state at planning time. Wallet
configuration (fallback handler, then domain verifier) is planned as a
setup-only batch on its own; the caller executes and confirms it, then
plans again. Only a fully configured wallet gets the approval plus
conditional-order batch.
"""

import logging

from eth_abi.exceptions import DecodingError
from eth_utils import encode_hex

from polyswap.config.schema import ContractsConfig
from polyswap.models.batch import BatchPlan
from polyswap.models.order import Order
from polyswap.wallet import contracts, encoding
from polyswap.wallet.chain_reader import ChainReader, RpcError

logger = logging.getLogger(__name__)


class BatchPreparationError(Exception):
    """Raised when a plan cannot be built from the order or chain state."""


class NotSafeWalletError(BatchPreparationError):
    def __init__(self, owner: str):
        super().__init__(f"{owner} is not a Safe smart-contract wallet")
        self.owner = owner


class InsufficientBalanceError(BatchPreparationError):
    def __init__(self, token: str, balance: int, required: int, decimals: int | None = None):
        if decimals is not None:
            shown = f"{balance / 10**decimals:g} < {required / 10**decimals:g}"
        else:
            shown = f"{balance} < {required}"
        super().__init__(f"Insufficient balance of {token}: {shown}")
        self.token = token
        self.balance = balance
        self.required = required


class BatchTransactionBuilder:
    def __init__(self, reader: ChainReader, contracts_config: ContractsConfig):
        self.reader = reader
        self.config = contracts_config

    def build_order_plan(self, order: Order, owner: str | None = None) -> BatchPlan:
        """Plan the next batch for a draft order with an off-chain leg.

        1. Owner must be a contract wallet
        2. Fallback handler missing -> setup-only batch
        3. Domain verifier missing -> setup-only batch
        4. Sell-token balance must cover sell_amount
        5. Approval prepended when allowance is short
        6. createWithContext appended
        """
        if not order.polymarket_order_hash:
            raise BatchPreparationError(f"Order {order.id} has no Polymarket order yet")

        try:
            return self._plan_order(order, encoding.checksum(owner or order.owner))
        except RpcError as e:
            raise BatchPreparationError(f"Chain read failed while planning order {order.id}: {e}") from e
        except (DecodingError, ValueError) as e:
            raise BatchPreparationError(f"Unusable order or chain data for order {order.id}: {e}") from e

    def _plan_order(self, order: Order, owner: str) -> BatchPlan:
        # 1. Owner must be a Safe
        if not self.reader.is_contract(owner):
            raise NotSafeWalletError(owner)

        # 2. Fallback handler
        current_handler = contracts.fallback_handler(self.reader, owner)
        if current_handler.lower() != self.config.fallback_handler.lower():
            logger.info(
                "Safe %s fallback handler is %s, planning setFallbackHandler",
                owner, current_handler,
            )
            return BatchPlan(
                transactions=[encoding.set_fallback_handler_tx(owner, self.config.fallback_handler)],
                needs_fallback_handler=True,
                setup_only_batch=True,
            )

        # 3. Domain verifier
        separator = contracts.domain_separator(self.reader, self.config.composable_cow)
        if not self._domain_verifier_set(owner, separator):
            logger.info("Safe %s has no ComposableCoW domain verifier, planning setDomainVerifier", owner)
            return BatchPlan(
                transactions=[
                    encoding.set_domain_verifier_tx(owner, separator, self.config.composable_cow)
                ],
                needs_domain_verifier=True,
                setup_only_batch=True,
            )

        # 4. Balance
        balance = contracts.erc20_balance(self.reader, order.sell_token, owner)
        if balance < order.sell_amount:
            decimals = self._decimals(order.sell_token)
            raise InsufficientBalanceError(order.sell_token, balance, order.sell_amount, decimals)

        # 5. Allowance
        transactions = []
        allowance = contracts.erc20_allowance(self.reader, order.sell_token, owner, self.config.spender)
        needs_approval = allowance < order.sell_amount
        if needs_approval:
            transactions.append(encoding.approve_tx(order.sell_token, self.config.spender))

        # 6. Conditional order
        salt = encoding.order_salt(order.id)
        static_input = encoding.encode_static_input(
            order, order.polymarket_order_hash, order.app_data or self.config.app_data
        )
        params = encoding.conditional_order_params(self.config.polyswap_handler, salt, static_input)
        transactions.append(
            encoding.create_with_context_tx(self.config.composable_cow, params, self.config.value_factory)
        )
        order_hash = encoding.conditional_order_hash(params)
        logger.info(
            "Planned %d transaction(s) for order %d (approval=%s, hash=%s)",
            len(transactions), order.id, needs_approval, order_hash,
        )
        return BatchPlan(
            transactions=transactions,
            needs_approval=needs_approval,
            order_hash=order_hash,
            salt=encode_hex(salt),
        )

    def _domain_verifier_set(self, owner: str, separator: bytes) -> bool:
        try:
            verifier = contracts.domain_verifier(
                self.reader, self.config.fallback_handler, owner, separator
            )
        except (RpcError, DecodingError) as e:
            logger.warning("Domain verifier read failed for %s, assuming unset: %s", owner, e)
            return False
        return verifier.lower() == self.config.composable_cow.lower()

    def _decimals(self, token: str) -> int | None:
        try:
            return contracts.erc20_decimals(self.reader, token)
        except (RpcError, DecodingError):
            return None

    def build_cancellation_plan(self, order_hash: str, owner: str) -> BatchPlan:
        """Plan removal of a conditional order; empty if it is already gone on-chain."""
        try:
            owner = encoding.checksum(owner)
            exists = contracts.single_order_exists(
                self.reader, self.config.composable_cow, owner, order_hash
            )
        except RpcError as e:
            raise BatchPreparationError(f"Chain read failed while planning removal of {order_hash}: {e}") from e
        except (DecodingError, ValueError) as e:
            raise BatchPreparationError(f"Unusable data while planning removal of {order_hash}: {e}") from e
        if not exists:
            logger.info("Conditional order %s already removed for %s", order_hash, owner)
            return BatchPlan(order_hash=order_hash)
        return BatchPlan(
            transactions=[encoding.remove_tx(self.config.composable_cow, order_hash)],
            order_hash=order_hash,
        )


def summarize(plan: BatchPlan) -> list[str]:
    """Numbered, human-readable list of the calls in a plan."""
    return [
        f"{i}. {encoding.describe_transaction(tx)} -> {tx.to}"
        for i, tx in enumerate(plan.transactions, start=1)
    ]
