"""ABI encoding for Safe, ComposableCoW, ERC-20 and MultiSend calls."""

from eth_abi import decode, encode
from eth_utils import (
    decode_hex,
    encode_hex,
    function_signature_to_4byte_selector,
    keccak,
    to_checksum_address,
)

from polyswap.config.defaults import MAX_UINT256
from polyswap.models.batch import Operation, TransactionRequest
from polyswap.models.order import Order

# Safe
SET_FALLBACK_HANDLER = "setFallbackHandler(address)"
SET_DOMAIN_VERIFIER = "setDomainVerifier(bytes32,address)"
GET_THRESHOLD = "getThreshold()"
NONCE = "nonce()"
GET_TRANSACTION_HASH = (
    "getTransactionHash(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,uint256)"
)
EXEC_TRANSACTION = (
    "execTransaction(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,bytes)"
)
IS_VALID_SIGNATURE = "isValidSignature(bytes32,bytes)"
DOMAIN_VERIFIERS = "domainVerifiers(address,bytes32)"
MULTI_SEND = "multiSend(bytes)"

# ComposableCoW
CREATE_WITH_CONTEXT = "createWithContext((address,bytes32,bytes),address,bytes,bool)"
REMOVE = "remove(bytes32)"
SINGLE_ORDERS = "singleOrders(address,bytes32)"
DOMAIN_SEPARATOR = "domainSeparator()"

# ERC-20
APPROVE = "approve(address,uint256)"
ALLOWANCE = "allowance(address,address)"
BALANCE_OF = "balanceOf(address)"
DECIMALS = "decimals()"

POLYSWAP_ORDER_TYPES = [
    "address",  # sellToken
    "address",  # buyToken
    "address",  # receiver
    "uint256",  # sellAmount
    "uint256",  # minBuyAmount
    "uint256",  # t0
    "uint256",  # t
    "bytes32",  # polymarketOrderHash
    "bytes32",  # appData
]
CONDITIONAL_ORDER_PARAMS_TYPE = "(address,bytes32,bytes)"


def selector(signature: str) -> str:
    return encode_hex(function_signature_to_4byte_selector(signature))


TX_TYPE_LABELS = {
    selector(SET_FALLBACK_HANDLER): "Set Fallback Handler",
    selector(SET_DOMAIN_VERIFIER): "Set Domain Verifier",
    selector(APPROVE): "Token Approval",
    selector(CREATE_WITH_CONTEXT): "Conditional Order",
    selector(REMOVE): "Remove Conditional Order",
}


def _arg_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : -1]
    types: list[str] = []
    depth = 0
    current = ""
    for ch in inner:
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        current += ch
    if current:
        types.append(current)
    return types


def encode_call(signature: str, *args) -> str:
    """Encode calldata for `signature` with positional arguments."""
    data = function_signature_to_4byte_selector(signature)
    types = _arg_types(signature)
    if types:
        data += encode(types, list(args))
    return encode_hex(data)


def decode_result(types: list[str], data: bytes | str) -> tuple:
    if isinstance(data, str):
        data = decode_hex(data)
    return decode(types, data)


def checksum(address: str) -> str:
    return to_checksum_address(address)


def to_bytes32(value: str | bytes | None) -> bytes:
    """Coerce a hex string (with or without 0x) into exactly 32 bytes."""
    if value is None or value == "":
        return b"\x00" * 32
    if isinstance(value, bytes):
        raw = value
    else:
        hex_part = value[2:] if value.startswith("0x") else value
        if len(hex_part) % 2:
            hex_part = "0" + hex_part
        raw = bytes.fromhex(hex_part)
    if len(raw) > 32:
        raise ValueError(f"value longer than 32 bytes: {encode_hex(raw)}")
    return raw.rjust(32, b"\x00")


def is_zero_hash(value: str | None) -> bool:
    if not value:
        return True
    hex_part = value[2:] if value.startswith("0x") else value
    return set(hex_part) <= {"0"}


def order_salt(order_id: int) -> bytes:
    """Salt derived from the order id so every planning attempt hashes the same."""
    return keccak(encode(["string", "uint256"], ["Polyswap", order_id]))


def encode_static_input(order: Order, polymarket_order_hash: str, app_data: str | None) -> bytes:
    return encode(
        POLYSWAP_ORDER_TYPES,
        [
            checksum(order.sell_token),
            checksum(order.buy_token),
            checksum(order.owner),
            order.sell_amount,
            order.min_buy_amount,
            order.start_timestamp,
            order.deadline_timestamp,
            to_bytes32(polymarket_order_hash),
            to_bytes32(app_data),
        ],
    )


def conditional_order_params(handler: str, salt: bytes, static_input: bytes) -> tuple:
    return (checksum(handler), salt, static_input)


def conditional_order_hash(params: tuple) -> str:
    """keccak256 of the ABI-encoded ConditionalOrderParams struct."""
    return encode_hex(keccak(encode([CONDITIONAL_ORDER_PARAMS_TYPE], [params])))


def create_with_context_tx(
    composable_cow: str, params: tuple, value_factory: str
) -> TransactionRequest:
    data = encode_call(CREATE_WITH_CONTEXT, params, checksum(value_factory), b"", True)
    return TransactionRequest(to=checksum(composable_cow), data=data)


def remove_tx(composable_cow: str, order_hash: str) -> TransactionRequest:
    return TransactionRequest(
        to=checksum(composable_cow), data=encode_call(REMOVE, to_bytes32(order_hash))
    )


def set_fallback_handler_tx(safe: str, handler: str) -> TransactionRequest:
    return TransactionRequest(
        to=checksum(safe), data=encode_call(SET_FALLBACK_HANDLER, checksum(handler))
    )


def set_domain_verifier_tx(safe: str, domain_separator: bytes, verifier: str) -> TransactionRequest:
    return TransactionRequest(
        to=checksum(safe),
        data=encode_call(SET_DOMAIN_VERIFIER, domain_separator, checksum(verifier)),
    )


def approve_tx(token: str, spender: str, amount: int = MAX_UINT256) -> TransactionRequest:
    return TransactionRequest(
        to=checksum(token), data=encode_call(APPROVE, checksum(spender), amount)
    )


def pack_multisend(transactions: list[TransactionRequest]) -> bytes:
    """Pack sub-calls as operation(1) | to(20) | value(32) | len(32) | data."""
    packed = b""
    for tx in transactions:
        data = decode_hex(tx.data)
        packed += (
            bytes([Operation.CALL])
            + decode_hex(checksum(tx.to))
            + tx.value.to_bytes(32, "big")
            + len(data).to_bytes(32, "big")
            + data
        )
    return packed


def encode_multisend(
    transactions: list[TransactionRequest], multisend_address: str
) -> tuple[TransactionRequest, Operation]:
    """Collapse a batch into one Safe call.

    A single transaction passes through as a plain CALL; several are packed
    into MultiSendCallOnly.multiSend, which the Safe must DELEGATECALL.
    """
    if not transactions:
        raise ValueError("No transactions to encode")
    if len(transactions) == 1:
        return transactions[0], Operation.CALL
    data = encode_call(MULTI_SEND, pack_multisend(transactions))
    return TransactionRequest(to=checksum(multisend_address), data=data), Operation.DELEGATECALL


def describe_transaction(tx: TransactionRequest) -> str:
    return TX_TYPE_LABELS.get(tx.data[:10].lower(), "Contract Call")


def validate_transactions(transactions: list[TransactionRequest]) -> str | None:
    """Return an error message for the first malformed transaction, else None."""
    if not transactions:
        return "No transactions provided"
    for i, tx in enumerate(transactions):
        try:
            checksum(tx.to)
        except ValueError:
            return f"Transaction {i}: Invalid target address"
        if not tx.data.startswith("0x"):
            return f"Transaction {i}: Data must start with 0x"
        if tx.value < 0:
            return f"Transaction {i}: Invalid value"
    return None


def summarize_transactions(transactions: list[TransactionRequest]) -> dict:
    return {
        "count": len(transactions),
        "types": [describe_transaction(tx) for tx in transactions],
        "total_value": str(sum(tx.value for tx in transactions)),
    }
