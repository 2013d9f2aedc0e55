"""Typed contract reads over a ChainReader."""

from eth_utils import decode_hex, encode_hex, to_checksum_address

from polyswap.config.defaults import EIP1271_MAGIC_VALUE, FALLBACK_HANDLER_STORAGE_SLOT
from polyswap.wallet import encoding
from polyswap.wallet.chain_reader import ChainReader


def _call(reader: ChainReader, to: str, signature: str, *args) -> bytes:
    result = reader.call(encoding.checksum(to), encoding.encode_call(signature, *args))
    return decode_hex(result or "0x")


def fallback_handler(reader: ChainReader, safe: str) -> str:
    """Address stored in the Safe's fallback-handler slot (last 20 bytes)."""
    slot_value = reader.get_storage_at(encoding.checksum(safe), FALLBACK_HANDLER_STORAGE_SLOT)
    raw = decode_hex(slot_value or "0x")
    return to_checksum_address(raw.rjust(32, b"\x00")[-20:])


def domain_separator(reader: ChainReader, contract: str) -> bytes:
    (sep,) = encoding.decode_result(["bytes32"], _call(reader, contract, encoding.DOMAIN_SEPARATOR))
    return sep


def domain_verifier(reader: ChainReader, handler: str, safe: str, separator: bytes) -> str:
    (verifier,) = encoding.decode_result(
        ["address"],
        _call(reader, handler, encoding.DOMAIN_VERIFIERS, encoding.checksum(safe), separator),
    )
    return to_checksum_address(verifier)


def erc20_balance(reader: ChainReader, token: str, owner: str) -> int:
    (balance,) = encoding.decode_result(
        ["uint256"], _call(reader, token, encoding.BALANCE_OF, encoding.checksum(owner))
    )
    return balance


def erc20_allowance(reader: ChainReader, token: str, owner: str, spender: str) -> int:
    (allowance,) = encoding.decode_result(
        ["uint256"],
        _call(
            reader, token, encoding.ALLOWANCE,
            encoding.checksum(owner), encoding.checksum(spender),
        ),
    )
    return allowance


def erc20_decimals(reader: ChainReader, token: str) -> int:
    (decimals,) = encoding.decode_result(["uint8"], _call(reader, token, encoding.DECIMALS))
    return decimals


def single_order_exists(reader: ChainReader, composable_cow: str, owner: str, order_hash: str) -> bool:
    (exists,) = encoding.decode_result(
        ["bool"],
        _call(
            reader, composable_cow, encoding.SINGLE_ORDERS,
            encoding.checksum(owner), encoding.to_bytes32(order_hash),
        ),
    )
    return exists


def is_valid_signature(reader: ChainReader, wallet: str, message_hash: bytes, signature: bytes) -> bool:
    """EIP-1271 check; only the exact magic value counts as valid."""
    raw = _call(reader, wallet, encoding.IS_VALID_SIGNATURE, message_hash, signature)
    if len(raw) < 4:
        return False
    return encode_hex(raw[:4]) == EIP1271_MAGIC_VALUE


def safe_threshold(reader: ChainReader, safe: str) -> int:
    (threshold,) = encoding.decode_result(["uint256"], _call(reader, safe, encoding.GET_THRESHOLD))
    return threshold


def safe_nonce(reader: ChainReader, safe: str) -> int:
    (nonce,) = encoding.decode_result(["uint256"], _call(reader, safe, encoding.NONCE))
    return nonce


def safe_transaction_hash(reader: ChainReader, safe: str, tx_fields: tuple) -> bytes:
    (tx_hash,) = encoding.decode_result(
        ["bytes32"], _call(reader, safe, encoding.GET_TRANSACTION_HASH, *tx_fields)
    )
    return tx_hash
