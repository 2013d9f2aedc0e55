"""Embedded Safe session driven by a locally held owner key.

The Safe computes its own transaction hash (getTransactionHash), the owner
signs it, and when the Safe threshold is 1 the owner submits
execTransaction from its EOA. With a higher threshold the signed Safe
transaction is returned unexecuted for the other owners to confirm.
"""

import logging

from eth_abi import encode
from eth_account import Account
from eth_utils import decode_hex, encode_hex, keccak

from polyswap.config.defaults import ZERO_ADDRESS
from polyswap.models.batch import ExecutionOutcome
from polyswap.wallet import contracts, encoding
from polyswap.wallet.chain_reader import ChainReader
from polyswap.wallet.session import SafeCall, WalletSessionKind
from polyswap.wallet.signature import hash_message

logger = logging.getLogger(__name__)

# keccak256("SafeMessage(bytes message)")
SAFE_MSG_TYPEHASH = decode_hex(
    "0x60b3cbf8b4a223d68d641b3b6ddf9a298e7f33710cf3d3a9d1146b5a6150fbca"
)
GAS_BUFFER = 1.2


def _signature_bytes(signed) -> bytes:
    return signed.r.to_bytes(32, "big") + signed.s.to_bytes(32, "big") + bytes([signed.v])


class SafeOwnerSession:
    kind = WalletSessionKind.EMBEDDED

    def __init__(
        self,
        safe_address: str,
        owner_key: str,
        reader: ChainReader,
        chain_id: int = 137,
    ):
        self.address = encoding.checksum(safe_address)
        self.owner = Account.from_key(owner_key)
        self.reader = reader
        self.chain_id = chain_id

    def _safe_tx_fields(self, call: SafeCall, nonce: int) -> tuple:
        return (
            encoding.checksum(call.to),
            call.value,
            decode_hex(call.data),
            int(call.operation),
            0,  # safeTxGas
            0,  # baseGas
            0,  # gasPrice
            ZERO_ADDRESS,  # gasToken
            ZERO_ADDRESS,  # refundReceiver
            nonce,
        )

    def execute(self, call: SafeCall) -> ExecutionOutcome:
        threshold = contracts.safe_threshold(self.reader, self.address)
        nonce = contracts.safe_nonce(self.reader, self.address)
        fields = self._safe_tx_fields(call, nonce)
        safe_tx_hash = contracts.safe_transaction_hash(self.reader, self.address, fields)
        signature = _signature_bytes(self.owner.unsafe_sign_hash(safe_tx_hash))

        if threshold > 1:
            logger.info(
                "Safe %s needs %d signatures, proposing %s",
                self.address, threshold, encode_hex(safe_tx_hash),
            )
            return ExecutionOutcome(executed=False, safe_tx_hash=encode_hex(safe_tx_hash))

        data = encoding.encode_call(encoding.EXEC_TRANSACTION, *fields[:-1], signature)
        tx_hash = self._send_from_owner(self.address, data)
        logger.info("Safe %s executed nonce %d in %s", self.address, nonce, tx_hash)
        return ExecutionOutcome(
            executed=True, transaction_hash=tx_hash, safe_tx_hash=encode_hex(safe_tx_hash)
        )

    def _send_from_owner(self, to: str, data: str) -> str:
        tx = {
            "to": to,
            "data": data,
            "value": 0,
            "nonce": self.reader.get_transaction_count(self.owner.address),
            "chainId": self.chain_id,
            "gasPrice": max(1, self.reader.gas_price()),
        }
        estimate = self.reader.estimate_gas({
            "from": self.owner.address, "to": to, "data": data, "value": "0x0",
        })
        tx["gas"] = max(21_000, int(estimate * GAS_BUFFER))
        signed = self.owner.sign_transaction(tx)
        return self.reader.send_raw_transaction(encode_hex(signed.raw_transaction))

    def safe_message_hash(self, message_hash: bytes) -> bytes:
        """Hash a Safe owner signs so the Safe accepts `message_hash` under EIP-1271."""
        separator = contracts.domain_separator(self.reader, self.address)
        struct_hash = keccak(encode(["bytes32", "bytes32"], [SAFE_MSG_TYPEHASH, keccak(message_hash)]))
        return keccak(b"\x19\x01" + separator + struct_hash)

    def sign_message(self, message: str) -> str:
        digest = self.safe_message_hash(hash_message(message))
        return encode_hex(_signature_bytes(self.owner.unsafe_sign_hash(digest)))
