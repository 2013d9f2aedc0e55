"""Ownership proofs: canonical action messages and their verification.

A signature is accepted when it was made recently (bounded age, small clock
skew allowance) and either recovers to the expected address (EOA) or is
approved by the expected contract wallet through EIP-1271.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from eth_account import Account
from eth_account.messages import defunct_hash_message, encode_defunct
from eth_utils import decode_hex

from polyswap.models.common import unix_now
from polyswap.wallet import contracts
from polyswap.wallet.chain_reader import ChainReader

logger = logging.getLogger(__name__)

CANCEL_ORDER_ACTION = "cancel_order"
DEFAULT_MAX_AGE_SECONDS = 300
DEFAULT_FUTURE_TOLERANCE_SECONDS = 60


class VerificationMethod(StrEnum):
    EOA = "eoa"
    CONTRACT_WALLET = "contract_wallet"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error: str | None = None
    method: VerificationMethod | None = None


def create_signature_message(
    action: str, order_identifier: str, timestamp: int, chain_id: int
) -> str:
    return (
        "PolySwap Action Request\n"
        f"Action: {action}\n"
        f"Order: {order_identifier}\n"
        f"Timestamp: {timestamp}\n"
        f"Chain: {chain_id}"
    )


def hash_message(message: str) -> bytes:
    """EIP-191 personal-message hash."""
    return bytes(defunct_hash_message(text=message))


class SignatureVerifier:
    def __init__(
        self,
        reader: ChainReader | None = None,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        future_tolerance_seconds: int = DEFAULT_FUTURE_TOLERANCE_SECONDS,
        clock: Callable[[], int] = unix_now,
    ):
        self.reader = reader
        self.max_age_seconds = max_age_seconds
        self.future_tolerance_seconds = future_tolerance_seconds
        self.clock = clock

    def check_timestamp(self, timestamp: int) -> str | None:
        now = self.clock()
        if timestamp > now + self.future_tolerance_seconds:
            return "Timestamp is in the future"
        if now - timestamp > self.max_age_seconds:
            return "Signature expired"
        return None

    def verify(
        self,
        action: str,
        order_identifier: str,
        timestamp: int,
        chain_id: int,
        signature: str,
        expected_address: str,
    ) -> VerificationResult:
        """Verify a signed action request.

        The timestamp window is checked before any cryptography or chain
        access. Strategies are tried in VerificationMethod order; a failure
        in one falls through to the next.
        """
        error = self.check_timestamp(timestamp)
        if error is not None:
            logger.warning("Rejected %s signature for %s: %s", action, order_identifier, error)
            return VerificationResult(valid=False, error=error)

        message = create_signature_message(action, order_identifier, timestamp, chain_id)
        for method in VerificationMethod:
            if self._try(method, message, signature, expected_address):
                return VerificationResult(valid=True, method=method)

        logger.warning("Invalid %s signature for %s from %s", action, order_identifier, expected_address)
        return VerificationResult(valid=False, error="Invalid signature")

    def _try(
        self, method: VerificationMethod, message: str, signature: str, expected_address: str
    ) -> bool:
        try:
            if method == VerificationMethod.EOA:
                return self._verify_eoa(message, signature, expected_address)
            return self._verify_contract_wallet(message, signature, expected_address)
        except Exception as e:
            logger.debug("%s verification failed: %s", method, e)
            return False

    def _verify_eoa(self, message: str, signature: str, expected_address: str) -> bool:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        return recovered.lower() == expected_address.lower()

    def _verify_contract_wallet(self, message: str, signature: str, expected_address: str) -> bool:
        if self.reader is None:
            return False
        return contracts.is_valid_signature(
            self.reader, expected_address, hash_message(message), decode_hex(signature)
        )
