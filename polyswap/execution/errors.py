"""Mapping of wallet and chain exceptions onto the workflow error taxonomy."""

import re

from polyswap.models.workflow import ErrorKind, WorkflowError

USER_REJECTION_CODES = {4001, "4001", "ACTION_REJECTED"}

# Checked in order; the first matching pattern wins.
_PATTERNS: list[tuple[re.Pattern, ErrorKind]] = [
    (
        re.compile(
            r"safe transaction was rejected|transaction rejected by safe|refused in safe wallet"
            r"|transaction was not signed|signature rejected"
        ),
        ErrorKind.SAFE_TRANSACTION_REFUSED,
    ),
    (
        re.compile(
            r"user rejected|user denied|denied|rejected|cancelled|action_rejected"
            r"|transaction signing was refused"
        ),
        ErrorKind.TRANSACTION_REFUSED,
    ),
    (
        re.compile(r"network connection issue|connection|network error"),
        ErrorKind.WALLETCONNECT_CONNECTION_ISSUE,
    ),
    (
        re.compile(r"gas estimation failed|insufficient funds|nonce"),
        ErrorKind.TRANSACTION_VALIDATION_FAILED,
    ),
]

_MESSAGES = {
    ErrorKind.TRANSACTION_REFUSED: "Transaction was refused in the wallet",
    ErrorKind.SAFE_TRANSACTION_REFUSED: "Transaction was refused in the Safe wallet",
    ErrorKind.WALLETCONNECT_CONNECTION_ISSUE: "Wallet connection issue, reconnect and retry",
    ErrorKind.TRANSACTION_VALIDATION_FAILED: "Transaction failed validation (gas, nonce or funds)",
    ErrorKind.SEND_TRANSACTION_FAILED: "Failed to send transaction",
}


def classify_wallet_error(exc: BaseException) -> WorkflowError:
    """Classify an exception raised while handing a transaction to a wallet."""
    if isinstance(exc, WorkflowError):
        return exc
    code = getattr(exc, "code", None)
    text = str(exc).lower()
    if code in USER_REJECTION_CODES:
        kind = ErrorKind.TRANSACTION_REFUSED
        if _PATTERNS[0][0].search(text):
            kind = ErrorKind.SAFE_TRANSACTION_REFUSED
    else:
        kind = ErrorKind.SEND_TRANSACTION_FAILED
        for pattern, candidate in _PATTERNS:
            if pattern.search(text):
                kind = candidate
                break
    detail = str(exc) or exc.__class__.__name__
    return WorkflowError(kind, f"{_MESSAGES[kind]}: {detail}")
