"""Tests for packing and submitting batch plans through a wallet session."""

import pytest

from polyswap.config.schema import ContractsConfig
from polyswap.execution.executor import TransactionExecutor
from polyswap.models.batch import BatchPlan, ExecutionOutcome, Operation, TransactionRequest
from polyswap.models.workflow import ErrorKind, ProgressUpdate, WorkflowError
from polyswap.tests.fakes import MINED_TX_HASH, SAFE, USDC, FakeSession
from polyswap.wallet import encoding
from polyswap.wallet.session import WalletSessionError

CONFIG = ContractsConfig()


def _plan(*txs: TransactionRequest) -> BatchPlan:
    return BatchPlan(transactions=list(txs))


@pytest.fixture
def executor():
    return TransactionExecutor(CONFIG.multisend_call_only)


APPROVE = encoding.approve_tx(USDC, CONFIG.spender)
REMOVE = encoding.remove_tx(CONFIG.composable_cow, "0x" + "22" * 32)


class TestPack:
    def test_single_call(self, executor):
        call = executor.pack(_plan(APPROVE))
        assert call.operation == Operation.CALL
        assert call.to == APPROVE.to

    def test_multisend(self, executor):
        call = executor.pack(_plan(APPROVE, REMOVE))
        assert call.operation == Operation.DELEGATECALL
        assert call.to.lower() == CONFIG.multisend_call_only.lower()
        assert call.transactions == [APPROVE, REMOVE]


class TestExecute:
    def test_success(self, executor):
        session = FakeSession()
        progress: list[ProgressUpdate] = []
        submitted = executor.execute(_plan(APPROVE, REMOVE), session, progress.append)
        assert submitted.transaction_hash == MINED_TX_HASH
        assert submitted.transaction_count == 2
        assert len(session.calls) == 1
        assert progress == [
            ProgressUpdate(1, 2, "Token Approval"),
            ProgressUpdate(2, 2, "Remove Conditional Order"),
        ]

    def test_invalid_plan_never_reaches_wallet(self, executor):
        session = FakeSession()
        with pytest.raises(WorkflowError) as exc:
            executor.execute(_plan(TransactionRequest("0xbad", "0x")), session)
        assert exc.value.kind == ErrorKind.TRANSACTION_PREPARATION_FAILED
        assert session.calls == []

    def test_unsupported_session(self, executor):
        session = FakeSession(kind="hardware")
        with pytest.raises(WorkflowError) as exc:
            executor.execute(_plan(APPROVE), session)
        assert exc.value.kind == ErrorKind.UNSUPPORTED_WALLET

    def test_rejection_classified(self, executor):
        session = FakeSession(outcomes=[WalletSessionError("User rejected the request", code=4001)])
        with pytest.raises(WorkflowError) as exc:
            executor.execute(_plan(APPROVE), session)
        assert exc.value.kind == ErrorKind.TRANSACTION_REFUSED

    def test_needs_more_signatures(self, executor):
        session = FakeSession(outcomes=[ExecutionOutcome(executed=False, safe_tx_hash="0xsafe")])
        with pytest.raises(WorkflowError) as exc:
            executor.execute(_plan(APPROVE), session)
        assert exc.value.kind == ErrorKind.TRANSACTION_NEEDS_SIGNATURES
        assert "0xsafe" in exc.value.message

    def test_missing_hash(self, executor):
        session = FakeSession(outcomes=[ExecutionOutcome(executed=True)])
        with pytest.raises(WorkflowError) as exc:
            executor.execute(_plan(APPROVE), session)
        assert exc.value.kind == ErrorKind.SEND_TRANSACTION_FAILED

    def test_submits_once(self, executor):
        session = FakeSession(outcomes=[WalletSessionError("network error")])
        with pytest.raises(WorkflowError):
            executor.execute(_plan(APPROVE), session)
        assert len(session.calls) == 1
        assert session.address == SAFE
