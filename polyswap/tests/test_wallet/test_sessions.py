"""Tests for the embedded Safe-owner session and the remote signer session."""

import json

import pytest
import respx
from eth_utils import decode_hex, keccak
from httpx import Response

from polyswap.config.schema import ContractsConfig
from polyswap.execution.executor import TransactionExecutor
from polyswap.models.batch import BatchPlan, Operation, TransactionRequest
from polyswap.tests.fakes import MINED_TX_HASH, SAFE, SAFE_TX_HASH, USDC, FakeChain, FakeClock
from polyswap.wallet import encoding
from polyswap.wallet.safe_session import SafeOwnerSession
from polyswap.wallet.session import RemoteSignerSession, SafeCall, WalletSessionError

OWNER_KEY = "0x" + "4c" * 32
SIGNER = "https://signer.test/rpc"


def _bundle_signer(statuses: list[dict]):
    """Signer that accepts any bundle as bundle-1 and reports `statuses` in order."""

    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "wallet_sendCalls":
            result = {"id": "bundle-1"}
        else:
            result = statuses.pop(0) if len(statuses) > 1 else statuses[0]
        return Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return handler


def _call(count: int = 1) -> SafeCall:
    txs = [encoding.approve_tx(USDC, SAFE) for _ in range(count)]
    tx, op = encoding.encode_multisend(txs, ContractsConfig().multisend_call_only)
    return SafeCall(to=tx.to, data=tx.data, value=0, operation=op, transactions=txs)


class TestSafeOwnerSession:
    def test_executes_with_threshold_one(self, chain: FakeChain):
        chain.configure_safe(ContractsConfig(), threshold=1, nonce=4)
        session = SafeOwnerSession(SAFE, OWNER_KEY, chain)
        outcome = session.execute(_call(2))

        assert outcome.executed is True
        assert len(chain.sent) == 1
        assert outcome.transaction_hash == "0x" + keccak(decode_hex(chain.sent[0])).hex()
        assert outcome.safe_tx_hash == "0x" + SAFE_TX_HASH.hex()

    def test_safe_hash_requested_with_nonce_and_operation(self, chain: FakeChain):
        chain.configure_safe(ContractsConfig(), nonce=4)
        SafeOwnerSession(SAFE, OWNER_KEY, chain).execute(_call(2))
        data = chain.calls_to(encoding.GET_TRANSACTION_HASH)[0]["data"]
        fields = encoding.decode_result(
            encoding._arg_types(encoding.GET_TRANSACTION_HASH), decode_hex(data)[4:]
        )
        assert fields[3] == Operation.DELEGATECALL
        assert fields[9] == 4

    def test_multi_owner_safe_not_executed(self, chain: FakeChain):
        chain.configure_safe(ContractsConfig(), threshold=2)
        outcome = SafeOwnerSession(SAFE, OWNER_KEY, chain).execute(_call(1))
        assert outcome.executed is False
        assert outcome.transaction_hash is None
        assert chain.sent == []

    def test_sign_message_is_hex(self, chain: FakeChain):
        chain.configure_safe(ContractsConfig())
        signature = SafeOwnerSession(SAFE, OWNER_KEY, chain).sign_message("hello")
        assert signature.startswith("0x")
        assert len(decode_hex(signature)) == 65


class TestRemoteSignerSession:
    @respx.mock
    def test_single_call_uses_send_transaction(self):
        route = respx.post(SIGNER).mock(
            return_value=Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0xhash"})
        )
        session = RemoteSignerSession(SIGNER, SAFE)
        outcome = session.execute(_call(1))
        assert outcome.executed is True
        assert outcome.transaction_hash == "0xhash"
        body = json.loads(route.calls.last.request.content)
        assert body["method"] == "eth_sendTransaction"
        assert body["params"][0]["from"] == SAFE

    @respx.mock
    def test_batch_uses_send_calls(self):
        respx.post(SIGNER).mock(side_effect=[
            Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"id": "batch-1"}}),
            Response(200, json={"jsonrpc": "2.0", "id": 2, "result": {
                "receipts": [{"transactionHash": "0xmined"}],
            }}),
        ])
        outcome = RemoteSignerSession(SIGNER, SAFE).execute(_call(2))
        assert outcome.executed is True
        assert outcome.transaction_hash == "0xmined"
        assert outcome.safe_tx_hash == "batch-1"

    @respx.mock
    def test_batch_polled_until_mined(self):
        respx.post(SIGNER).mock(side_effect=_bundle_signer([
            {"status": "PENDING"},
            {"status": 100, "receipts": []},
            {"status": "CONFIRMED", "receipts": [{"transactionHash": MINED_TX_HASH}]},
        ]))
        clock = FakeClock()
        session = RemoteSignerSession(SIGNER, SAFE, clock=clock, sleep=clock.sleep)
        outcome = session.execute(_call(2))
        assert outcome.executed is True
        assert outcome.transaction_hash == MINED_TX_HASH
        assert clock.sleeps == [2.0, 2.0]

    @respx.mock
    def test_executor_gets_hash_for_remote_batch(self):
        respx.post(SIGNER).mock(side_effect=_bundle_signer([
            {"status": "PENDING"},
            {"status": "CONFIRMED", "receipts": [{"transactionHash": MINED_TX_HASH}]},
        ]))
        clock = FakeClock()
        session = RemoteSignerSession(SIGNER, SAFE, clock=clock, sleep=clock.sleep)
        executor = TransactionExecutor(ContractsConfig().multisend_call_only)
        submitted = executor.execute(BatchPlan(transactions=_call(2).transactions), session)
        assert submitted.transaction_hash == MINED_TX_HASH
        assert submitted.safe_tx_hash == "bundle-1"

    @respx.mock
    def test_batch_still_pending_not_executed(self):
        respx.post(SIGNER).mock(side_effect=_bundle_signer([{"status": "PENDING"}]))
        clock = FakeClock()
        session = RemoteSignerSession(
            SIGNER, SAFE, poll_interval=2.0, status_timeout=6.0, clock=clock, sleep=clock.sleep
        )
        outcome = session.execute(_call(2))
        assert outcome.executed is False
        assert outcome.safe_tx_hash == "bundle-1"
        assert clock.sleeps == [2.0, 2.0, 2.0]

    @respx.mock
    def test_failed_batch_raises(self):
        respx.post(SIGNER).mock(side_effect=_bundle_signer([{"status": "PENDING"}, {"status": 500}]))
        clock = FakeClock()
        session = RemoteSignerSession(SIGNER, SAFE, clock=clock, sleep=clock.sleep)
        with pytest.raises(WalletSessionError, match="failed with status 500"):
            session.execute(_call(2))

    @respx.mock
    def test_user_rejection_carries_code(self):
        respx.post(SIGNER).mock(
            return_value=Response(200, json={
                "jsonrpc": "2.0", "id": 1,
                "error": {"code": 4001, "message": "User rejected the request"},
            })
        )
        with pytest.raises(WalletSessionError) as exc:
            RemoteSignerSession(SIGNER, SAFE).execute(_call(1))
        assert exc.value.code == 4001

    @respx.mock
    def test_missing_hash(self):
        respx.post(SIGNER).mock(
            return_value=Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})
        )
        with pytest.raises(WalletSessionError, match="missing hash"):
            RemoteSignerSession(SIGNER, SAFE).execute(
                SafeCall(SAFE, "0x", 0, Operation.CALL, [TransactionRequest(SAFE, "0x")])
            )

    @respx.mock
    def test_personal_sign(self):
        route = respx.post(SIGNER).mock(
            return_value=Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0xsig"})
        )
        assert RemoteSignerSession(SIGNER, SAFE).sign_message("hi") == "0xsig"
        assert json.loads(route.calls.last.request.content)["params"] == ["hi", SAFE]
