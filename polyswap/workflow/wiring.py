"""Construct orchestrators and their collaborators from configuration."""

import sqlite3
from dataclasses import dataclass

from polyswap.config.schema import PolyswapConfig
from polyswap.execution.batch_builder import BatchTransactionBuilder
from polyswap.execution.clob_client import ClobClient
from polyswap.execution.confirmation import ConfirmationWaiter
from polyswap.execution.executor import ProgressCallback, TransactionExecutor
from polyswap.wallet.chain_reader import ChainReader
from polyswap.wallet.session import WalletSession
from polyswap.wallet.signature import SignatureVerifier
from polyswap.workflow.broadcast import BroadcastOrchestrator
from polyswap.workflow.cancellation import CancellationOrchestrator


@dataclass
class Components:
    reader: ChainReader
    builder: BatchTransactionBuilder
    executor: TransactionExecutor
    waiter: ConfirmationWaiter
    verifier: SignatureVerifier


def build_components(config: PolyswapConfig, reader: ChainReader | None = None) -> Components:
    reader = reader or ChainReader(config.chain.rpc_url, timeout=config.chain.rpc_timeout_seconds)
    return Components(
        reader=reader,
        builder=BatchTransactionBuilder(reader, config.contracts),
        executor=TransactionExecutor(config.contracts.multisend_call_only),
        waiter=ConfirmationWaiter(
            reader,
            poll_interval=config.workflow.poll_interval_seconds,
            propagation_delay=config.workflow.propagation_delay_seconds,
        ),
        verifier=SignatureVerifier(
            reader,
            max_age_seconds=config.signature.max_age_seconds,
            future_tolerance_seconds=config.signature.future_tolerance_seconds,
        ),
    )


def build_clob_client(config: PolyswapConfig) -> ClobClient:
    return ClobClient(
        host=config.polymarket.clob_url,
        chain_id=config.chain.chain_id,
        signature_type=config.polymarket.signature_type,
        funder=config.polymarket.funder or None,
    )


def broadcast_orchestrator(
    config: PolyswapConfig,
    conn: sqlite3.Connection,
    session: WalletSession,
    clob: ClobClient,
    components: Components | None = None,
    on_progress: ProgressCallback | None = None,
) -> BroadcastOrchestrator:
    c = components or build_components(config)
    return BroadcastOrchestrator(
        conn,
        clob,
        c.builder,
        c.executor,
        c.waiter,
        session,
        workflow_config=config.workflow,
        order_size=config.polymarket.order_size,
        on_progress=on_progress,
    )


def cancellation_orchestrator(
    config: PolyswapConfig,
    conn: sqlite3.Connection,
    session: WalletSession,
    clob: ClobClient,
    components: Components | None = None,
    on_progress: ProgressCallback | None = None,
) -> CancellationOrchestrator:
    c = components or build_components(config)
    return CancellationOrchestrator(
        conn,
        clob,
        c.builder,
        c.executor,
        c.waiter,
        session,
        c.verifier,
        chain_id=config.chain.chain_id,
        workflow_config=config.workflow,
        on_progress=on_progress,
    )
