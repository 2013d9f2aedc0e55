"""CLI entry point for the Polyswap order service."""

import argparse
import json
import logging
import os

from polyswap.config.loader import get_config_value, load_config, set_config_value, snapshot_config
from polyswap.execution.clob_client import ClobClient, ClobClientError
from polyswap.models.workflow import ProgressUpdate
from polyswap.storage import order_repo
from polyswap.storage.database import connect, run_migrations
from polyswap.wallet.safe_session import SafeOwnerSession
from polyswap.wallet.session import RemoteSignerSession, WalletSession
from polyswap.workflow.wiring import (
    broadcast_orchestrator,
    build_clob_client,
    build_components,
    cancellation_orchestrator,
)

DEFAULT_CONFIG = "ops/configs/default.yaml"
DEFAULT_DB = "data/polyswap.db"
OWNER_KEY_ENV = "POLYSWAP_OWNER_KEY"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="polyswap",
        description="Polyswap conditional swap orders",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG, help="Config YAML path"
    )
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite DB path")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Create or migrate the database")

    show_p = sub.add_parser("show", help="Show one order")
    show_p.add_argument("order_id", type=int)

    list_p = sub.add_parser("list", help="List orders for an owner")
    list_p.add_argument("owner")
    list_p.add_argument("--limit", type=int, default=100)
    list_p.add_argument("--offset", type=int, default=0)

    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=8000)

    # broadcast / cancel drive the workflows from a terminal
    for name, help_text in (
        ("broadcast", "Broadcast a draft order"),
        ("cancel", "Cancel a live order"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("target", help="Order ID (broadcast) or order hash (cancel)")
        p.add_argument("--safe", help="Safe address owned by $" + OWNER_KEY_ENV)
        p.add_argument("--signer-url", help="Remote wallet JSON-RPC endpoint")
        p.add_argument("--address", help="Wallet address for --signer-url")

    # config show / config set
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    set_p = config_sub.add_parser("set", help="Set a config value")
    set_p.add_argument("keyvalue", help="key=value to set")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    if args.command == "init-db":
        return _cmd_init_db(config, args)
    elif args.command == "show":
        return _cmd_show(args)
    elif args.command == "list":
        return _cmd_list(args)
    elif args.command == "serve":
        return _cmd_serve(config, args)
    elif args.command == "broadcast":
        return _cmd_broadcast(config, args)
    elif args.command == "cancel":
        return _cmd_cancel(config, args)
    elif args.command == "config":
        return _cmd_config(config, args)
    else:
        parser.print_help()
        return 1


def _cmd_init_db(config, args) -> int:
    conn = connect(args.db)
    applied = run_migrations(conn)
    snapshot_config(config, conn)
    conn.close()
    if applied:
        print(f"Applied migrations: {', '.join(applied)}")
    else:
        print("Database up to date")
    return 0


def _cmd_show(args) -> int:
    conn = connect(args.db)
    run_migrations(conn)
    order = order_repo.get_order(conn, args.order_id)
    conn.close()
    if order is None:
        print(f"Order {args.order_id} not found")
        return 1
    print(json.dumps(order.to_dict(), indent=2))
    return 0


def _cmd_list(args) -> int:
    conn = connect(args.db)
    run_migrations(conn)
    orders = order_repo.list_orders_by_owner(
        conn, args.owner, limit=args.limit, offset=args.offset
    )
    conn.close()
    print(f"Orders for {args.owner.lower()}: {len(orders)}")
    for o in orders:
        print(
            f"  #{o.id} {o.status}: {o.sell_amount} {o.sell_token} -> "
            f">= {o.min_buy_amount} {o.buy_token}"
        )
    return 0


def _cmd_serve(config, args) -> int:
    import uvicorn

    from polyswap.api import create_app

    uvicorn.run(create_app(config, args.db), host=args.host, port=args.port)
    return 0


def _session(config, args, reader) -> WalletSession | None:
    if args.signer_url:
        if not args.address:
            print("Error: --signer-url requires --address")
            return None
        return RemoteSignerSession(
            args.signer_url,
            args.address,
            chain_id=config.chain.chain_id,
            poll_interval=config.workflow.poll_interval_seconds,
            status_timeout=config.workflow.order_confirmation_timeout_seconds,
        )
    if args.safe:
        key = os.environ.get(OWNER_KEY_ENV, "")
        if not key:
            print(f"Error: {OWNER_KEY_ENV} not set")
            return None
        return SafeOwnerSession(args.safe, key, reader, chain_id=config.chain.chain_id)
    print("Error: pass --safe or --signer-url")
    return None


def _clob(config) -> ClobClient | None:
    try:
        return build_clob_client(config)
    except ClobClientError as e:
        print(f"Error: {e}")
        return None


def _print_progress(update: ProgressUpdate) -> None:
    print(f"  [{update.current}/{update.total}] {update.current_tx_type}")


def _print_outcome(state) -> int:
    for warning in state.warnings:
        print(f"WARNING: {warning}")
    if state.error is not None:
        print(f"Error ({state.error.kind}): {state.error.message}")
        return 1
    if not state.terminal:
        print(f"Stopped at {state.step}, pending transaction {state.pending_tx_hash}")
        return 1
    print(f"Done: {state.step}")
    return 0


def _cmd_broadcast(config, args) -> int:
    try:
        order_id = int(args.target)
    except ValueError:
        print(f"Error: invalid order ID {args.target!r}")
        return 1
    components = build_components(config)
    session = _session(config, args, components.reader)
    if session is None:
        return 1
    clob = _clob(config)
    if clob is None:
        return 1
    conn = connect(args.db)
    run_migrations(conn)
    try:
        orchestrator = broadcast_orchestrator(
            config, conn, session, clob, components, _print_progress
        )
        state = orchestrator.run(order_id)
        if state.error is not None and state.error.retryable:
            print(f"Retrying after {state.error.kind}")
            state = orchestrator.resume(orchestrator.retry(state))
        return _print_outcome(state)
    finally:
        conn.close()


def _cmd_cancel(config, args) -> int:
    components = build_components(config)
    session = _session(config, args, components.reader)
    if session is None:
        return 1
    clob = _clob(config)
    if clob is None:
        return 1
    conn = connect(args.db)
    run_migrations(conn)
    try:
        orchestrator = cancellation_orchestrator(
            config, conn, session, clob, components, _print_progress
        )
        state = orchestrator.run(args.target, session.address)
        return _print_outcome(state)
    finally:
        conn.close()


def _cmd_config(config, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "set":
        kv = args.keyvalue
        if "=" not in kv:
            print("Error: use key=value format")
            return 1
        key, value = kv.split("=", 1)
        try:
            new_config = set_config_value(config, key.strip(), value.strip())
            print(f"Set {key} = {get_config_value(new_config, key.strip())}")
            return 0
        except Exception as e:
            print(f"Error: {e}")
            return 1
    else:
        print("Use: config show | config set key=value")
        return 1
