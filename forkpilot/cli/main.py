"""forkpilot CLI: simulate and batch transactions for a Safe avatar.

Usage:
    forkpilot encode <file>               Encode transactions into one batch
    forkpilot simulate <file>             Run transactions on a fresh fork
    forkpilot fork create --chain-id <n>  Create a fork on the fork service
    forkpilot fork delete <fork-id>       Delete a fork
    forkpilot config                      Show current configuration
    forkpilot version                     Print version

<file> is a JSON list of ``eth_sendTransaction`` parameter objects.
A connection file is a stored connection as JSON; older shapes are migrated.

Examples:
    forkpilot encode txs.json --connection safe.json
    forkpilot simulate txs.json --connection safe.json --rpc-url https://rpc.gnosischain.com
    forkpilot fork create --chain-id 100
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any

from forkpilot.core.connection import Connection, migrate_connection
from forkpilot.core.logging import SessionLogFilter, setup_logging

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_STATUS_COLOR = {
    "recorded": _YELLOW,
    "decoded": _CYAN,
    "confirmed": _GREEN,
}


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forkpilot",
        description="forkpilot: simulate and batch transactions for a Safe avatar",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    sub = parser.add_subparsers(dest="command")

    # ── encode ───────────────────────────────────────────────────────────────
    encode_p = sub.add_parser("encode", help="Encode transactions into one batch")
    encode_p.add_argument("file", help="JSON list of transactions")
    encode_p.add_argument("--connection", "-c", help="Connection JSON; also print the module call")
    encode_p.add_argument("--multisend", help="MultiSend contract address override")

    # ── simulate ─────────────────────────────────────────────────────────────
    sim_p = sub.add_parser("simulate", help="Run transactions on a fresh fork")
    sim_p.add_argument("file", help="JSON list of transactions")
    sim_p.add_argument("--connection", "-c", required=True, help="Connection JSON")
    sim_p.add_argument("--rpc-url", required=True, help="Live chain JSON-RPC URL")
    sim_p.add_argument("--no-decode", action="store_true", help="Skip ABI lookups")
    sim_p.add_argument("--keep-fork", action="store_true", help="Do not delete the fork afterwards")

    # ── fork ─────────────────────────────────────────────────────────────────
    fork_p = sub.add_parser("fork", help="Manage forks on the fork service")
    fork_sub = fork_p.add_subparsers(dest="fork_command")
    create_p = fork_sub.add_parser("create", help="Create a fork")
    create_p.add_argument("--chain-id", type=int, required=True)
    create_p.add_argument("--block-number", type=int, default=None)
    delete_p = fork_sub.add_parser("delete", help="Delete a fork")
    delete_p.add_argument("fork_id")

    # ── config / version ─────────────────────────────────────────────────────
    sub.add_parser("config", help="Show current configuration")
    sub.add_parser("version", help="Print version")

    return parser


# ── Input helpers ────────────────────────────────────────────────────────────


def _load_json(path: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"'{file_path}' does not exist")
    return json.loads(file_path.read_text())


def _load_transactions(path: str) -> list[dict[str, Any]]:
    data = _load_json(path)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(tx, dict) and tx.get("to") for tx in data):
        raise ValueError("expected a JSON list of transactions, each with a 'to' address")
    return data


def _load_connection(path: str) -> Connection:
    return migrate_connection(_load_json(path))


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ── Encode command ───────────────────────────────────────────────────────────


def _run_encode(args: argparse.Namespace) -> int:
    from forkpilot.batch.multisend import encode_batch
    from forkpilot.decoding.inputs import decode_single
    from forkpilot.providers.wrapping_provider import wrap_request

    transactions = _load_transactions(args.file)
    inputs = [decode_single(tx, i) for i, tx in enumerate(transactions, 1)]
    batch = encode_batch(inputs, args.multisend)

    if not args.quiet:
        print(f"\n{_BOLD}Batch of {len(inputs)} transaction(s){_RESET}\n", file=sys.stderr)
    output: dict[str, Any] = {"batch": batch.to_transaction()}

    if args.connection:
        output["module_call"] = wrap_request(batch, _load_connection(args.connection))

    _print_json(output)
    return 0


# ── Simulate command ─────────────────────────────────────────────────────────


def _print_ledger(session: Any, quiet: bool) -> None:
    for entry in session.ledger:
        status = entry.status.value
        badge = _c(f" {status.upper()} ", _STATUS_COLOR.get(status, "") + _BOLD)
        described = getattr(entry.input, "function_signature", None) or entry.input.type.value
        print(f"  {_DIM}{entry.id:>3}.{_RESET} {badge} {_c(entry.input.to, _CYAN)} {described}", file=sys.stderr)
        if entry.transaction_hash and not quiet:
            print(f"       {_DIM}{entry.transaction_hash}{_RESET}", file=sys.stderr)


async def _run_simulate(args: argparse.Namespace) -> int:
    from forkpilot.core.errors import TransactionNotFoundError
    from forkpilot.core.rpc import HttpJsonRpcProvider
    from forkpilot.decoding.abi import AbiResolver
    from forkpilot.fork.remote import RemoteForkBackend
    from forkpilot.session import PilotSession

    connection = _load_connection(args.connection)
    transactions = _load_transactions(args.file)

    async with HttpJsonRpcProvider(args.rpc_url) as live:
        backend = RemoteForkBackend(live, connection.chain_id)
        resolver = None if args.no_decode else AbiResolver(connection.chain_id, provider=live)
        session = PilotSession(connection, live, backend, abi_resolver=resolver)

        try:
            for tx in transactions:
                await session.provider.request("eth_sendTransaction", [tx])
            await session.wait_for_decoding()

            if not args.quiet:
                fork = backend.fork
                print(f"\n{_BOLD}Simulated on fork{_RESET} {fork.id if fork else '?'}\n", file=sys.stderr)
                _print_ledger(session, args.quiet)
                print(file=sys.stderr)

            links = []
            for entry in session.ledger:
                if not entry.transaction_hash:
                    continue
                try:
                    info = await backend.get_transaction_info(entry.transaction_hash)
                except TransactionNotFoundError:
                    logger.warning("No simulation link for %s", entry.transaction_hash)
                    continue
                links.append(info.dashboard_link)

            _print_json({"module_call": session.export_batch(), "simulations": links})
        finally:
            if args.keep_fork:
                await backend.release()
                if resolver is not None:
                    await resolver.close()
            else:
                await session.close()
    return 0


# ── Fork command ─────────────────────────────────────────────────────────────


async def _run_fork(args: argparse.Namespace) -> int:
    from forkpilot.fork.remote import ForkApiClient

    api = ForkApiClient()
    try:
        if args.fork_command == "create":
            fork = await api.create_fork(args.chain_id, args.block_number)
            _print_json(fork)
        elif args.fork_command == "delete":
            await api.delete_fork(args.fork_id)
            if not args.quiet:
                print(_c(f"  Deleted fork {args.fork_id}", _GREEN))
        else:
            print(_c("Error: expected 'create' or 'delete'.", _RED), file=sys.stderr)
            return 1
    finally:
        await api.close()
    return 0


# ── Config command ───────────────────────────────────────────────────────────


def _run_config() -> int:
    """Print current settings (redacted)."""
    from forkpilot.core.config import get_settings

    s = get_settings()
    print(f"\n{_BOLD}forkpilot configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        if any(kw in field_name for kw in ("password", "secret", "key", "token")):
            val = "****" if val else "(not set)"
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    from forkpilot.core.config import get_settings

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "version":
        print(f"forkpilot {VERSION}")
        return 0

    if args.command == "config":
        return _run_config()

    settings = get_settings()
    setup_logging(settings.app_env, args.log_level or settings.log_level)
    session_filter = SessionLogFilter(uuid.uuid4().hex[:12])
    for handler in logging.getLogger().handlers:
        handler.addFilter(session_filter)

    try:
        if args.command == "encode":
            return _run_encode(args)
        if args.command == "simulate":
            return asyncio.run(_run_simulate(args))
        if args.command == "fork":
            return asyncio.run(_run_fork(args))
    except Exception as exc:
        logger.debug("Command failed", exc_info=True)
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
