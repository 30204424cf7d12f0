"""Local fork sandbox backend.

The chain simulator runs inside its own isolated context and is reachable
only over the message bridge.  Two bridges connect the contexts:

  host  --SANDBOX_RPC-->     sandbox   calls into the simulator
  host  <--LIVE_CHAIN_RPC--  sandbox   simulator fetching unforked state

:class:`LocalForkSandbox` is the sandbox half; :class:`LocalForkBackend` is
the host half that the forking provider talks to.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from typing import Any, Callable

from forkpilot.bridge.channel import Endpoint
from forkpilot.bridge.client import BridgeClient
from forkpilot.bridge.envelope import LIVE_CHAIN_RPC, SANDBOX_RPC
from forkpilot.bridge.host import BridgeHost
from forkpilot.core.config import get_settings
from forkpilot.core.errors import TransactionNotFoundError
from forkpilot.core.types import MUTATING_METHODS, Eip1193Provider
from forkpilot.fork.base import ForkBackend
from forkpilot.fork.models import TransactionInfo

logger = logging.getLogger(__name__)


@dataclass
class SimulatorOptions:
    """What the embedded simulator is built with."""

    fork_provider: Eip1193Provider
    chain_id: int
    db_path: str
    unlocked_accounts: list[str] = field(default_factory=list)


SimulatorFactory = Callable[[SimulatorOptions], Eip1193Provider]


async def reset_store(db_path: str) -> None:
    """Delete the simulator's backing store so every session forks fresh."""
    await asyncio.to_thread(shutil.rmtree, db_path, ignore_errors=True)


class LocalForkSandbox:
    """Runs the simulator inside the sandbox context."""

    def __init__(
        self,
        endpoint: Endpoint,
        host: Endpoint,
        simulator_factory: SimulatorFactory,
        chain_id: int,
        unlocked_accounts: list[str] | None = None,
        db_path: str | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.host = host
        self._simulator_factory = simulator_factory
        self.chain_id = chain_id
        self.unlocked_accounts = unlocked_accounts or []
        self.db_path = db_path or get_settings().local_fork_db_path
        self._live_chain: BridgeClient | None = None
        self._server: BridgeHost | None = None

    async def start(self) -> None:
        await reset_store(self.db_path)

        self._live_chain = BridgeClient(self.endpoint, self.host, LIVE_CHAIN_RPC)
        simulator = self._simulator_factory(
            SimulatorOptions(
                fork_provider=self._live_chain,
                chain_id=self.chain_id,
                db_path=self.db_path,
                unlocked_accounts=self.unlocked_accounts,
            )
        )
        self._server = BridgeHost(self.endpoint, simulator, SANDBOX_RPC, source=self.host)

        # tells the host both bridges are listening
        self._live_chain.announce()
        logger.info("Local fork sandbox started", extra={"chain_id": self.chain_id})

    def close(self) -> None:
        if self._server is not None:
            self._server.close()
        if self._live_chain is not None:
            self._live_chain.close()


class LocalForkBackend(ForkBackend):
    """Host-side handle on a :class:`LocalForkSandbox`.

    The simulator forks lazily by itself, so "creating" a fork here means
    taking a snapshot before the first state change; re-forking and
    deleting revert to that snapshot.
    """

    def __init__(
        self,
        provider: Eip1193Provider,
        chain_id: int,
        endpoint: Endpoint,
        sandbox: Endpoint,
    ) -> None:
        self.chain_id = int(chain_id)
        self._sandbox_rpc = BridgeClient(endpoint, sandbox, SANDBOX_RPC)
        self._live_chain_host = BridgeHost(endpoint, provider, LIVE_CHAIN_RPC)
        self._snapshot_task: asyncio.Task[Any] | None = None

    async def wait_until_ready(self) -> None:
        """Wait for the sandbox handshake."""
        await self._live_chain_host.ready.wait()

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        if method == "eth_chainId":
            return hex(self.chain_id)

        if method in MUTATING_METHODS and self._snapshot_task is None:
            self._snapshot_task = asyncio.get_running_loop().create_task(
                self._sandbox_rpc.request("evm_snapshot")
            )
        task = self._snapshot_task
        if task is not None:
            try:
                await task
            except Exception:
                # take a fresh snapshot on the next send
                if self._snapshot_task is task:
                    self._snapshot_task = None
                raise

        return await self._sandbox_rpc.request(method, params)

    async def refork(self) -> None:
        task = self._snapshot_task
        self._snapshot_task = None
        if task is None:
            return
        snapshot_id = await task
        await self._sandbox_rpc.request("evm_revert", [snapshot_id])
        logger.info("Reverted local fork to snapshot %s", snapshot_id)

    async def delete_fork(self) -> None:
        try:
            await self.refork()
        except Exception as exc:
            logger.warning("Failed to reset local fork: %s", exc)

    async def close(self) -> None:
        await self.delete_fork()
        self._sandbox_rpc.close()
        self._live_chain_host.close()

    async def get_transaction_info(self, transaction_hash: str) -> TransactionInfo:
        receipt = await self.request("eth_getTransactionReceipt", [transaction_hash])
        if not receipt:
            raise TransactionNotFoundError(transaction_hash)
        block_number = receipt.get("blockNumber")
        return TransactionInfo(
            hash=transaction_hash,
            block_number=int(block_number, 16) if isinstance(block_number, str) else block_number,
            status=receipt.get("status") == "0x1",
            receipt=receipt,
        )
