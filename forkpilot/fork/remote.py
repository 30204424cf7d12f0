"""Remote fork service backend.

Forks are hosted by an external simulation service.  A control API creates,
inspects and deletes them; each fork exposes its own JSON-RPC URL.

Behaviour:
  - No fork exists until the first ``eth_sendTransaction`` / ``evm_snapshot``
    / ``evm_revert``; until then every call goes read-only to the live chain.
  - ``eth_chainId`` is always answered locally.
  - ``eth_blockNumber`` is served from a local cache while a fork exists, to
    stay under the service's polling rate limit.  After each sent
    transaction the fork is advanced two blocks in the background, so apps
    waiting for inclusion in a later block see progress.
  - Each sent transaction's backend id is looked up right away, so its
    execution metadata can be fetched later by hash.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from forkpilot.core.config import Settings, get_settings
from forkpilot.core.errors import (
    ForkNotAvailableError,
    JsonRpcError,
    SimulationUnavailableError,
    TransactionNotFoundError,
)
from forkpilot.core.rpc import HttpJsonRpcProvider
from forkpilot.core.types import MUTATING_METHODS, SNAPSHOT_METHODS, Eip1193Provider
from forkpilot.fork.base import ForkBackend
from forkpilot.fork.models import Fork, TransactionInfo

logger = logging.getLogger(__name__)

# JSON-RPC "internal error" the fork RPC answers with when rate limiting
RATE_LIMIT_ERROR_CODE = -32603


class ForkApiClient:
    """Client for the fork service control API."""

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.fork_api_url).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.http_timeout_seconds),
            headers={"Accept": "application/json"},
        )

    async def create_fork(self, network_id: int, block_number: int | None = None) -> dict[str, Any]:
        """Create a fork of ``network_id``, at ``block_number`` or the current head."""
        body: dict[str, Any] = {"network_id": str(network_id)}
        if block_number is not None:
            body["block_number"] = block_number
        resp = await self._client.post(f"{self.base_url}/forks", json=body)
        resp.raise_for_status()
        return resp.json()["simulation_fork"]

    async def get_fork(self, fork_id: str) -> dict[str, Any]:
        """Fork status, including ``global_head`` and ``block_number``."""
        resp = await self._client.get(f"{self.base_url}/forks/{fork_id}")
        resp.raise_for_status()
        return resp.json()["simulation_fork"]

    async def get_transaction(self, fork_id: str, transaction_id: str) -> dict[str, Any]:
        resp = await self._client.get(f"{self.base_url}/forks/{fork_id}/transaction/{transaction_id}")
        resp.raise_for_status()
        return resp.json()["fork_transaction"]

    async def delete_fork(self, fork_id: str) -> None:
        resp = await self._client.delete(f"{self.base_url}/forks/{fork_id}")
        resp.raise_for_status()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@dataclass
class _LiveFork:
    fork: Fork
    rpc: Eip1193Provider


class RemoteForkBackend(ForkBackend):
    """Fork backend running on the hosted simulation service."""

    def __init__(
        self,
        provider: Eip1193Provider,
        chain_id: int,
        api: ForkApiClient | None = None,
        rpc_factory: Callable[[str], Eip1193Provider] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._provider = provider
        self.chain_id = int(chain_id)
        self._api = api or ForkApiClient(self._settings.fork_api_url)
        self._rpc_factory = rpc_factory or HttpJsonRpcProvider
        self._fork_task: asyncio.Task[_LiveFork] | None = None
        self._transaction_info: dict[str, asyncio.Task[TransactionInfo]] = {}
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def fork(self) -> Fork | None:
        """The current fork, once its creation has completed."""
        live = self._current()
        return live.fork if live else None

    # ── Provider contract ────────────────────────────────────────────

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        if method == "eth_chainId":
            # some wallet backends answer with a number instead of a hex string
            return hex(self.chain_id)

        current = self._current()
        if method == "eth_blockNumber" and current and current.fork.block_number is not None:
            return hex(current.fork.block_number)

        if self._fork_task is None:
            if method in MUTATING_METHODS or method in SNAPSHOT_METHODS:
                self._fork_task = self._spawn_fork()
            else:
                return await self._provider.request(method, params)

        live = await self._fork_task
        try:
            result = await live.rpc.request(method, params or [])
        except JsonRpcError as exc:
            if exc.rpc_code == RATE_LIMIT_ERROR_CODE:
                logger.error(
                    "Fork RPC failed, probably rate limited: %s", exc,
                    extra={"fork_id": live.fork.id, "method": method},
                )
                raise SimulationUnavailableError(cause=exc) from exc
            raise
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 429:
                raise SimulationUnavailableError(cause=exc) from exc
            raise

        if method == "eth_sendTransaction":
            await self._record_transaction(live, result)
        return result

    # ── Fork lifecycle ───────────────────────────────────────────────

    async def refork(self) -> None:
        previous = self._detach()
        if previous is not None:
            self._run_in_background(self._destroy(previous))
        self._fork_task = self._spawn_fork()
        await self._fork_task

    async def delete_fork(self) -> None:
        previous = self._detach()
        if previous is not None:
            await self._destroy(previous)

    async def close(self) -> None:
        await self.delete_fork()
        await self.join()
        await self._api.close()

    async def release(self) -> None:
        """Close the clients but leave the fork running on the service."""
        await self.join()
        task = self._detach()
        if task is not None:
            try:
                live = await task
            except Exception:
                live = None
            close = getattr(live.rpc, "close", None) if live else None
            if close is not None:
                await close()
        await self._api.close()

    async def join(self) -> None:
        """Wait for background work (block advances, teardowns) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _current(self) -> _LiveFork | None:
        task = self._fork_task
        if task is None or not task.done() or task.cancelled() or task.exception() is not None:
            return None
        return task.result()

    def _spawn_fork(self) -> asyncio.Task[_LiveFork]:
        task = asyncio.get_running_loop().create_task(self._create_fork())
        task.add_done_callback(self._on_fork_created)
        return task

    def _on_fork_created(self, task: asyncio.Task[_LiveFork]) -> None:
        if task.cancelled() or task.exception() is None:
            return
        # let the next mutating call try again
        if self._fork_task is task:
            self._fork_task = None

    async def _create_fork(self) -> _LiveFork:
        data = await self._api.create_fork(self.chain_id)
        fork_id = str(data["id"])
        rpc_url = self._settings.fork_rpc_url_template.format(fork_id=fork_id)
        fork = Fork(
            id=fork_id,
            chain_id=self.chain_id,
            rpc_url=rpc_url,
            block_number=data.get("block_number"),
        )
        logger.info(
            "Created fork of chain %d at block %s", self.chain_id, fork.block_number,
            extra={"fork_id": fork_id, "chain_id": self.chain_id},
        )
        return _LiveFork(fork=fork, rpc=self._rpc_factory(rpc_url))

    def _detach(self) -> asyncio.Task[_LiveFork] | None:
        task = self._fork_task
        self._fork_task = None
        self._transaction_info.clear()
        return task

    async def _destroy(self, task: asyncio.Task[_LiveFork]) -> None:
        try:
            live = await task
        except Exception:
            return  # never created, nothing to delete

        try:
            await self._api.delete_fork(live.fork.id)
            logger.info("Deleted fork", extra={"fork_id": live.fork.id})
        except Exception as exc:
            logger.warning("Failed to delete fork: %s", exc, extra={"fork_id": live.fork.id})

        close = getattr(live.rpc, "close", None)
        if close is not None:
            await close()

    # ── Transactions ─────────────────────────────────────────────────

    async def _record_transaction(self, live: _LiveFork, transaction_hash: str) -> None:
        try:
            status = await self._api.get_fork(live.fork.id)
        except Exception as exc:
            # the send went through; only its metadata link is missing
            logger.warning(
                "Failed to look up fork transaction id for %s: %s", transaction_hash, exc,
                extra={"fork_id": live.fork.id},
            )
        else:
            live.fork.advance_block_number(status.get("block_number"))
            head_transaction_id = status.get("global_head")
            if head_transaction_id:
                live.fork.transaction_ids[transaction_hash] = str(head_transaction_id)
        self._run_in_background(self._advance_blocks(live))

    async def _advance_blocks(self, live: _LiveFork) -> None:
        increment = self._settings.block_advance_increment
        await asyncio.sleep(self._settings.block_advance_delay_seconds)
        await live.rpc.request("evm_increaseBlocks", [hex(increment)])
        if live.fork.block_number is not None:
            live.fork.block_number += increment

    async def get_transaction_info(self, transaction_hash: str) -> TransactionInfo:
        task = self._transaction_info.get(transaction_hash)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch_transaction_info(transaction_hash))
            self._transaction_info[transaction_hash] = task
            task.add_done_callback(lambda t: self._forget_failed_info(transaction_hash, t))
        return await asyncio.shield(task)

    def _forget_failed_info(self, transaction_hash: str, task: asyncio.Task[TransactionInfo]) -> None:
        if (task.cancelled() or task.exception() is not None) and self._transaction_info.get(transaction_hash) is task:
            del self._transaction_info[transaction_hash]

    async def _fetch_transaction_info(self, transaction_hash: str) -> TransactionInfo:
        if self._fork_task is None:
            raise ForkNotAvailableError()
        live = await self._fork_task

        transaction_id = live.fork.transaction_ids.get(transaction_hash)
        if not transaction_id:
            raise TransactionNotFoundError(transaction_hash)

        data = await self._api.get_transaction(live.fork.id, transaction_id)
        return TransactionInfo.model_validate({
            **data,
            "dashboard_link": self._settings.fork_dashboard_url_template.format(
                fork_id=live.fork.id, transaction_id=transaction_id,
            ),
        })

    # ── Helpers ──────────────────────────────────────────────────────

    def _run_in_background(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Background fork task failed: %s", task.exception())
