"""A pilot session: simulate on a fork, record, batch, submit.

While simulating, the dApp talks to :attr:`PilotSession.provider`, which is
the forking provider.  Every transaction it sends is fast-decoded and
recorded in the ledger before it is forwarded; a full decode (with ABI
lookup) runs concurrently and upgrades the entry when it finishes.
Submitting encodes the new entries as one batch and sends it through the
wrapping provider.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from forkpilot.batch.multisend import encode_batch, format_value
from forkpilot.core.config import Settings, get_settings
from forkpilot.core.connection import Connection
from forkpilot.core.types import Eip1193Provider, MetaTransaction, TransactionData
from forkpilot.decoding.abi import AbiResolver
from forkpilot.decoding.inputs import decode_single, decode_with_abi_lookup, encode_single
from forkpilot.fork.base import ForkBackend
from forkpilot.ledger.ledger import TransactionLedger
from forkpilot.providers.fork_provider import ForkProvider, ForkProviderHooks
from forkpilot.providers.wrapping_provider import WrappingProvider, wrap_request

logger = logging.getLogger(__name__)


class PilotSession:
    def __init__(
        self,
        connection: Connection,
        provider: Eip1193Provider,
        backend: ForkBackend,
        abi_resolver: AbiResolver | None = None,
        simulate: bool = True,
        settings: Settings | None = None,
    ) -> None:
        self.connection = connection
        self.simulate = simulate
        self.backend = backend
        self.ledger = TransactionLedger()
        self._settings = settings or get_settings()
        self._abi_resolver = abi_resolver
        self._decoding: set[asyncio.Task[Any]] = set()

        self.wrapping_provider = WrappingProvider(provider, connection)
        self.fork_provider = ForkProvider(
            backend,
            connection.avatar_address,
            ForkProviderHooks(
                on_before_transaction_send=self._on_before_transaction_send,
                on_transaction_sent=self._on_transaction_sent,
            ),
        )

    @property
    def provider(self) -> Eip1193Provider:
        """What the dApp should be talking to right now."""
        return self.fork_provider if self.simulate else self.wrapping_provider

    # ── Ledger hooks ─────────────────────────────────────────────────

    def _on_before_transaction_send(self, transaction_id: int, transaction: TransactionData) -> None:
        self.ledger.record(transaction_id, transaction, decode_single(transaction, transaction_id))
        task = asyncio.get_running_loop().create_task(self._decode(transaction_id, transaction))
        self._decoding.add(task)
        task.add_done_callback(self._decoding.discard)

    def _on_transaction_sent(self, transaction_id: int, transaction_hash: str) -> None:
        self.ledger.confirm(transaction_id, transaction_hash)

    async def _decode(self, transaction_id: int, transaction: TransactionData) -> None:
        fetch_abi = self._abi_resolver.fetch_abi if self._abi_resolver else None
        try:
            decoded = await decode_with_abi_lookup(transaction, transaction_id, fetch_abi)
        except Exception as exc:
            logger.warning("Could not decode transaction: %s", exc, extra={"tx_id": transaction_id})
            return
        self.ledger.decode(transaction_id, decoded)

    async def wait_for_decoding(self) -> None:
        """Wait until every in-flight full decode has finished."""
        while self._decoding:
            await asyncio.gather(*list(self._decoding), return_exceptions=True)

    # ── Batching ─────────────────────────────────────────────────────

    def build_batch(self) -> MetaTransaction:
        return encode_batch(self.ledger.new_entries, self._settings.multisend_address)

    def export_batch(self) -> TransactionData:
        """The module call the pilot would sign for the pending batch."""
        return wrap_request(self.build_batch(), self.connection)

    async def submit_transactions(self) -> str:
        """Send all new entries as one batch through the module."""
        batch = self.build_batch()
        count = len(self.ledger.new_entries)
        batch_hash = await self.wrapping_provider.request("eth_sendTransaction", [batch.to_transaction()])
        self.ledger.mark_submitted(batch_hash)
        logger.info(
            "Submitted batch of %d transaction(s): %s", count, batch_hash,
            extra={"chain_id": self.connection.chain_id},
        )
        return batch_hash

    # ── Re-fork ──────────────────────────────────────────────────────

    async def refork_and_replay(self) -> None:
        """Start a fresh fork and re-send the new entries onto it, in order."""
        replay = self.ledger.new_entries
        if self.ledger.entries:
            self.ledger.remove(self.ledger.entries[0].id)

        await self.fork_provider.refork()

        for entry in replay:
            encoded = encode_single(entry.input)
            await self.fork_provider.request("eth_sendTransaction", [{
                "to": encoded.to,
                "data": encoded.data,
                "value": format_value(encoded.value),
                "from": self.connection.avatar_address,
            }])
        logger.info("Re-forked and replayed %d transaction(s)", len(replay))

    async def close(self) -> None:
        for task in list(self._decoding):
            task.cancel()
        await asyncio.gather(*list(self._decoding), return_exceptions=True)
        await self.backend.close()
        if self._abi_resolver is not None:
            await self._abi_resolver.close()
