"""Provider that routes a dApp's calls onto a fork backend.

Every ``eth_sendTransaction`` gets a fresh, strictly increasing id and
passes through two hooks: one right before it is forwarded, one once the
fork returned its hash.  Hooks are plain synchronous callables, so a
subscriber sees the before-send notification ahead of the confirmation.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from forkpilot.core.errors import UnsupportedMethodError
from forkpilot.core.types import ACCOUNT_METHODS, SIGNING_METHODS, TransactionData
from forkpilot.fork.base import ForkBackend
from forkpilot.fork.models import TransactionInfo

logger = logging.getLogger(__name__)


def _ignore(*_: Any) -> None:
    return None


@dataclass
class ForkProviderHooks:
    on_before_transaction_send: Callable[[int, TransactionData], None] = _ignore
    on_transaction_sent: Callable[[int, str], None] = _ignore


class ForkProvider:
    """Simulating provider acting as ``avatar_address``."""

    def __init__(
        self,
        backend: ForkBackend,
        avatar_address: str,
        hooks: ForkProviderHooks | None = None,
    ) -> None:
        self.backend = backend
        self.avatar_address = avatar_address
        self.hooks = hooks or ForkProviderHooks()
        self._transaction_ids = itertools.count(1)

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        if method in ACCOUNT_METHODS:
            return [self.avatar_address]
        if method in SIGNING_METHODS:
            raise UnsupportedMethodError(method)
        if method == "eth_sendTransaction":
            return await self._send_transaction(dict((params or [{}])[0]))
        return await self.backend.request(method, params)

    async def _send_transaction(self, transaction: TransactionData) -> str:
        transaction_id = next(self._transaction_ids)
        self.hooks.on_before_transaction_send(transaction_id, transaction)

        transaction_hash = await self.backend.request(
            "eth_sendTransaction", [{**transaction, "from": self.avatar_address}]
        )
        logger.info(
            "Simulated transaction %s", transaction_hash,
            extra={"tx_id": transaction_id, "method": "eth_sendTransaction"},
        )

        self.hooks.on_transaction_sent(transaction_id, transaction_hash)
        return transaction_hash

    async def refork(self) -> None:
        await self.backend.refork()

    async def get_transaction_info(self, transaction_hash: str) -> TransactionInfo:
        return await self.backend.get_transaction_info(transaction_hash)
