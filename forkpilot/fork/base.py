"""Common contract of the fork backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from forkpilot.fork.models import TransactionInfo


class ForkBackend(ABC):
    """A provider that lazily diverts state changes onto a forked chain."""

    chain_id: int

    @abstractmethod
    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Answer a JSON-RPC call, from the fork once one exists."""
        ...

    @abstractmethod
    async def refork(self) -> None:
        """Discard the current fork and start over from the chain head."""
        ...

    @abstractmethod
    async def delete_fork(self) -> None:
        """Tear the fork down. Idempotent and best-effort."""
        ...

    @abstractmethod
    async def get_transaction_info(self, transaction_hash: str) -> TransactionInfo:
        """Execution metadata for a transaction sent to the fork."""
        ...

    async def close(self) -> None:
        await self.delete_fork()
