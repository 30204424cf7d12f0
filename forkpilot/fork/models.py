"""Fork state and fork transaction metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class Fork:
    """One ephemeral forked chain."""

    id: str
    chain_id: int
    rpc_url: str = ""
    # Locally cached head; only ever advanced
    block_number: int | None = None
    # on-chain transaction hash -> backend transaction id
    transaction_ids: dict[str, str] = field(default_factory=dict)

    def advance_block_number(self, block_number: int | None) -> None:
        if block_number is None:
            return
        if self.block_number is None or block_number > self.block_number:
            self.block_number = block_number


class TransactionInfo(BaseModel):
    """Execution metadata of a transaction simulated on a fork."""

    model_config = ConfigDict(extra="allow")

    id: str = ""
    fork_id: str = ""
    hash: str = ""
    block_number: int | None = None
    gas: int | None = None
    status: bool | None = None
    receipt: dict[str, Any] = Field(default_factory=dict)
    dashboard_link: str = ""

    @property
    def gas_used(self) -> int | None:
        raw = self.receipt.get("gasUsed")
        if raw is None:
            return None
        return int(raw, 16) if isinstance(raw, str) else int(raw)
