"""Ordered record of transactions simulated in the current session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Union

from forkpilot.core.types import TransactionData, TransactionStatus
from forkpilot.decoding.inputs import CallContractInput, RawTransactionInput, TransferFundsInput

logger = logging.getLogger(__name__)

AnyInput = Union[RawTransactionInput, TransferFundsInput, CallContractInput]


@dataclass
class LedgerEntry:
    """One recorded transaction intent."""

    id: int
    transaction: TransactionData
    raw_input: AnyInput
    decoded: AnyInput | None = None
    status: TransactionStatus = TransactionStatus.RECORDED
    transaction_hash: str | None = None

    @property
    def input(self) -> AnyInput:
        """Best representation available: decoded if done, else the fast decode."""
        return self.decoded if self.decoded is not None else self.raw_input

    def advance(self, status: TransactionStatus) -> None:
        if status.rank > self.status.rank:
            self.status = status


class TransactionLedger:
    """Entries in send order.  Ids are strictly increasing.

    Entries up to the last :meth:`mark_submitted` call are "submitted";
    the rest are "new" and are what the next batch will contain.
    """

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []
        self._submitted_count = 0
        self.batch_hashes: list[str] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(list(self._entries))

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    @property
    def new_entries(self) -> list[LedgerEntry]:
        return self._entries[self._submitted_count:]

    @property
    def submitted_entries(self) -> list[LedgerEntry]:
        return self._entries[:self._submitted_count]

    def get(self, entry_id: int) -> LedgerEntry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    # ── Mutations ────────────────────────────────────────────────────

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        if self._entries and entry.id <= self._entries[-1].id:
            raise ValueError(f"Ledger ids must increase: {entry.id} after {self._entries[-1].id}")
        self._entries.append(entry)
        logger.debug("Recorded transaction", extra={"tx_id": entry.id})
        return entry

    def record(self, entry_id: int, transaction: TransactionData, raw_input: AnyInput) -> LedgerEntry:
        return self.append(LedgerEntry(id=entry_id, transaction=dict(transaction), raw_input=raw_input))

    def decode(self, entry_id: int, decoded: AnyInput) -> None:
        entry = self.get(entry_id)
        if entry is None:
            # removed (e.g. by a re-fork) while decoding was in flight
            logger.debug("Dropping decode result for removed entry", extra={"tx_id": entry_id})
            return
        entry.decoded = decoded
        entry.advance(TransactionStatus.DECODED)

    def confirm(self, entry_id: int, transaction_hash: str) -> None:
        entry = self.get(entry_id)
        if entry is None:
            logger.debug("Dropping confirmation for removed entry", extra={"tx_id": entry_id})
            return
        entry.transaction_hash = transaction_hash
        entry.advance(TransactionStatus.CONFIRMED)

    def remove(self, entry_id: int) -> list[LedgerEntry]:
        """Remove ``entry_id`` and every later entry; returns what was removed."""
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                removed = self._entries[index:]
                del self._entries[index:]
                self._submitted_count = min(self._submitted_count, index)
                return removed
        return []

    def clear(self) -> None:
        self._entries.clear()
        self._submitted_count = 0

    def mark_submitted(self, batch_hash: str) -> None:
        """Everything recorded so far went out in batch ``batch_hash``."""
        self._submitted_count = len(self._entries)
        self.batch_hashes.append(batch_hash)
