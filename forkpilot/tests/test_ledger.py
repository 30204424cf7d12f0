"""Tests for the transaction ledger (forkpilot/ledger/ledger.py)."""

from __future__ import annotations

import pytest

from forkpilot.core.types import TransactionStatus
from forkpilot.decoding.inputs import RawTransactionInput, TransferFundsInput
from forkpilot.ledger.ledger import LedgerEntry, TransactionLedger
from forkpilot.tests.fakes import RECIPIENT


def _record(ledger: TransactionLedger, entry_id: int) -> LedgerEntry:
    transaction = {"to": RECIPIENT, "value": hex(entry_id), "data": "0xabcd"}
    return ledger.record(entry_id, transaction, RawTransactionInput(id=entry_id, to=RECIPIENT, value=entry_id, data="0xabcd"))


@pytest.fixture
def ledger() -> TransactionLedger:
    ledger = TransactionLedger()
    for entry_id in (1, 2, 3):
        _record(ledger, entry_id)
    return ledger


class TestAppend:
    def test_keeps_send_order(self, ledger):
        assert [e.id for e in ledger.entries] == [1, 2, 3]
        assert len(ledger) == 3

    def test_new_entries_start_recorded(self, ledger):
        entry = ledger.get(1)
        assert entry.status is TransactionStatus.RECORDED
        assert entry.decoded is None
        assert isinstance(entry.input, RawTransactionInput)

    def test_ids_must_increase(self, ledger):
        with pytest.raises(ValueError):
            _record(ledger, 2)

    def test_transaction_is_copied(self):
        ledger = TransactionLedger()
        transaction = {"to": RECIPIENT}
        entry = ledger.record(1, transaction, TransferFundsInput(id=1, to=RECIPIENT))
        transaction["to"] = "0x0"
        assert entry.transaction["to"] == RECIPIENT


class TestStatus:
    def test_decode_replaces_input(self, ledger):
        decoded = TransferFundsInput(id=2, to=RECIPIENT, value=2)
        ledger.decode(2, decoded)

        entry = ledger.get(2)
        assert entry.input == decoded
        assert entry.status is TransactionStatus.DECODED

    def test_confirm(self, ledger):
        ledger.confirm(1, "0xhash")
        entry = ledger.get(1)
        assert entry.transaction_hash == "0xhash"
        assert entry.status is TransactionStatus.CONFIRMED

    def test_late_decode_does_not_regress_status(self, ledger):
        ledger.confirm(1, "0xhash")
        ledger.decode(1, TransferFundsInput(id=1, to=RECIPIENT))

        entry = ledger.get(1)
        assert entry.status is TransactionStatus.CONFIRMED
        assert isinstance(entry.input, TransferFundsInput)

    def test_updates_for_removed_entries_are_dropped(self, ledger):
        ledger.remove(1)
        ledger.decode(2, TransferFundsInput(id=2, to=RECIPIENT))
        ledger.confirm(3, "0xhash")
        assert ledger.entries == []


class TestRemove:
    def test_truncates_from_entry(self, ledger):
        removed = ledger.remove(2)
        assert [e.id for e in removed] == [2, 3]
        assert [e.id for e in ledger.entries] == [1]

    def test_unknown_id(self, ledger):
        assert ledger.remove(42) == []
        assert len(ledger) == 3

    def test_clear(self, ledger):
        ledger.clear()
        assert ledger.entries == []
        assert ledger.new_entries == []


class TestSubmission:
    def test_mark_submitted_moves_boundary(self, ledger):
        ledger.mark_submitted("0xbatch")
        _record(ledger, 4)

        assert [e.id for e in ledger.submitted_entries] == [1, 2, 3]
        assert [e.id for e in ledger.new_entries] == [4]
        assert ledger.batch_hashes == ["0xbatch"]

    def test_remove_before_boundary_pulls_it_back(self, ledger):
        ledger.mark_submitted("0xbatch")
        ledger.remove(2)
        _record(ledger, 5)

        assert [e.id for e in ledger.submitted_entries] == [1]
        assert [e.id for e in ledger.new_entries] == [5]
