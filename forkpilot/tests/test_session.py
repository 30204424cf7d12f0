"""End-to-end tests of a pilot session (forkpilot/session.py).

The remote backend runs against the fake fork service, so these exercise
the whole pipeline: forking provider, ledger hooks, background decoding,
batch encoding, submission and re-fork replay.
"""

from __future__ import annotations

import asyncio

import pytest

from forkpilot.batch.multisend import decode_multi
from forkpilot.core.errors import AbiNotFoundError
from forkpilot.core.types import Operation, TransactionStatus
from forkpilot.decoding.inputs import CallContractInput, RawTransactionInput, TransferFundsInput
from forkpilot.session import PilotSession
from forkpilot.tests.fakes import AVATAR, ERC20_ABI, MODULE, PILOT, RECIPIENT, TOKEN, TRANSFER_CALLDATA, FakeProvider


class StubResolver:
    """ABI source answering from a fixed table, optionally gated."""

    def __init__(self, abis: dict[str, list] | None = None) -> None:
        self.abis = {k.lower(): v for k, v in (abis or {}).items()}
        self.gate = asyncio.Event()
        self.gate.set()
        self.closed = False

    async def fetch_abi(self, address: str, data: str) -> list:
        await self.gate.wait()
        if address.lower() not in self.abis:
            raise AbiNotFoundError(address)
        return self.abis[address.lower()]

    async def close(self) -> None:
        self.closed = True


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def resolver() -> StubResolver:
    return StubResolver({TOKEN: ERC20_ABI})


@pytest.fixture
def session(connection, live_provider, remote_backend, resolver, settings) -> PilotSession:
    return PilotSession(connection, live_provider, remote_backend, abi_resolver=resolver, settings=settings)


async def _send(session: PilotSession, **transaction) -> str:
    return await session.provider.request("eth_sendTransaction", [transaction])


# ── Recording ────────────────────────────────────────────────────────────


class TestRecording:
    @pytest.mark.asyncio
    async def test_provider_follows_simulate_flag(self, session):
        assert session.provider is session.fork_provider
        session.simulate = False
        assert session.provider is session.wrapping_provider

    @pytest.mark.asyncio
    async def test_sends_are_recorded_and_confirmed(self, session, remote_backend):
        transaction_hash = await _send(session, to=RECIPIENT, value="0x1")
        await session.wait_for_decoding()

        (entry,) = session.ledger.entries
        assert entry.transaction_hash == transaction_hash
        assert entry.status is TransactionStatus.CONFIRMED
        assert isinstance(entry.input, TransferFundsInput)
        await remote_backend.join()

    @pytest.mark.asyncio
    async def test_entry_exists_before_decoding_completes(self, session, resolver, remote_backend):
        resolver.gate.clear()
        await _send(session, to=TOKEN, data=TRANSFER_CALLDATA)

        (entry,) = session.ledger.entries
        assert isinstance(entry.input, RawTransactionInput)
        assert entry.decoded is None

        resolver.gate.set()
        await session.wait_for_decoding()
        assert isinstance(entry.input, CallContractInput)
        # confirmation came first and the decode did not regress it
        assert entry.status is TransactionStatus.CONFIRMED
        await remote_backend.join()

    @pytest.mark.asyncio
    async def test_decode_failure_keeps_raw_entry(self, session, remote_backend):
        await _send(session, to=RECIPIENT, data="0xdeadbeef")
        await session.wait_for_decoding()

        (entry,) = session.ledger.entries
        assert entry.decoded is None
        assert isinstance(entry.input, RawTransactionInput)
        await remote_backend.join()

    @pytest.mark.asyncio
    async def test_fork_sees_avatar_as_sender(self, session, fork_service, remote_backend):
        await _send(session, **{"from": PILOT, "to": RECIPIENT})
        sends = [params for _, method, params in fork_service.rpc_calls if method == "eth_sendTransaction"]
        assert sends[0][0]["from"] == AVATAR
        await remote_backend.join()


# ── Batching ─────────────────────────────────────────────────────────────


class TestBatching:
    @pytest.mark.asyncio
    async def test_export_single_transaction(self, session, remote_backend):
        await _send(session, to=RECIPIENT, value="0x00a0")
        await session.wait_for_decoding()

        batch = session.build_batch()
        assert batch.to == RECIPIENT
        assert batch.value == "0xa0"

        module_call = session.export_batch()
        assert module_call["to"] == MODULE
        assert module_call["from"] == PILOT
        await remote_backend.join()

    @pytest.mark.asyncio
    async def test_submit_batches_new_entries(self, connection, remote_backend, resolver, settings):
        live = FakeProvider({"eth_sendTransaction": "0xbatch1"})
        session = PilotSession(connection, live, remote_backend, abi_resolver=resolver, settings=settings)

        await _send(session, to=RECIPIENT, value="0x1")
        await _send(session, to=TOKEN, data=TRANSFER_CALLDATA)
        await session.wait_for_decoding()

        batch_hash = await session.submit_transactions()

        assert batch_hash == "0xbatch1"
        method, params = live.calls[-1]
        assert method == "eth_sendTransaction"
        assert params[0]["from"] == AVATAR
        assert params[0]["to"] == settings.multisend_address
        assert params[0]["operation"] == Operation.DELEGATE_CALL
        calls = decode_multi(params[0]["data"])
        assert [c.to.lower() for c in calls] == [RECIPIENT, TOKEN.lower()]
        assert calls[1].data == TRANSFER_CALLDATA

        assert session.ledger.new_entries == []
        assert session.ledger.batch_hashes == ["0xbatch1"]
        await remote_backend.join()

    @pytest.mark.asyncio
    async def test_submit_with_nothing_new(self, session):
        with pytest.raises(ValueError):
            await session.submit_transactions()


# ── Re-fork ──────────────────────────────────────────────────────────────


class TestRefork:
    @pytest.mark.asyncio
    async def test_replays_new_entries_on_fresh_fork(self, session, fork_service, remote_backend):
        await _send(session, to=RECIPIENT, value="0x0001")
        await _send(session, to=TOKEN, data=TRANSFER_CALLDATA)
        await session.wait_for_decoding()
        old_ids = [e.id for e in session.ledger.entries]

        await session.refork_and_replay()
        await session.wait_for_decoding()
        await remote_backend.join()

        assert fork_service.created == ["fork-1", "fork-2"]
        assert "fork-1" in fork_service.deleted

        replayed = [
            params[0] for fork_id, method, params in fork_service.rpc_calls
            if fork_id == "fork-2" and method == "eth_sendTransaction"
        ]
        assert [tx["to"] for tx in replayed] == [RECIPIENT, TOKEN]
        assert replayed[0]["value"] == "0x1"
        assert replayed[1]["data"] == TRANSFER_CALLDATA
        assert all(tx["from"] == AVATAR for tx in replayed)

        entries = session.ledger.entries
        assert len(entries) == 2
        assert min(e.id for e in entries) > max(old_ids)
        assert all(e.status is TransactionStatus.CONFIRMED for e in entries)

    @pytest.mark.asyncio
    async def test_submitted_entries_are_not_replayed(self, connection, remote_backend, resolver, settings, fork_service):
        live = FakeProvider({"eth_sendTransaction": "0xbatch"})
        session = PilotSession(connection, live, remote_backend, abi_resolver=resolver, settings=settings)
        await _send(session, to=RECIPIENT, value="0x1")
        await session.submit_transactions()
        await _send(session, to=TOKEN, data=TRANSFER_CALLDATA)

        await session.refork_and_replay()
        await session.wait_for_decoding()
        await remote_backend.join()

        assert [e.input.to for e in session.ledger.entries] == [TOKEN]

    @pytest.mark.asyncio
    async def test_close(self, session, fork_service, resolver):
        await _send(session, to=RECIPIENT)
        await session.close()

        assert fork_service.deleted == ["fork-1"]
        assert resolver.closed
