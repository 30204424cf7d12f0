"""Shared fixtures for the forkpilot test suite."""

from __future__ import annotations

import pytest

from forkpilot.core.config import Settings
from forkpilot.core.connection import Connection
from forkpilot.core.types import ModuleType
from forkpilot.fork.remote import ForkApiClient, RemoteForkBackend
from forkpilot.core.rpc import HttpJsonRpcProvider
from forkpilot.tests.fakes import AVATAR, MODULE, PILOT, FakeForkService, FakeProvider, mock_client


# ── Config / connection ──────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(
        fork_api_url="https://forks.test",
        fork_rpc_url_template="https://rpc.forks.test/fork/{fork_id}",
        block_advance_delay_seconds=0,
        four_byte_api_url="https://4byte.test/api/v1/signatures/",
        etherscan_api_key="test-key",
    )


@pytest.fixture
def connection() -> Connection:
    return Connection(
        id="conn-1",
        label="Treasury",
        chain_id=1,
        module_address=MODULE,
        avatar_address=AVATAR,
        pilot_address=PILOT,
        module_type=ModuleType.ROLES,
        role_id="7",
    )


# ── Providers ────────────────────────────────────────────────────────────────


@pytest.fixture
def live_provider() -> FakeProvider:
    return FakeProvider({
        "eth_blockNumber": "0x100",
        "eth_getBalance": "0xde0b6b3a7640000",
        "eth_sendTransaction": "0xlive",
    })


# ── Remote fork service ──────────────────────────────────────────────────────


@pytest.fixture
def fork_service() -> FakeForkService:
    return FakeForkService()


@pytest.fixture
def remote_backend(
    live_provider: FakeProvider, fork_service: FakeForkService, settings: Settings
) -> RemoteForkBackend:
    """Remote backend wired to the fake fork service over httpx.MockTransport."""
    client = mock_client(fork_service.handler)
    return RemoteForkBackend(
        live_provider,
        chain_id=1,
        api=ForkApiClient(settings.fork_api_url, client=client),
        rpc_factory=lambda url: HttpJsonRpcProvider(url, client=client),
        settings=settings,
    )
