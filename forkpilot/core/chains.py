"""Supported EVM chain configurations."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a supported EVM chain."""

    chain_id: int
    name: str
    short_name: str
    explorer_url: str
    explorer_api_url: str
    explorer_api_key_setting: str  # attribute name on Settings
    native_currency: str = "ETH"
    is_testnet: bool = False


# ── Chain Registry ───────────────────────────────────────────────────────────

CHAINS: dict[int, ChainConfig] = {
    1: ChainConfig(
        chain_id=1,
        name="Ethereum Mainnet",
        short_name="eth",
        explorer_url="https://etherscan.io",
        explorer_api_url="https://api.etherscan.io/api",
        explorer_api_key_setting="etherscan_api_key",
    ),
    5: ChainConfig(
        chain_id=5,
        name="Goerli",
        short_name="gor",
        explorer_url="https://goerli.etherscan.io",
        explorer_api_url="https://api-goerli.etherscan.io/api",
        explorer_api_key_setting="etherscan_api_key",
        is_testnet=True,
    ),
    10: ChainConfig(
        chain_id=10,
        name="Optimism",
        short_name="oeth",
        explorer_url="https://optimistic.etherscan.io",
        explorer_api_url="https://api-optimistic.etherscan.io/api",
        explorer_api_key_setting="optimism_api_key",
    ),
    100: ChainConfig(
        chain_id=100,
        name="Gnosis Chain",
        short_name="gno",
        explorer_url="https://gnosisscan.io",
        explorer_api_url="https://api.gnosisscan.io/api",
        explorer_api_key_setting="gnosisscan_api_key",
        native_currency="xDAI",
    ),
    137: ChainConfig(
        chain_id=137,
        name="Polygon Mainnet",
        short_name="matic",
        explorer_url="https://polygonscan.com",
        explorer_api_url="https://api.polygonscan.com/api",
        explorer_api_key_setting="polygonscan_api_key",
        native_currency="MATIC",
    ),
    8453: ChainConfig(
        chain_id=8453,
        name="Base",
        short_name="base",
        explorer_url="https://basescan.org",
        explorer_api_url="https://api.basescan.org/api",
        explorer_api_key_setting="basescan_api_key",
    ),
    42161: ChainConfig(
        chain_id=42161,
        name="Arbitrum One",
        short_name="arb1",
        explorer_url="https://arbiscan.io",
        explorer_api_url="https://api.arbiscan.io/api",
        explorer_api_key_setting="arbiscan_api_key",
    ),
}


def get_chain_config(chain_id: int) -> ChainConfig | None:
    """Get chain configuration by chain id."""
    return CHAINS.get(int(chain_id))


def get_all_chains() -> list[ChainConfig]:
    """Return all supported chains."""
    return list(CHAINS.values())
