"""Core configuration for forkpilot."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FORKPILOT_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "forkpilot"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    http_timeout_seconds: float = 30.0

    # ── Remote fork service ──────────────────────────────────────────────
    fork_api_url: str = "https://fork-api.pilot.gnosisguild.org"
    fork_rpc_url_template: str = "https://rpc.tenderly.co/fork/{fork_id}"
    fork_dashboard_url_template: str = (
        "https://dashboard.tenderly.co/gnosisguild/zodiac-pilot/fork/{fork_id}/simulation/{transaction_id}"
    )
    block_advance_delay_seconds: float = 0.001
    block_advance_increment: int = 2

    # ── Local fork sandbox ───────────────────────────────────────────────
    local_fork_db_path: str = "/tmp/forkpilot_fork_db"

    # ── Batching ─────────────────────────────────────────────────────────
    multisend_address: str = "0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761"

    # ── ABI lookups ──────────────────────────────────────────────────────
    etherscan_api_key: str = ""
    gnosisscan_api_key: str = ""
    polygonscan_api_key: str = ""
    arbiscan_api_key: str = ""
    optimism_api_key: str = ""
    basescan_api_key: str = ""
    four_byte_api_url: str = "https://www.4byte.directory/api/v1/signatures/"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
