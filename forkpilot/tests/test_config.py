"""Tests for forkpilot.core config, logging and chain registry."""

from __future__ import annotations

import json
import logging
import os
from unittest.mock import patch

from forkpilot.core.chains import get_all_chains, get_chain_config
from forkpilot.core.config import Settings, get_settings
from forkpilot.core.logging import DevFormatter, JSONFormatter, SessionLogFilter, setup_logging


class TestSettings:
    """Verify settings defaults and environment overrides."""

    def test_default_app_env(self):
        s = Settings()
        assert s.app_env == "development"

    def test_fork_service_defaults(self):
        s = Settings()
        assert s.fork_rpc_url_template.format(fork_id="abc") == "https://rpc.tenderly.co/fork/abc"
        assert s.block_advance_increment == 2
        link = s.fork_dashboard_url_template.format(fork_id="f", transaction_id="t")
        assert "/fork/f/" in link and link.endswith("/t")

    def test_multisend_default(self):
        assert Settings().multisend_address == "0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761"

    def test_env_override(self):
        with patch.dict(os.environ, {"FORKPILOT_FORK_API_URL": "https://forks.example", "FORKPILOT_LOG_LEVEL": "DEBUG"}):
            s = Settings()
        assert s.fork_api_url == "https://forks.example"
        assert s.log_level == "DEBUG"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestChains:
    def test_known_chain(self):
        chain = get_chain_config(100)
        assert chain is not None
        assert chain.short_name == "gno"
        assert chain.explorer_api_key_setting == "gnosisscan_api_key"

    def test_unknown_chain(self):
        assert get_chain_config(424242) is None

    def test_every_chain_has_a_key_setting(self):
        fields = Settings.model_fields
        for chain in get_all_chains():
            assert chain.explorer_api_key_setting in fields


class TestLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("forkpilot.test", logging.INFO, __file__, 10, "created fork", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_includes_context(self):
        output = json.loads(JSONFormatter().format(self._record(fork_id="fork-1", tx_id=3, session_id="s1")))

        assert output["message"] == "created fork"
        assert output["fork_id"] == "fork-1"
        assert output["tx_id"] == 3
        assert output["session_id"] == "s1"
        assert "message_id" not in output

    def test_dev_formatter_prefixes_fork(self):
        line = DevFormatter().format(self._record(fork_id="abcdef123456"))
        assert "[fork abcdef12] created fork" in line

    def test_json_formatter_adds_correlation(self):
        output = json.loads(JSONFormatter().format(self._record(fork_id="fork-1", tx_id=3)))
        assert output["correlation"] == "fork fork-1 tx 3"

    def test_dev_formatter_shows_entry_and_message(self):
        line = DevFormatter().format(self._record(tx_id=4, message_id=0, method="eth_call", duration_ms=12))

        assert "[tx 4 msg 0] created fork" in line
        assert "eth_call, 12.0ms" in line

    def test_dev_formatter_without_context(self):
        line = DevFormatter().format(self._record())
        assert "forkpilot.test: created fork" in line
        assert "(" not in line

    def test_session_filter_stamps_records(self):
        record = self._record()
        assert SessionLogFilter("abc").filter(record) is True
        assert record.session_id == "abc"

    def test_setup_logging_selects_formatter(self):
        root = logging.getLogger()
        saved, level = root.handlers[:], root.level
        try:
            setup_logging("production", "WARNING")
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING

            setup_logging("development")
            assert isinstance(root.handlers[0].formatter, DevFormatter)
        finally:
            root.handlers[:] = saved
            root.setLevel(level)
