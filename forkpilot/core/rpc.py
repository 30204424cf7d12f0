"""HTTP JSON-RPC provider.

Used as the live-chain provider when driving a node or wallet endpoint
directly, and as the transport to a remote fork's RPC URL.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any

import httpx

from forkpilot.core.config import get_settings
from forkpilot.core.errors import JsonRpcError

logger = logging.getLogger(__name__)


class HttpJsonRpcProvider:
    """Async JSON-RPC 2.0 client speaking the provider ``request`` contract.

    Usage::

        async with HttpJsonRpcProvider("http://127.0.0.1:8545") as provider:
            block = await provider.request("eth_blockNumber")
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = url
        if timeout is None:
            timeout = get_settings().http_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._ids = itertools.count(1)

    # ── Context manager ──────────────────────────────────────────────

    async def __aenter__(self) -> HttpJsonRpcProvider:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()

    # ── Provider contract ────────────────────────────────────────────

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        started = time.monotonic()
        resp = await self._client.post(self.url, json=payload)
        resp.raise_for_status()
        body = resp.json()
        logger.debug(
            "%s -> %s",
            method,
            "error" if "error" in body else "ok",
            extra={"method": method, "duration_ms": round((time.monotonic() - started) * 1000, 1)},
        )
        if body.get("error") is not None:
            raise JsonRpcError.from_payload(body["error"])
        return body.get("result")
