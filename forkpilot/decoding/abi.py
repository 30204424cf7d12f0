"""ABI helpers and contract ABI resolution.

Resolution order for a call ``(address, calldata)``:
  1. verified ABI of ``address`` from the chain's block explorer
  2. verified ABI of the EIP-1967 implementation, if ``address`` is a proxy
  3. the 4byte signature directory, keeping the first candidate that decodes

Lookups are memoized per key; concurrent callers share one in-flight lookup.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import httpx
from eth_abi import decode as abi_decode
from eth_utils import keccak, to_checksum_address

from forkpilot.core.chains import get_chain_config
from forkpilot.core.config import Settings, get_settings
from forkpilot.core.errors import AbiNotFoundError
from forkpilot.core.types import Eip1193Provider

logger = logging.getLogger(__name__)

# keccak256("eip1967.proxy.implementation") - 1
EIP1967_IMPLEMENTATION_SLOT = "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc"

AbiFetcher = Callable[[str, str], Awaitable[list[dict[str, Any]]]]


# ── Pure helpers ─────────────────────────────────────────────────────────────


def canonical_type(param: dict[str, Any]) -> str:
    """Canonical ABI type of a parameter, expanding tuples."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def input_types(fragment: dict[str, Any]) -> list[str]:
    return [canonical_type(p) for p in fragment.get("inputs", [])]


def function_signature(fragment: dict[str, Any]) -> str:
    return f"{fragment['name']}({','.join(input_types(fragment))})"


def function_selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


def calldata_selector(data: str) -> str:
    return data[:10].lower()


def find_function(abi: list[dict[str, Any]], selector: str) -> dict[str, Any] | None:
    """Return the function fragment of ``abi`` matching ``selector``."""
    selector = selector.lower()
    for fragment in abi:
        if fragment.get("type", "function") != "function" or "name" not in fragment:
            continue
        if function_selector(function_signature(fragment)) == selector:
            return fragment
    return None


def _split_top_level(params: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for char in params:
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        parts.append(current)
    return parts


def _param_from_type(abi_type: str, name: str = "") -> dict[str, Any]:
    if abi_type.startswith("("):
        close = abi_type.rindex(")")
        components = [_param_from_type(t) for t in _split_top_level(abi_type[1:close])]
        return {"name": name, "type": "tuple" + abi_type[close + 1:], "components": components}
    return {"name": name, "type": abi_type}


def fragment_from_signature(signature: str) -> dict[str, Any]:
    """Build a function fragment from a text signature like ``transfer(address,uint256)``."""
    open_paren = signature.index("(")
    name = signature[:open_paren]
    params = _split_top_level(signature[open_paren + 1:-1])
    return {
        "type": "function",
        "name": name,
        "stateMutability": "nonpayable",
        "inputs": [_param_from_type(t, f"arg{i}") for i, t in enumerate(params)],
        "outputs": [],
    }


def decodes(fragment: dict[str, Any], data: str) -> bool:
    """Whether ``data`` decodes cleanly against ``fragment``."""
    try:
        abi_decode(input_types(fragment), bytes.fromhex(data[10:]))
    except Exception:
        return False
    return True


# ── Resolver ─────────────────────────────────────────────────────────────────


class AbiResolver:
    """Resolve the ABI needed to decode calls on one chain."""

    def __init__(
        self,
        chain_id: int,
        provider: Eip1193Provider | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.chain_id = int(chain_id)
        self._provider = provider
        self._settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self._settings.http_timeout_seconds))
        self._abis: dict[str, asyncio.Task[list[dict[str, Any]]]] = {}
        self._signatures: dict[str, asyncio.Task[list[str]]] = {}

    async def fetch_abi(self, address: str, data: str) -> list[dict[str, Any]]:
        """Return an ABI containing the function ``data`` calls on ``address``."""
        selector = calldata_selector(data)

        abi = await self._try_contract_abi(address)
        if abi and find_function(abi, selector):
            return abi

        implementation = await self.proxy_implementation(address)
        if implementation:
            abi = await self._try_contract_abi(implementation)
            if abi and find_function(abi, selector):
                return abi

        for text_signature in await self.lookup_signatures(selector):
            fragment = fragment_from_signature(text_signature)
            if decodes(fragment, data):
                return [fragment]

        raise AbiNotFoundError(f"No ABI found for {selector} on {address}")

    async def contract_abi(self, address: str) -> list[dict[str, Any]]:
        """Verified ABI of ``address`` from the block explorer (memoized)."""
        key = address.lower()
        return await self._memoized(self._abis, key, lambda: self._fetch_contract_abi(address))

    async def lookup_signatures(self, selector: str) -> list[str]:
        """Text signatures registered for ``selector`` (memoized)."""
        key = selector.lower()
        return await self._memoized(self._signatures, key, lambda: self._fetch_signatures(key))

    async def proxy_implementation(self, address: str) -> str | None:
        """EIP-1967 implementation behind ``address``, if it is a proxy."""
        if self._provider is None:
            return None
        try:
            slot = await self._provider.request(
                "eth_getStorageAt", [address, EIP1967_IMPLEMENTATION_SLOT, "latest"]
            )
        except Exception as exc:
            logger.debug("Proxy slot lookup failed for %s: %s", address, exc)
            return None
        if not slot or int(slot, 16) == 0:
            return None
        return to_checksum_address("0x" + slot[-40:])

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Internals ────────────────────────────────────────────────────

    async def _memoized(self, cache: dict[str, asyncio.Task[Any]], key: str, factory: Callable[[], Any]) -> Any:
        task = cache.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(factory())
            cache[key] = task

            def _forget_failure(done: asyncio.Task[Any]) -> None:
                if (done.cancelled() or done.exception() is not None) and cache.get(key) is done:
                    del cache[key]

            task.add_done_callback(_forget_failure)
        return await asyncio.shield(task)

    async def _try_contract_abi(self, address: str) -> list[dict[str, Any]] | None:
        try:
            return await self.contract_abi(address)
        except (AbiNotFoundError, httpx.HTTPError) as exc:
            logger.debug("No verified ABI for %s: %s", address, exc, extra={"chain_id": self.chain_id})
            return None

    async def _fetch_contract_abi(self, address: str) -> list[dict[str, Any]]:
        chain = get_chain_config(self.chain_id)
        if chain is None:
            raise AbiNotFoundError(f"Unsupported chain: {self.chain_id}")

        params = {"module": "contract", "action": "getabi", "address": address}
        api_key = getattr(self._settings, chain.explorer_api_key_setting, "")
        if api_key:
            params["apikey"] = api_key

        response = await self._client.get(chain.explorer_api_url, params=params)
        response.raise_for_status()
        data = response.json()
        if data.get("status") != "1" or not data.get("result"):
            raise AbiNotFoundError(f"Contract not verified at {address}: {data.get('result')}")
        try:
            return json.loads(data["result"])
        except json.JSONDecodeError as exc:
            raise AbiNotFoundError(f"Malformed ABI for {address}") from exc

    async def _fetch_signatures(self, selector: str) -> list[str]:
        response = await self._client.get(
            self._settings.four_byte_api_url, params={"hex_signature": selector}
        )
        response.raise_for_status()
        results = response.json().get("results", [])
        # oldest registrations first, later ones are more often collisions
        results.sort(key=lambda r: r.get("id", 0))
        return [r["text_signature"] for r in results if r.get("text_signature")]
