"""Requesting side of the message bridge.

Lets code in one context call a provider that only exists in another.  Each
request gets the next message id of this bridge instance (starting at 0), is
registered as pending, and resolves when a response with the same id arrives
from the target context.

There is no built-in expiry: if the other side never answers, the request
never completes.  Wrap calls in ``asyncio.wait_for`` where a bounded wait is
needed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from forkpilot.bridge.channel import Endpoint, MessageEvent
from forkpilot.bridge.envelope import BridgeProtocol, EnvelopeKind
from forkpilot.core.errors import JsonRpcError
from forkpilot.core.types import JsonRpcRequest

logger = logging.getLogger(__name__)


class BridgeClient:
    """Provider proxy forwarding ``request`` calls to another context."""

    def __init__(self, local: Endpoint, target: Endpoint, protocol: BridgeProtocol) -> None:
        self._local = local
        self._target = target
        self._protocol = protocol
        self._ids = itertools.count()
        self._pending: dict[int, asyncio.Future[Any]] = {}
        local.add_listener(self.handle_message)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def announce(self) -> None:
        """Broadcast the init handshake to the target context."""
        self._target.post_message(self._protocol.init(), source=self._local)

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        message_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future

        envelope = self._protocol.request(message_id, JsonRpcRequest(method=method, params=params or []))
        self._target.post_message(envelope, source=self._local)
        logger.debug("bridge request %s", method, extra={"message_id": message_id, "method": method})
        return await future

    def handle_message(self, event: MessageEvent) -> None:
        envelope = self._protocol.parse(event.data)
        if envelope is None or envelope.kind is not EnvelopeKind.RESPONSE:
            return
        if envelope.message_id not in self._pending:
            return
        if event.source is not self._target:
            logger.error(
                "Ignoring bridge response from unexpected source %r",
                event.source,
                extra={"message_id": envelope.message_id},
            )
            return

        future = self._pending.pop(envelope.message_id)
        if future.done():
            # the caller gave up waiting
            return
        if envelope.error is not None:
            future.set_exception(JsonRpcError.from_payload(envelope.error))
        else:
            future.set_result(envelope.response)

    def close(self) -> None:
        """Stop listening. Outstanding requests stay unresolved."""
        self._local.remove_listener(self.handle_message)
