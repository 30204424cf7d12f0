"""Serving side of the message bridge.

The host waits for the init handshake, remembers which context it came from,
and from then on executes requests from that context only, against its real
provider, posting back a response envelope with the same message id.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from forkpilot.bridge.channel import Endpoint, MessageEvent
from forkpilot.bridge.envelope import BridgeProtocol, EnvelopeKind
from forkpilot.core.errors import (
    JsonRpcError,
    MissingHandshakeError,
    ProtocolViolationError,
    UnexpectedMessageSourceError,
)
from forkpilot.core.types import Eip1193Provider, JsonRpcRequest

logger = logging.getLogger(__name__)


class BridgeHost:
    """Expose ``provider`` to the context that completes the handshake.

    Args:
        local: Endpoint this host listens on and answers from.
        provider: The provider requests are executed against.
        protocol: Envelope tags of this bridge direction.
        source: Pre-established peer, for sides that know their
            counterpart without a handshake (a frame talking to its parent).
    """

    def __init__(
        self,
        local: Endpoint,
        provider: Eip1193Provider,
        protocol: BridgeProtocol,
        source: Endpoint | None = None,
    ) -> None:
        self._local = local
        self._provider = provider
        self._protocol = protocol
        self._source = source
        self._tasks: set[asyncio.Task[None]] = set()
        self.ready = asyncio.Event()
        if source is not None:
            self.ready.set()
        local.add_listener(self.handle_message)

    @property
    def source(self) -> Endpoint | None:
        return self._source

    def handle_message(self, event: MessageEvent) -> None:
        envelope = self._protocol.parse(event.data)
        if envelope is None:
            return

        if envelope.kind is EnvelopeKind.INIT:
            self._init_bridge(event)
            return

        if envelope.kind is EnvelopeKind.REQUEST:
            self._assert_consistent_source(event)
            assert envelope.message_id is not None and envelope.request is not None
            task = asyncio.get_running_loop().create_task(
                self._handle_request(envelope.request, envelope.message_id)
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _init_bridge(self, event: MessageEvent) -> None:
        if event.source is None:
            raise ProtocolViolationError("Unable to get message source")
        self._source = event.source
        logger.info("Bridge handshake completed with %r", event.source)
        self.ready.set()

    def _assert_consistent_source(self, event: MessageEvent) -> None:
        if self._source is None:
            raise MissingHandshakeError()
        if event.source is not self._source:
            raise UnexpectedMessageSourceError()

    async def _handle_request(self, request: JsonRpcRequest, message_id: int) -> None:
        response: Any = None
        error: dict[str, Any] | None = None
        try:
            response = await self._provider.request(request.method, request.params)
        except JsonRpcError as exc:
            error = exc.to_payload()
        except Exception as exc:
            error = {"code": -32603, "message": str(exc)}

        if error is not None:
            logger.debug(
                "bridged %s failed: %s",
                request.method,
                error["message"],
                extra={"message_id": message_id, "method": request.method},
            )
        assert self._source is not None
        self._source.post_message(
            self._protocol.response(message_id, response=response, error=error),
            source=self._local,
        )

    def close(self) -> None:
        """Stop serving. In-flight requests still answer when they finish."""
        self._local.remove_listener(self.handle_message)
