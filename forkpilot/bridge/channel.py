"""Broadcast message channel between isolated execution contexts.

An :class:`Endpoint` stands for one execution context (a host page, a
sandboxed frame).  Contexts share no memory: ``post_message`` serialises the
payload, and delivery happens on a later event-loop turn to every listener
registered on the target endpoint, tagged with the sender endpoint.  Several
independent listeners may share one endpoint, so receivers must filter by
envelope tag and by sender identity.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageEvent:
    """One delivered message: the payload and the endpoint that posted it."""

    data: Any
    source: Endpoint | None


MessageListener = Callable[[MessageEvent], None]


class Endpoint:
    """An execution context that other contexts can post messages to."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[MessageListener] = []

    def __repr__(self) -> str:
        return f"Endpoint({self.name!r})"

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def post_message(self, data: Any, source: Endpoint | None = None) -> None:
        """Queue ``data`` for delivery to this endpoint's listeners."""
        # Structured clone: only serialisable payloads cross a context boundary
        message = json.loads(json.dumps(data))
        loop = asyncio.get_running_loop()
        loop.call_soon(self._dispatch, MessageEvent(message, source))

    def _dispatch(self, event: MessageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Message listener on %s failed", self.name)
