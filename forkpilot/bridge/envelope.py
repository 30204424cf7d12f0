"""Wire envelopes of the message bridge.

Each bridge direction uses its own set of tag keys so that several bridges
can share one broadcast channel without picking up each other's traffic:

    init      {<init_tag>: true}
    request   {<request_tag>: true, "messageId": 3, "request": {"method": ..., "params": [...]}}
    response  {<response_tag>: true, "messageId": 3, "response": ..., "error": {...}}
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from forkpilot.core.types import JsonRpcRequest


class EnvelopeKind(str, enum.Enum):
    INIT = "init"
    REQUEST = "request"
    RESPONSE = "response"


@dataclass(frozen=True)
class BridgeEnvelope:
    """A parsed bridge message."""

    kind: EnvelopeKind
    message_id: int | None = None
    request: JsonRpcRequest | None = None
    response: Any = None
    error: Any = None


@dataclass(frozen=True)
class BridgeProtocol:
    """Tag keys identifying the envelopes of one bridge direction."""

    init_tag: str
    request_tag: str
    response_tag: str

    def init(self) -> dict[str, Any]:
        return {self.init_tag: True}

    def request(self, message_id: int, request: JsonRpcRequest) -> dict[str, Any]:
        return {
            self.request_tag: True,
            "messageId": message_id,
            "request": request.model_dump(),
        }

    def response(self, message_id: int, response: Any = None, error: Any = None) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            self.response_tag: True,
            "messageId": message_id,
            "response": response,
        }
        if error is not None:
            envelope["error"] = error
        return envelope

    def parse(self, data: Any) -> BridgeEnvelope | None:
        """Return the envelope carried by ``data``, or ``None`` if it is not ours."""
        if not isinstance(data, dict):
            return None
        if data.get(self.init_tag):
            return BridgeEnvelope(EnvelopeKind.INIT)
        message_id = data.get("messageId")
        if not isinstance(message_id, int):
            return None
        if data.get(self.request_tag):
            try:
                request = JsonRpcRequest.model_validate(data.get("request") or {})
            except ValidationError:
                return None
            return BridgeEnvelope(EnvelopeKind.REQUEST, message_id, request=request)
        if data.get(self.response_tag):
            return BridgeEnvelope(
                EnvelopeKind.RESPONSE,
                message_id,
                response=data.get("response"),
                error=data.get("error"),
            )
        return None


# Host → sandbox: calls into the embedded chain simulator
SANDBOX_RPC = BridgeProtocol(
    init_tag="forkpilotSandboxInit",
    request_tag="forkpilotSandboxRequest",
    response_tag="forkpilotSandboxResponse",
)

# Sandbox → host: the simulator reaching the live chain for unforked state
LIVE_CHAIN_RPC = BridgeProtocol(
    init_tag="forkpilotSandboxInit",
    request_tag="forkpilotRequestFromSandbox",
    response_tag="forkpilotResponseToSandbox",
)
