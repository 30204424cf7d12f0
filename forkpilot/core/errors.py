"""Exception hierarchy for the simulation and batching pipeline.

Every error raised by forkpilot derives from :class:`PilotError` and carries
an :class:`ErrorCode`, so callers can present fork-service trouble, decode
trouble and bridge protocol violations distinctly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes attached to every :class:`PilotError`."""

    RPC_ERROR = "RPC_ERROR"
    PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"
    UNEXPECTED_MESSAGE_SOURCE = "UNEXPECTED_MESSAGE_SOURCE"
    MISSING_HANDSHAKE = "MISSING_HANDSHAKE"
    SIMULATION_UNAVAILABLE = "SIMULATION_UNAVAILABLE"
    FORK_NOT_AVAILABLE = "FORK_NOT_AVAILABLE"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    ABI_NOT_FOUND = "ABI_NOT_FOUND"
    UNSUPPORTED_METHOD = "UNSUPPORTED_METHOD"


class PilotError(Exception):
    """Base exception for forkpilot errors."""

    code: ErrorCode = ErrorCode.RPC_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class JsonRpcError(PilotError):
    """Error object returned by a JSON-RPC provider."""

    code = ErrorCode.RPC_ERROR

    def __init__(self, rpc_code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.rpc_code = rpc_code
        self.data = data

    def to_payload(self) -> dict[str, Any]:
        """Serialise into the JSON-RPC ``error`` object shape."""
        payload: dict[str, Any] = {"code": self.rpc_code, "message": str(self)}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> JsonRpcError:
        """Rebuild an error from a JSON-RPC ``error`` object (or anything else)."""
        if isinstance(payload, dict):
            return cls(
                int(payload.get("code", -32603)),
                str(payload.get("message", "Unknown JSON-RPC error")),
                payload.get("data"),
            )
        return cls(-32603, str(payload))


class ProtocolViolationError(PilotError):
    """The message bridge received traffic that breaks its protocol."""

    code = ErrorCode.PROTOCOL_VIOLATION


class UnexpectedMessageSourceError(ProtocolViolationError):
    """A bridge envelope arrived from a context other than the handshaken one."""

    code = ErrorCode.UNEXPECTED_MESSAGE_SOURCE

    def __init__(self, message: str = "unexpected message source") -> None:
        super().__init__(message)


class MissingHandshakeError(ProtocolViolationError):
    """A bridge request arrived before the init handshake."""

    code = ErrorCode.MISSING_HANDSHAKE

    def __init__(self, message: str = "bridge request received before handshake") -> None:
        super().__init__(message)


class SimulationUnavailableError(PilotError):
    """The simulation service is rate limiting or otherwise unavailable."""

    code = ErrorCode.SIMULATION_UNAVAILABLE

    def __init__(self, message: str = "Simulation service unavailable", cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ForkNotAvailableError(PilotError):
    code = ErrorCode.FORK_NOT_AVAILABLE

    def __init__(self, message: str = "No fork available") -> None:
        super().__init__(message)


class TransactionNotFoundError(PilotError):
    code = ErrorCode.TRANSACTION_NOT_FOUND

    def __init__(self, transaction_hash: str) -> None:
        super().__init__(f"Transaction not found: {transaction_hash}")
        self.transaction_hash = transaction_hash


class AbiNotFoundError(PilotError):
    code = ErrorCode.ABI_NOT_FOUND


class UnsupportedMethodError(PilotError):
    code = ErrorCode.UNSUPPORTED_METHOD

    def __init__(self, method: str) -> None:
        super().__init__(f"Method not supported while simulating: {method}")
        self.method = method
