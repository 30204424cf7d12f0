"""Shared enums and types used across forkpilot."""

from __future__ import annotations

import enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Raw ``eth_sendTransaction`` parameter object (to / from / value / data / ...)
TransactionData = dict[str, Any]


# ── Enums ────────────────────────────────────────────────────────────────────


class ProviderType(int, enum.Enum):
    """Which live-provider backend a connection uses."""

    WALLET_CONNECT = 0
    METAMASK = 1


class ModuleType(str, enum.Enum):
    """Authorizing module through which the pilot acts for the avatar."""

    ROLES = "roles"
    DELAY = "delay"


class Operation(int, enum.Enum):
    """Safe operation type of a meta transaction."""

    CALL = 0
    DELEGATE_CALL = 1


class TransactionStatus(str, enum.Enum):
    """Lifecycle of a recorded transaction intent. Never regresses."""

    RECORDED = "recorded"
    DECODED = "decoded"
    CONFIRMED = "confirmed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    TransactionStatus.RECORDED: 0,
    TransactionStatus.DECODED: 1,
    TransactionStatus.CONFIRMED: 2,
}


# ── Provider contract ────────────────────────────────────────────────────────


@runtime_checkable
class Eip1193Provider(Protocol):
    """The standard Ethereum provider contract every component speaks."""

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        ...


class JsonRpcRequest(BaseModel):
    """A JSON-RPC request as it travels over the message bridge."""

    method: str
    params: list[Any] = Field(default_factory=list)


MUTATING_METHODS = frozenset({"eth_sendTransaction"})
SNAPSHOT_METHODS = frozenset({"evm_snapshot", "evm_revert"})
ACCOUNT_METHODS = frozenset({"eth_accounts", "eth_requestAccounts"})
SIGNING_METHODS = frozenset({
    "eth_sign",
    "personal_sign",
    "eth_signTypedData",
    "eth_signTypedData_v3",
    "eth_signTypedData_v4",
})


class MetaTransaction(BaseModel):
    """A single call the avatar executes, as a Safe meta transaction."""

    to: str
    value: str = "0x0"
    data: str = "0x"
    operation: Operation = Operation.CALL

    def to_transaction(self) -> TransactionData:
        return {
            "to": self.to,
            "value": self.value,
            "data": self.data,
            "operation": int(self.operation),
        }
